"""
Unit tests for the GPU timing manager and the GPU time estimator.
"""

import pytest

from xrperf.services.metrics.gpu_timing import (
    MAX_INFLIGHT_QUERIES,
    GpuTimerAvailable,
    GpuTimerUnavailable,
    GpuTimingManager,
    GpuTimingState,
    RenderLoad,
    clamp_gpu_time,
    estimate_gpu_time,
    probe_gpu_timer,
)


@pytest.fixture
def manager(gpu_timer, clock):
    manager = GpuTimingManager(clock=clock)
    manager.configure(gpu_timer)
    return manager


def test_estimate_matches_reference_load():
    """200 draws, 50k triangles, complexity 300, 10 textures -> 23.8ms raw."""
    load = RenderLoad(draw_calls=200, triangles=50_000, fragment_complexity=300, textures=10)
    assert estimate_gpu_time(load) == pytest.approx(23.8)


def test_estimate_has_base_overhead():
    assert estimate_gpu_time(RenderLoad()) == pytest.approx(0.5)


def test_smoothed_estimate_converges_to_frame_budget_clamp(clock):
    """With a 16ms frame the estimate settles at 80% of the frame: 12.8ms."""
    manager = GpuTimingManager(clock=clock)
    manager.configure(None)
    load = RenderLoad(draw_calls=200, triangles=50_000, fragment_complexity=300, textures=10)

    for _ in range(10):
        manager.update_estimate(load, frame_time=16.0)

    assert manager.gpu_frame_time == pytest.approx(12.8)


@pytest.mark.parametrize("draw_calls", [0, 1, 50, 5000])
@pytest.mark.parametrize("frame_time", [1.0, 16.0, 33.3])
def test_estimate_stays_within_bounds(draw_calls, frame_time, clock):
    manager = GpuTimingManager(clock=clock)
    manager.configure(None)
    load = RenderLoad(draw_calls=draw_calls, triangles=draw_calls * 1000, fragment_complexity=700, textures=draw_calls)

    for _ in range(20):
        value = manager.update_estimate(load, frame_time)
        assert 0.5 <= value <= frame_time * 0.8


def test_clamp_floor_when_frame_time_unknown():
    assert clamp_gpu_time(7.0, 0.0) == 0.5


def test_probe_without_extension_is_unavailable():
    support = probe_gpu_timer(None)
    assert isinstance(support, GpuTimerUnavailable)


def test_probe_with_working_extension_cleans_up_test_query(gpu_timer):
    support = probe_gpu_timer(gpu_timer)

    assert isinstance(support, GpuTimerAvailable)
    assert gpu_timer.created == gpu_timer.deleted


def test_probe_with_broken_extension_is_unavailable(gpu_timer):
    gpu_timer.fail_on = "create_query"
    assert isinstance(probe_gpu_timer(gpu_timer), GpuTimerUnavailable)


def test_configure_is_cached(gpu_timer, clock):
    manager = GpuTimingManager(clock=clock)
    manager.configure(None)
    manager.configure(gpu_timer)

    assert manager.state == GpuTimingState.UNAVAILABLE
    assert gpu_timer.created == []


def test_inflight_pool_never_exceeds_capacity(manager, gpu_timer):
    """Queries that never resolve are evicted oldest-first."""
    for _ in range(20):
        assert manager.issue_query() is True
        manager.end_query()
        assert manager.inflight_count <= MAX_INFLIGHT_QUERIES

    assert manager.inflight_count == MAX_INFLIGHT_QUERIES
    assert manager.evicted_total == 20 - MAX_INFLIGHT_QUERIES
    assert len(gpu_timer.live) == MAX_INFLIGHT_QUERIES


def test_completed_query_becomes_authoritative(manager, gpu_timer):
    manager.issue_query()
    manager.end_query()
    query = gpu_timer.begun[-1]
    gpu_timer.results[query] = 4_200_000  # ns

    retired = manager.process_completed()

    assert retired == 1
    assert manager.gpu_frame_time == pytest.approx(4.2)
    assert manager.has_measurement is True
    assert query in gpu_timer.deleted
    assert manager.inflight_count == 0
    assert manager.needs_estimate() is False


@pytest.mark.parametrize("bad_result", [float("nan"), float("inf"), -1_000_000])
def test_invalid_query_result_is_discarded(manager, gpu_timer, bad_result):
    manager.issue_query()
    manager.end_query()
    query = gpu_timer.begun[-1]
    gpu_timer.results[query] = bad_result

    retired = manager.process_completed()

    assert retired == 1
    assert query in gpu_timer.deleted
    assert manager.gpu_frame_time == 0.0
    assert manager.has_measurement is False
    assert manager.needs_estimate() is True
    assert manager.is_available is True


def test_invalid_result_keeps_previous_measurement(manager, gpu_timer):
    manager.issue_query()
    manager.end_query()
    gpu_timer.results[gpu_timer.begun[-1]] = 5_000_000
    manager.process_completed()

    manager.issue_query()
    manager.end_query()
    gpu_timer.results[gpu_timer.begun[-1]] = float("nan")
    manager.process_completed()

    assert manager.gpu_frame_time == pytest.approx(5.0)


def test_issue_drains_completed_queries_first(manager, gpu_timer):
    manager.issue_query()
    manager.end_query()
    gpu_timer.results[gpu_timer.begun[-1]] = 2_000_000

    manager.issue_query()

    assert manager.gpu_frame_time == pytest.approx(2.0)
    assert manager.inflight_count == 1


def test_unfinished_query_is_closed_before_next_issue(manager, gpu_timer):
    manager.issue_query()
    manager.issue_query()

    assert gpu_timer.end_calls == 1


def test_xr_presentation_skips_queries(manager, gpu_timer):
    created_before = len(gpu_timer.created)

    assert manager.issue_query(xr_presenting=True) is False
    assert len(gpu_timer.created) == created_before
    assert manager.needs_estimate(xr_presenting=True) is True


@pytest.mark.parametrize("operation", ["begin_query", "end_query", "is_result_available"])
def test_any_failure_disables_timing_for_the_session(manager, gpu_timer, operation):
    manager.issue_query()
    if operation == "end_query":
        gpu_timer.fail_on = "end_query"
        manager.end_query()
    else:
        manager.end_query()
        gpu_timer.fail_on = operation
        manager.issue_query()

    assert manager.state == GpuTimingState.UNAVAILABLE
    assert isinstance(manager.support, GpuTimerUnavailable)

    gpu_timer.fail_on = None
    created_before = len(gpu_timer.created)
    assert manager.issue_query() is False
    assert len(gpu_timer.created) == created_before
    assert manager.needs_estimate() is True


def test_failure_releases_inflight_queries(manager, gpu_timer):
    for _ in range(3):
        manager.issue_query()
        manager.end_query()

    gpu_timer.fail_on = "begin_query"
    manager.issue_query()
    gpu_timer.fail_on = None

    assert manager.inflight_count == 0


def test_release_is_idempotent(manager, gpu_timer):
    manager.issue_query()
    manager.end_query()

    manager.release()
    manager.release()

    assert manager.inflight_count == 0
    assert gpu_timer.live == []


def test_release_without_capability_does_not_raise(clock):
    GpuTimingManager(clock=clock).release()
