"""
Integration tests for MetricsBroadcaster background task.

Tests the metrics broadcasting functionality to ensure proper
WebSocket integration and error handling.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from xrperf.services.metrics import NullPerformanceEngine
from xrperf.services.metrics.broadcaster import METRICS_TOPIC, MetricsBroadcaster


@pytest.fixture
def mock_websocket_manager():
    """Mock WebSocket manager with one subscriber on every topic."""
    mock_manager = MagicMock()
    mock_manager.register_topic = MagicMock()
    mock_manager.has_subscribers = MagicMock(return_value=True)
    mock_manager.broadcast = AsyncMock()
    return mock_manager


async def _run_for(broadcaster: MetricsBroadcaster, seconds: float) -> None:
    stop_event = asyncio.Event()
    task = asyncio.create_task(broadcaster._broadcast_loop(stop_event))
    await asyncio.sleep(seconds)
    stop_event.set()
    try:
        await asyncio.wait_for(task, timeout=1.0)
    except asyncio.TimeoutError:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


@pytest.mark.asyncio
async def test_broadcaster_sends_snapshot_payload(engine, clock, render_frames, mock_websocket_manager):
    render_frames(engine, clock, 3, 16.0)
    broadcaster = MetricsBroadcaster(engine, mock_websocket_manager, hz=20)

    await _run_for(broadcaster, 0.12)

    mock_websocket_manager.register_topic.assert_called_once_with(METRICS_TOPIC)
    assert mock_websocket_manager.broadcast.call_count >= 2

    topic, payload = mock_websocket_manager.broadcast.call_args[0]
    assert topic == METRICS_TOPIC
    assert payload["frame_count"] == 3
    assert payload["fps"] == 62
    assert "memory" in payload


@pytest.mark.asyncio
async def test_broadcaster_skips_null_engine(mock_websocket_manager):
    broadcaster = MetricsBroadcaster(NullPerformanceEngine(), mock_websocket_manager, hz=20)

    await _run_for(broadcaster, 0.12)

    mock_websocket_manager.register_topic.assert_called_once_with(METRICS_TOPIC)
    mock_websocket_manager.broadcast.assert_not_called()


@pytest.mark.asyncio
async def test_broadcaster_skips_topic_without_subscribers(engine, mock_websocket_manager):
    mock_websocket_manager.has_subscribers.return_value = False
    broadcaster = MetricsBroadcaster(engine, mock_websocket_manager, hz=20)

    await _run_for(broadcaster, 0.12)

    mock_websocket_manager.broadcast.assert_not_called()


@pytest.mark.asyncio
async def test_broadcaster_survives_broadcast_errors(engine, mock_websocket_manager):
    mock_websocket_manager.broadcast = AsyncMock(side_effect=RuntimeError("socket gone"))
    broadcaster = MetricsBroadcaster(engine, mock_websocket_manager, hz=20)

    await _run_for(broadcaster, 0.12)

    # Loop kept going after the first failure
    assert mock_websocket_manager.broadcast.call_count >= 2


@pytest.mark.asyncio
async def test_start_and_stop(engine, mock_websocket_manager):
    broadcaster = MetricsBroadcaster(engine, mock_websocket_manager, hz=20)

    broadcaster.start()
    assert broadcaster.running is True
    broadcaster.start()  # already running, no second task

    await asyncio.sleep(0.05)
    broadcaster.stop()
    assert broadcaster.running is False
    broadcaster.stop()


def test_invalid_rate_falls_back_to_one_hz(engine, mock_websocket_manager):
    assert MetricsBroadcaster(engine, mock_websocket_manager, hz=0).hz == 1.0


@pytest.mark.asyncio
async def test_pumping_broadcaster_publishes_pending_samples(engine, mock_websocket_manager):
    engine.post_sample("network_latency", 42.0)
    broadcaster = MetricsBroadcaster(engine, mock_websocket_manager, hz=20, pump=True)

    await _run_for(broadcaster, 0.06)

    assert engine.get_snapshot().network_latency == 42.0
    _, payload = mock_websocket_manager.broadcast.call_args[0]
    assert payload["network_latency"] == 42.0


@pytest.mark.asyncio
async def test_pumping_broadcaster_drains_without_subscribers(engine, mock_websocket_manager):
    mock_websocket_manager.has_subscribers.return_value = False
    engine.post_sample("network_latency", 18.0)
    broadcaster = MetricsBroadcaster(engine, mock_websocket_manager, hz=20, pump=True)

    await _run_for(broadcaster, 0.06)

    assert engine.get_snapshot().network_latency == 18.0
    mock_websocket_manager.broadcast.assert_not_called()
