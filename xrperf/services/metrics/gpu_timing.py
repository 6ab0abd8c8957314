"""GPU frame timing via asynchronous timer queries, with an estimator fallback.

Timer query support varies by platform and driver. The capability is probed
once per session and cached as a tagged variant (:class:`GpuTimerAvailable`
or :class:`GpuTimerUnavailable`). While queries work, results are polled
without blocking and retired into ``gpu_frame_time``. Whenever they don't,
a load-based estimate is used instead.
"""

import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Optional, Protocol, Union

from xrperf.core.logging_config import get_logger
from .window import is_valid_sample, smooth

logger = get_logger(__name__)

MAX_INFLIGHT_QUERIES = 5
GPU_ESTIMATE_SMOOTHING = 0.3
GPU_BASE_OVERHEAD_MS = 0.5
GPU_MAX_FRAME_SHARE = 0.8


class GpuTimerCapability(Protocol):
    """Elapsed-time query interface exposed by the host's graphics binding."""

    def create_query(self) -> Any:
        ...

    def begin_query(self, query: Any) -> None:
        ...

    def end_query(self) -> None:
        ...

    def is_result_available(self, query: Any) -> bool:
        ...

    def get_result_ns(self, query: Any) -> float:
        ...

    def delete_query(self, query: Any) -> None:
        ...


@dataclass(frozen=True)
class GpuTimerAvailable:
    capability: GpuTimerCapability


@dataclass(frozen=True)
class GpuTimerUnavailable:
    reason: str


GpuTimerSupport = Union[GpuTimerAvailable, GpuTimerUnavailable]


class GpuTimingState(str, Enum):
    UNPROBED = "unprobed"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


@dataclass
class GpuQueryHandle:
    """An in-flight timer query and the time it was issued (ms)."""
    query: Any
    issued_at: float


@dataclass(frozen=True)
class RenderLoad:
    """Per-frame load figures used by the GPU time estimator."""
    draw_calls: float = 0.0
    triangles: float = 0.0
    fragment_complexity: float = 0.0
    textures: float = 0.0


def estimate_gpu_time(load: RenderLoad) -> float:
    """Deterministic GPU time estimate (ms), monotone in every load figure."""
    draw_call_cost = load.draw_calls * 0.1
    triangle_cost = (load.triangles / 1000) * 0.05
    shader_cost = (load.fragment_complexity / 100) * 0.2
    texture_cost = load.textures * 0.02
    return GPU_BASE_OVERHEAD_MS + draw_call_cost + triangle_cost + shader_cost + texture_cost


def clamp_gpu_time(gpu_frame_time: float, frame_time: float) -> float:
    """Keep GPU time within [0.5, 80% of the total frame time]."""
    return max(GPU_BASE_OVERHEAD_MS, min(gpu_frame_time, frame_time * GPU_MAX_FRAME_SHARE))


def probe_gpu_timer(capability: Optional[GpuTimerCapability]) -> GpuTimerSupport:
    """Check once whether ``capability`` can actually create queries."""
    if capability is None:
        return GpuTimerUnavailable("timer query extension not present")

    try:
        test_query = capability.create_query()
    except Exception as e:
        return GpuTimerUnavailable(f"test query failed: {e}")

    if test_query is None:
        return GpuTimerUnavailable("create_query returned no query")

    try:
        capability.delete_query(test_query)
    except Exception as e:
        return GpuTimerUnavailable(f"test query cleanup failed: {e}")

    return GpuTimerAvailable(capability)


class GpuTimingManager:
    """Owns the pool of in-flight GPU timer queries and the GPU time estimate.

    Any failing capability call moves the manager to UNAVAILABLE for the rest
    of the session; timing is never retried after that.
    """

    def __init__(self, clock=None, max_inflight: int = MAX_INFLIGHT_QUERIES):
        self._clock = clock or (lambda: time.perf_counter() * 1000.0)
        self.max_inflight = max_inflight
        self.state = GpuTimingState.UNPROBED
        self.support: Optional[GpuTimerSupport] = None
        self._capability: Optional[GpuTimerCapability] = None
        self._inflight: Deque[GpuQueryHandle] = deque()
        self._query_open = False

        self.gpu_frame_time = 0.0
        # True once at least one query has resolved
        self.has_measurement = False
        self.resolved_total = 0
        self.evicted_total = 0

    def configure(self, capability: Optional[GpuTimerCapability]) -> GpuTimerSupport:
        """Probe and cache GPU timer support. Only the first call has any effect."""
        if self.state != GpuTimingState.UNPROBED:
            return self.support

        self.support = probe_gpu_timer(capability)
        if isinstance(self.support, GpuTimerAvailable):
            self._capability = self.support.capability
            self.state = GpuTimingState.AVAILABLE
            logger.info("GPU timer queries available")
        else:
            self.state = GpuTimingState.UNAVAILABLE
            logger.info(f"GPU timer queries unavailable ({self.support.reason}), using estimation")
        return self.support

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    @property
    def is_available(self) -> bool:
        return self.state == GpuTimingState.AVAILABLE

    def _fail(self, operation: str, error: Exception) -> None:
        logger.warning(f"GPU timing {operation} failed, disabling timer queries: {error}")
        self.state = GpuTimingState.UNAVAILABLE
        self.support = GpuTimerUnavailable(f"{operation} failed: {error}")
        self._query_open = False
        self.release()

    def process_completed(self) -> int:
        """Retire every in-flight query whose result is ready.

        Returns:
            Number of queries retired
        """
        if not self.is_available:
            return 0

        retired = 0
        remaining: Deque[GpuQueryHandle] = deque()
        for handle in list(self._inflight):
            try:
                if self._capability.is_result_available(handle.query):
                    elapsed_ns = self._capability.get_result_ns(handle.query)
                    self._capability.delete_query(handle.query)
                    retired += 1
                    if is_valid_sample(elapsed_ns):
                        self.gpu_frame_time = elapsed_ns / 1_000_000.0
                        self.has_measurement = True
                    else:
                        logger.debug(f"Discarded invalid GPU timer result {elapsed_ns!r}")
                else:
                    remaining.append(handle)
            except Exception as e:
                # Keep the unretired handles so release() can delete them
                unprocessed = list(self._inflight)[len(remaining) + retired:]
                self._inflight = deque(list(remaining) + unprocessed)
                self.resolved_total += retired
                self._fail("result polling", e)
                return retired

        self._inflight = remaining
        self.resolved_total += retired
        return retired

    def issue_query(self, xr_presenting: bool = False) -> bool:
        """Drain completed queries, then start one new query for this frame.

        Skipped while an XR session is presenting. If the pool is full the
        oldest query is deleted first.

        Returns:
            True if a new query was started
        """
        if not self.is_available or xr_presenting:
            return False

        self.process_completed()
        if not self.is_available:
            return False

        try:
            if self._query_open:
                # Previous frame never ended its query
                self._capability.end_query()
                self._query_open = False

            while len(self._inflight) >= self.max_inflight:
                oldest = self._inflight.popleft()
                self._capability.delete_query(oldest.query)
                self.evicted_total += 1

            query = self._capability.create_query()
            if query is None:
                raise RuntimeError("create_query returned no query")
        except Exception as e:
            self._fail("query issue", e)
            return False

        try:
            self._capability.begin_query(query)
        except Exception as e:
            # Not in the pool yet, so release() would not see it
            self._inflight.append(GpuQueryHandle(query=query, issued_at=self._clock()))
            self._fail("query begin", e)
            return False

        self._inflight.append(GpuQueryHandle(query=query, issued_at=self._clock()))
        self._query_open = True
        return True

    def end_query(self) -> None:
        """Close the query opened by :meth:`issue_query` for this frame."""
        if not self.is_available or not self._query_open:
            return
        try:
            self._capability.end_query()
        except Exception as e:
            self._fail("query end", e)
            return
        self._query_open = False

    def needs_estimate(self, xr_presenting: bool = False) -> bool:
        return not self.is_available or not self.has_measurement or xr_presenting

    def update_estimate(self, load: RenderLoad, frame_time: float) -> float:
        """Blend a fresh load-based estimate into ``gpu_frame_time`` and clamp it."""
        estimate = estimate_gpu_time(load)
        self.gpu_frame_time = smooth(self.gpu_frame_time, estimate, GPU_ESTIMATE_SMOOTHING)
        self.gpu_frame_time = clamp_gpu_time(self.gpu_frame_time, frame_time)
        return self.gpu_frame_time

    def release(self) -> None:
        """Delete every in-flight query. Safe to call repeatedly."""
        handles = list(self._inflight)
        self._inflight.clear()
        if self._capability is None:
            return
        for handle in handles:
            try:
                self._capability.delete_query(handle.query)
            except Exception as e:
                logger.debug(f"Failed to delete GPU query during release: {e}")
