import itertools
from typing import Any, Callable, Dict, List, Optional

import pytest

from xrperf.services.metrics.engine import PerformanceEngine
from xrperf.services.metrics.memory import HeapReading


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


class FakeHeap:
    """Heap reader returning whatever ``used`` is currently set to."""

    def __init__(self, used: float = 100.0, total: float = 400.0, limit: float = 1000.0):
        self.used = used
        self.total = total
        self.limit = limit
        self.available = True

    def __call__(self) -> Optional[HeapReading]:
        if not self.available:
            return None
        return HeapReading(used=self.used, total=self.total, limit=self.limit)


class FakeGpuTimer:
    """In-memory timer-query binding. Queries are plain integers."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.created: List[int] = []
        self.deleted: List[int] = []
        self.begun: List[int] = []
        self.end_calls = 0
        self.results: Dict[int, float] = {}
        self.fail_on: Optional[str] = None

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_on == operation:
            raise RuntimeError(f"{operation} exploded")

    def create_query(self) -> int:
        self._maybe_fail("create_query")
        query = next(self._ids)
        self.created.append(query)
        return query

    def begin_query(self, query: int) -> None:
        self._maybe_fail("begin_query")
        self.begun.append(query)

    def end_query(self) -> None:
        self._maybe_fail("end_query")
        self.end_calls += 1

    def is_result_available(self, query: int) -> bool:
        self._maybe_fail("is_result_available")
        return query in self.results

    def get_result_ns(self, query: int) -> float:
        return self.results[query]

    def delete_query(self, query: int) -> None:
        self._maybe_fail("delete_query")
        self.deleted.append(query)

    @property
    def live(self) -> List[int]:
        return [q for q in self.created if q not in self.deleted]


class FakeXRFrame:
    def __init__(self, predicted_display_time: Optional[float] = None):
        self.predicted_display_time = predicted_display_time


class FakeXRSession:
    """XR session double; frames are fired by hand."""

    def __init__(self, with_inputs: bool = True):
        self.input_sources: List[Any] = ["left-controller"] if with_inputs else []
        self.listeners: Dict[str, List[Callable[..., None]]] = {}
        self.pending_frame: Optional[Callable[[float, Any], None]] = None

    def request_animation_frame(self, callback):
        self.pending_frame = callback
        return 1

    def add_event_listener(self, event, listener):
        self.listeners.setdefault(event, []).append(listener)

    def remove_event_listener(self, event, listener):
        if listener in self.listeners.get(event, []):
            self.listeners[event].remove(listener)

    def fire_frame(self, time_ms: float, frame: Any = None) -> None:
        callback, self.pending_frame = self.pending_frame, None
        if callback is not None:
            callback(time_ms, frame)

    def emit(self, event: str) -> None:
        for listener in list(self.listeners.get(event, [])):
            listener({"type": event})


@pytest.fixture
def clock():
    return FakeClock(start=1000.0)


@pytest.fixture
def heap():
    return FakeHeap()


@pytest.fixture
def gpu_timer():
    return FakeGpuTimer()


@pytest.fixture
def engine(clock, heap):
    """Engine without GPU timer support, on a fake clock and heap."""
    engine = PerformanceEngine(gpu_timer=None, heap_reader=heap, clock=clock, latency_simulated=False)
    yield engine
    engine.dispose()


def run_frames(engine, clock, count: int, frame_ms: float, stats: Optional[Dict[str, int]] = None):
    """Render ``count`` frames spaced ``frame_ms`` apart. Returns the last snapshot."""
    snapshot = None
    for _ in range(count):
        clock.advance(frame_ms)
        engine.record_frame_start()
        if stats is not None:
            engine.ingest_renderer_stats(stats)
        snapshot = engine.record_frame_end()
    return snapshot


@pytest.fixture
def xr_session():
    return FakeXRSession()


@pytest.fixture
def render_frames():
    return run_frames
