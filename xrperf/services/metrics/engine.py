"""IPerformanceEngine Protocol and the real PerformanceEngine.

The engine is constructed explicitly by whoever owns the render loop and is
disposed explicitly at the end of the session. Once per rendered frame the
host calls :meth:`record_frame_start`, pushes renderer counters with
:meth:`ingest_renderer_stats` and closes the frame with
:meth:`record_frame_end`, which runs the aggregation pass in a fixed order:

1. drain the inbox fed by asynchronous producers (latency probe, GC
   observer, XR frame and input callbacks)
2. frame timing (``ms``, ``fps``, ``frame_time``) and render call duration
3. GPU query drain or load-based estimate
4. advanced timing and the frame budget check
5. periodic heap check
6. snapshot publish

Change detection happens inline, every metric write goes through it.
"""

import math
import queue
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Union

import numpy as np

from xrperf.core.logging_config import get_logger
from .gc_observer import GcObserver
from .gpu_timing import GpuTimerCapability, GpuTimingManager, GpuTimingState, RenderLoad
from .latency_probe import LatencyProbe
from .memory import HeapReader, MemoryMonitor, psutil_heap_reader
from .models import ChangeEventModel, MetricsSnapshotModel
from .registry import MetricsRegistry
from .window import FPS_WINDOW, FRAME_WINDOW, RollingWindow, is_valid_sample, smooth
from .xr_tracking import XRMessage, XRSession, XRTracker

logger = get_logger(__name__)

RENDER_CALL_SMOOTHING = 0.2
MIN_RENDER_CALL_MS = 0.5
DESKTOP_TARGET_FPS = 60.0
XR_TARGET_FPS = 90.0
FRAME_BUDGET_TOLERANCE = 1.1
SCRIPT_BENCH_ITERATIONS = 1000

# Metrics asynchronous producers are allowed to post
INBOX_METRICS = frozenset({"network_latency", "garbage_collection_time"})

RENDERER_COUNTERS = ("draw_calls", "triangles", "geometries", "textures", "programs")
RENDERER_INFO_FIELDS = ("frame", "points", "lines")


@dataclass(frozen=True)
class MetricSample:
    """A single raw value travelling from a producer to the aggregation pass."""
    key: str
    value: float
    timestamp: float


InboxMessage = Union[MetricSample, XRMessage]


def _read_stat(stats: Any, name: str) -> Any:
    if isinstance(stats, dict):
        return stats.get(name)
    return getattr(stats, name, None)


class IPerformanceEngine(Protocol):
    """Interface the render-loop driver and the API layer program against."""

    def record_frame_start(self) -> None:
        ...

    def record_frame_end(self) -> MetricsSnapshotModel:
        ...

    def pump(self) -> MetricsSnapshotModel:
        ...

    def ingest_renderer_stats(self, stats: Any) -> None:
        ...

    def get_snapshot(self) -> MetricsSnapshotModel:
        ...

    def drain_change_events(self) -> List[ChangeEventModel]:
        ...

    def attach_xr_session(self, session: XRSession) -> None:
        ...

    def detach_xr_session(self) -> None:
        ...

    def track_shader_compile(self) -> None:
        ...

    def end_shader_compile(self) -> None:
        ...

    def start(self) -> None:
        ...

    def dispose(self) -> None:
        ...

    def is_enabled(self) -> bool:
        ...

    @property
    def latency_probe_running(self) -> bool:
        ...


class PerformanceEngine:
    """Metrics aggregation and classification engine for one session.

    Args:
        gpu_timer: Host GPU timer-query binding, or None when the extension
            is absent. Probed once on the first renderer update.
        heap_reader: Callable returning the current HeapReading, or None
        clock: Millisecond monotonic clock; XR frame timestamps must share it
        latency_interval: Seconds between latency probe measurements
        latency_simulated: Apply the synthetic latency policy
        rng: numpy Generator for the latency probe jitter
    """

    def __init__(
        self,
        gpu_timer: Optional[GpuTimerCapability] = None,
        heap_reader: Optional[HeapReader] = psutil_heap_reader,
        clock: Optional[Callable[[], float]] = None,
        latency_interval: float = 5.0,
        latency_simulated: bool = True,
        rng: Optional[np.random.Generator] = None,
    ):
        self._clock = clock or (lambda: time.perf_counter() * 1000.0)
        self._inbox: "queue.SimpleQueue[InboxMessage]" = queue.SimpleQueue()
        self._gpu_timer = gpu_timer

        self.registry = MetricsRegistry()
        self.gpu = GpuTimingManager(clock=self._clock)
        self.memory = MemoryMonitor(reader=heap_reader)
        self.xr = XRTracker(post=self._inbox.put, clock=self._clock)
        self.latency_probe = LatencyProbe(
            publish=lambda value: self.post_sample("network_latency", value),
            interval=latency_interval,
            simulated=latency_simulated,
            rng=rng,
        )
        self.gc_observer = GcObserver(publish=lambda value: self.post_sample("garbage_collection_time", value))

        self.frame_window = RollingWindow(FRAME_WINDOW, name="frame_time")
        self.fps_window = RollingWindow(FPS_WINDOW, name="fps")

        self._frame_started_at: Optional[float] = None
        self._last_frame_end: Optional[float] = None
        self._shader_compile_started_at: Optional[float] = None
        self._disposed = False

        self._apply_memory()
        self.registry.publish()

    # Lifecycle

    def start(self) -> None:
        """Install the GC observer and start the latency probe on the running loop."""
        if self._disposed:
            logger.warning("start() called on a disposed engine")
            return
        self.gc_observer.install()
        self.latency_probe.start()

    def dispose(self) -> None:
        """Release timers, observers, the XR context and in-flight GPU queries.

        Idempotent; sub-resources that were never initialised are skipped.
        """
        if self._disposed:
            return
        self._disposed = True

        self.latency_probe.stop()
        self.gc_observer.uninstall()
        self.xr.detach()
        self.gpu.release()
        logger.info("Performance engine disposed")

    @property
    def disposed(self) -> bool:
        return self._disposed

    def is_enabled(self) -> bool:
        return True

    @property
    def latency_probe_running(self) -> bool:
        return self.latency_probe.running

    # Producers

    def post_sample(self, key: str, value: float) -> None:
        """Hand a sample from an asynchronous producer to the next aggregation pass.

        Thread-safe; never touches the snapshot directly.
        """
        self._inbox.put(MetricSample(key=key, value=value, timestamp=self._clock()))

    # Frame API

    def record_frame_start(self) -> None:
        if self._disposed:
            return
        self._frame_started_at = self._clock()

    def ingest_renderer_stats(self, stats: Any) -> None:
        """Push the renderer counters for the current frame.

        ``stats`` may be a mapping or any object exposing ``draw_calls``,
        ``triangles``, ``geometries``, ``textures``, ``programs`` and
        optionally ``frame``, ``points`` and ``lines``. Invalid counters are
        dropped and the previous value is kept.
        """
        if self._disposed:
            return

        registry = self.registry
        info = registry.metrics.renderer_info

        for name in RENDERER_COUNTERS:
            value = _read_stat(stats, name)
            if value is None or not is_valid_sample(value):
                if value is not None:
                    logger.debug(f"Dropped invalid renderer counter {name}={value!r}")
                continue
            registry.update(name, float(value))
            setattr(info, "calls" if name == "draw_calls" else name, int(value))

        for name in RENDERER_INFO_FIELDS:
            value = _read_stat(stats, name)
            if value is not None and is_valid_sample(value):
                setattr(info, name, int(value))

        m = registry.metrics
        registry.set("gpu_fragment_complexity", m.programs * 100)
        registry.set("gpu_vertex_complexity", m.programs * 50)
        registry.set("gpu_memory_usage", m.textures * 1024 * 1024 + m.geometries * 512 * 1024)
        registry.set("texture_bindings", m.textures)
        registry.set("buffer_bindings", m.geometries)

        if self.gpu.state == GpuTimingState.UNPROBED:
            self.gpu.configure(self._gpu_timer)
        self.gpu.issue_query(xr_presenting=self.xr.is_presenting)

    def record_frame_end(self) -> MetricsSnapshotModel:
        """Close the frame and run one aggregation pass. Returns the published snapshot."""
        if self._disposed:
            return self.registry.snapshot()

        now = self._clock()
        self._drain_inbox()
        self._update_frame_timing(now)
        self._update_render_call(now)
        self.gpu.end_query()
        self._update_gpu()
        self._update_advanced_timing()

        if self.memory.on_frame():
            self._apply_memory()

        self.registry.frame_count += 1
        return self.registry.publish()

    def pump(self) -> MetricsSnapshotModel:
        """Apply pending producer messages and publish without closing a frame."""
        if not self._disposed:
            self._drain_inbox()
        return self.registry.publish()

    def get_snapshot(self) -> MetricsSnapshotModel:
        return self.registry.snapshot()

    def drain_change_events(self) -> List[ChangeEventModel]:
        return self.registry.drain_changes()

    # XR

    def attach_xr_session(self, session: XRSession) -> None:
        if self._disposed:
            return
        self.xr.attach(session)
        self.registry.set("xr_presenting", True)

    def detach_xr_session(self) -> None:
        self.xr.detach()
        self.registry.set("xr_presenting", False)

    # Shader compilation

    def track_shader_compile(self) -> None:
        self._shader_compile_started_at = self._clock()

    def end_shader_compile(self) -> None:
        if self._shader_compile_started_at is None:
            return
        duration = self._clock() - self._shader_compile_started_at
        self._shader_compile_started_at = None
        if is_valid_sample(duration):
            self.registry.update("shader_compile_time", duration)

    # Aggregation steps

    def _drain_inbox(self) -> None:
        while True:
            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                break

            if isinstance(message, MetricSample):
                if message.key not in INBOX_METRICS:
                    logger.debug(f"Ignoring sample for unknown metric {message.key!r}")
                elif is_valid_sample(message.value):
                    self.registry.update(message.key, float(message.value))
            else:
                self.xr.apply(message)

        xr = self.xr.metrics
        registry = self.registry
        registry.set("xr_presenting", self.xr.is_presenting)
        registry.update("xr_session_init_time", xr.session_init_time)
        registry.update("xr_frame_rate", xr.frame_rate)
        registry.update("motion_to_photon_delay", xr.motion_to_photon_delay)
        registry.update("controller_input_lag", xr.controller_input_lag)
        registry.set("xr_predicted_display_time", xr.predicted_display_time)

    def _update_frame_timing(self, now: float) -> None:
        last = self._last_frame_end
        self._last_frame_end = now
        if last is None:
            return

        delta = now - last
        if not (math.isfinite(delta) and delta > 0):
            # Keep previous values
            return

        self.frame_window.record(delta)
        fps = 1000.0 / delta
        self.fps_window.record(fps)

        registry = self.registry
        registry.update("ms", delta)
        registry.update("fps", round(fps))
        registry.set("average_fps", round(self.fps_window.average()))
        registry.update("frame_time", self.frame_window.average())

    def _update_render_call(self, now: float) -> None:
        m = self.registry.metrics
        started = self._frame_started_at
        self._frame_started_at = None

        if started is not None and now >= started:
            duration = now - started
            self.registry.set("cpu_time", duration)
            smoothed = smooth(m.render_call_duration, duration, RENDER_CALL_SMOOTHING)
            self.registry.set("render_call_duration", max(MIN_RENDER_CALL_MS, smoothed))
        else:
            # record_frame_start was skipped for this frame
            estimate = max(MIN_RENDER_CALL_MS, m.frame_time * 0.2 + m.draw_calls * 0.01)
            self.registry.set("render_call_duration", estimate)

    def _update_gpu(self) -> None:
        m = self.registry.metrics
        xr_presenting = self.xr.is_presenting

        if self.gpu.is_available and not xr_presenting:
            self.gpu.process_completed()

        if self.gpu.needs_estimate(xr_presenting):
            load = RenderLoad(
                draw_calls=m.draw_calls,
                triangles=m.triangles,
                fragment_complexity=m.gpu_fragment_complexity,
                textures=m.textures,
            )
            self.gpu.update_estimate(load, m.frame_time)

        self.registry.update("gpu_frame_time", self.gpu.gpu_frame_time)
        self.registry.set("gpu_timing_mode", self.gpu.state.value)

    def _update_advanced_timing(self) -> None:
        registry = self.registry
        m = registry.metrics

        bench_start = time.perf_counter()
        total = 0.0
        for i in range(SCRIPT_BENCH_ITERATIONS):
            total += i * 0.5
        registry.set("script_time", (time.perf_counter() - bench_start) * 1000.0)

        registry.set("cpu_frame_time", max(0.0, m.frame_time - m.gpu_frame_time))

        target_fps = XR_TARGET_FPS if self.xr.is_presenting else DESKTOP_TARGET_FPS
        target_ms = 1000.0 / target_fps
        if m.ms > target_ms * FRAME_BUDGET_TOLERANCE:
            registry.set("gpu_time", m.ms - target_ms)
        else:
            registry.set("gpu_time", 0.0)

    def _apply_memory(self) -> None:
        reading = self.memory.reading
        registry = self.registry
        registry.set("memory_used", reading.used)
        registry.set("memory_total", reading.total)
        registry.set("memory_limit", reading.limit)
        registry.set("memory_leaks", self.memory.leak_detected)
