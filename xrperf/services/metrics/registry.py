"""MetricsRegistry - In-memory state for all performance metrics.

This module holds the single source of truth for one engine session: the
latest value of every tracked metric plus the bounded change log. All metric
writes go through :meth:`MetricsRegistry.update` so the change detector sees
every movement. Readers only ever receive frozen snapshots built by
:meth:`MetricsRegistry.publish`.
"""

import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Deque, Dict, List, Optional

from .changes import CHANGE_RING_CAPACITY, ChangeDetector, ChangeEvent, classify_value
from .models import ChangeEventModel, MetricsSnapshotModel


@dataclass
class RendererInfoSample:
    """Raw renderer counters as last reported by the host."""
    frame: int = 0
    calls: int = 0
    triangles: int = 0
    points: int = 0
    lines: int = 0
    geometries: int = 0
    textures: int = 0
    programs: int = 0


@dataclass
class PerformanceMetrics:
    """Mutable working copy of every tracked metric.

    Never handed out; see :class:`MetricsSnapshotModel` for the published form.
    """
    fps: float = 0.0
    average_fps: float = 0.0
    ms: float = 0.0
    frame_time: float = 0.0
    cpu_time: float = 0.0

    memory_used: float = 0.0
    memory_total: float = 0.0
    memory_limit: float = 0.0
    memory_leaks: bool = False

    draw_calls: float = 0.0
    triangles: float = 0.0
    geometries: float = 0.0
    textures: float = 0.0
    programs: float = 0.0
    renderer_info: RendererInfoSample = field(default_factory=RendererInfoSample)

    network_latency: float = 0.0

    xr_presenting: bool = False
    xr_session_init_time: float = 0.0
    motion_to_photon_delay: float = 0.0
    controller_input_lag: float = 0.0
    xr_frame_rate: float = 0.0
    xr_predicted_display_time: float = 0.0

    gpu_timing_mode: str = "unprobed"
    gpu_time: float = 0.0
    gpu_frame_time: float = 0.0
    gpu_fragment_complexity: float = 0.0
    gpu_vertex_complexity: float = 0.0
    gpu_memory_usage: float = 0.0
    shader_compile_time: float = 0.0
    texture_bindings: float = 0.0
    buffer_bindings: float = 0.0

    cpu_frame_time: float = 0.0
    render_call_duration: float = 0.0
    script_time: float = 0.0
    garbage_collection_time: float = 0.0


def _event_model(event: ChangeEvent) -> ChangeEventModel:
    return ChangeEventModel.model_validate(event, from_attributes=True)


class MetricsRegistry:
    """Session-scoped metrics store with a single writer.

    The aggregation pass is the only writer. Each :meth:`publish` builds a
    fresh frozen snapshot, so readers never share mutable state with it.
    """

    def __init__(self, detector: Optional[ChangeDetector] = None, clock=time.time):
        self._clock = clock
        self.detector = detector or ChangeDetector(clock=clock)
        self.metrics = PerformanceMetrics()
        self.frame_count = 0

        # All emitted events, newest first; independent of the drain queue
        self.change_log: Deque[ChangeEvent] = deque(maxlen=CHANGE_RING_CAPACITY)

        self._snapshot = MetricsSnapshotModel()

    def update(self, key: str, value: float) -> Optional[ChangeEvent]:
        """Set a metric, running it through the change detector first."""
        old_value = getattr(self.metrics, key)
        event = self.detector.compare(key, old_value, value)
        if event is not None:
            self.change_log.appendleft(event)
        setattr(self.metrics, key, value)
        return event

    def set(self, key: str, value) -> None:
        """Set a metric without change detection (flags, counters, derived values)."""
        setattr(self.metrics, key, value)

    def severity(self) -> Dict[str, str]:
        m = self.metrics
        return {
            "fps": classify_value("fps", m.fps),
            "ms": classify_value("ms", m.ms),
            "memory": classify_value("memory", m.memory_used, m.memory_used, m.memory_limit),
            "draw_calls": classify_value("draw_calls", m.draw_calls),
        }

    def publish(self) -> MetricsSnapshotModel:
        """Build a new frozen snapshot from the working copy and make it current."""
        data = asdict(self.metrics)
        renderer = data.pop("renderer_info")
        memory = {
            "used": data.pop("memory_used"),
            "total": data.pop("memory_total"),
            "limit": data.pop("memory_limit"),
        }

        self._snapshot = MetricsSnapshotModel(
            timestamp=self._clock(),
            frame_count=self.frame_count,
            memory=memory,
            renderer_info={
                "memory": {"geometries": renderer["geometries"], "textures": renderer["textures"]},
                "render": {
                    "frame": renderer["frame"],
                    "calls": renderer["calls"],
                    "triangles": renderer["triangles"],
                    "points": renderer["points"],
                    "lines": renderer["lines"],
                },
                "programs": renderer["programs"],
            },
            severity=self.severity(),
            recent_changes=[_event_model(event) for event in self.change_log],
            **data,
        )
        return self._snapshot

    def snapshot(self) -> MetricsSnapshotModel:
        """The most recently published snapshot."""
        return self._snapshot

    def drain_changes(self) -> List[ChangeEventModel]:
        return [_event_model(event) for event in self.detector.drain()]

    def reset(self) -> None:
        """Reset all metrics state. Used for testing."""
        self.metrics = PerformanceMetrics()
        self.frame_count = 0
        self.change_log.clear()
        self.detector.drain()
        self._snapshot = MetricsSnapshotModel()
