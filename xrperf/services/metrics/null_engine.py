"""NullPerformanceEngine - No-op implementation for disabled metrics.

This module provides a null object pattern implementation that does nothing
when metrics are disabled, allowing the render loop to keep calling the
engine without overhead.
"""

from typing import Any, List

from .models import ChangeEventModel, MetricsSnapshotModel


class NullPerformanceEngine:
    """No-op engine for when metrics are disabled.

    All methods are no-ops that consume minimal CPU cycles. The snapshot
    methods return a valid zeroed MetricsSnapshotModel to maintain API contracts.
    """

    _EMPTY = MetricsSnapshotModel()

    def record_frame_start(self) -> None:
        """No-op: start frame timing."""
        pass

    def record_frame_end(self) -> MetricsSnapshotModel:
        """No-op: close the frame."""
        return self._EMPTY

    def ingest_renderer_stats(self, stats: Any) -> None:
        """No-op: record renderer counters."""
        pass

    def pump(self) -> MetricsSnapshotModel:
        return self._EMPTY

    def get_snapshot(self) -> MetricsSnapshotModel:
        """Return a valid empty MetricsSnapshotModel with zero values."""
        return self._EMPTY

    def drain_change_events(self) -> List[ChangeEventModel]:
        return []

    def attach_xr_session(self, session: Any) -> None:
        pass

    def detach_xr_session(self) -> None:
        pass

    def track_shader_compile(self) -> None:
        pass

    def end_shader_compile(self) -> None:
        pass

    def start(self) -> None:
        pass

    def dispose(self) -> None:
        pass

    def is_enabled(self) -> bool:
        """Always returns False for null engine."""
        return False

    @property
    def latency_probe_running(self) -> bool:
        return False
