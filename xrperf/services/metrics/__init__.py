"""Real-time performance telemetry for interactive 3D/XR sessions.

This package ingests render-loop, GPU, heap, XR and latency samples,
smooths them over bounded windows, estimates what cannot be measured and
classifies significant changes. All state is session-only and in-memory.
"""

from .changes import ChangeDetector, ChangeEvent, classify_change, classify_value
from .engine import IPerformanceEngine, MetricSample, PerformanceEngine
from .gpu_timing import (
    GpuTimerAvailable,
    GpuTimerCapability,
    GpuTimerUnavailable,
    GpuTimingManager,
    RenderLoad,
    estimate_gpu_time,
)
from .null_engine import NullPerformanceEngine
from .registry import MetricsRegistry
from .window import RollingWindow, average, smooth

__all__ = [
    "ChangeDetector",
    "ChangeEvent",
    "classify_change",
    "classify_value",
    "IPerformanceEngine",
    "MetricSample",
    "PerformanceEngine",
    "GpuTimerAvailable",
    "GpuTimerCapability",
    "GpuTimerUnavailable",
    "GpuTimingManager",
    "RenderLoad",
    "estimate_gpu_time",
    "NullPerformanceEngine",
    "MetricsRegistry",
    "RollingWindow",
    "average",
    "smooth",
]
