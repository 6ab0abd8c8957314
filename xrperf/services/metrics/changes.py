"""Change detection and severity classification.

Every metric update goes through :class:`ChangeDetector`. Only movements
larger than 5% against a non-zero previous value produce a change event,
which keeps startup (zero baselines) and flat metrics quiet.
"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

from xrperf.core.logging_config import get_logger

logger = get_logger(__name__)

CHANGE_RING_CAPACITY = 100
SIGNIFICANT_CHANGE_PERCENT = 5.0

# Metrics where an increase means things got worse
LOWER_IS_BETTER = frozenset({"ms", "frame_time", "draw_calls", "triangles"})
# Metrics where an increase means things got better
HIGHER_IS_BETTER = frozenset({"fps"})

SEVERITIES = ("excellent", "good", "warning", "critical", "danger")


@dataclass(frozen=True)
class ChangeEvent:
    """A significant movement of one metric between two consecutive values."""
    timestamp: float
    metric: str
    old_value: float
    new_value: float
    delta: float
    delta_percent: float
    severity: str


def classify_change(metric: str, delta_percent: float) -> str:
    """Map a relative change to a severity, taking the metric's direction into account."""
    if metric in LOWER_IS_BETTER:
        if delta_percent > 50:
            return "danger"
        if delta_percent > 25:
            return "critical"
        if delta_percent > 10:
            return "warning"
        if delta_percent < -10:
            return "excellent"
        return "good"

    if metric in HIGHER_IS_BETTER:
        if delta_percent > 25:
            return "excellent"
        if delta_percent > 10:
            return "good"
        if delta_percent < -25:
            return "danger"
        if delta_percent < -10:
            return "critical"
        return "warning"

    return "warning" if abs(delta_percent) > 20 else "good"


def classify_value(metric: str, value: float, memory_used: float = 0.0, memory_limit: float = 0.0) -> str:
    """Classify the current value of a metric on the excellent..danger scale.

    Only ``fps``, ``ms``, ``memory`` and ``draw_calls`` have thresholds;
    everything else is reported as ``good``.
    """
    if metric == "fps":
        if value >= 60:
            return "excellent"
        if value >= 45:
            return "good"
        if value >= 30:
            return "warning"
        if value >= 15:
            return "critical"
        return "danger"

    if metric == "ms":
        if value <= 16:
            return "excellent"
        if value <= 22:
            return "good"
        if value <= 33:
            return "warning"
        if value <= 66:
            return "critical"
        return "danger"

    if metric == "memory":
        if memory_limit <= 0:
            # Heap introspection unavailable
            return "good"
        usage = memory_used / memory_limit * 100
        if usage <= 50:
            return "excellent"
        if usage <= 70:
            return "good"
        if usage <= 85:
            return "warning"
        if usage <= 95:
            return "critical"
        return "danger"

    if metric == "draw_calls":
        if value <= 100:
            return "excellent"
        if value <= 500:
            return "good"
        if value <= 1000:
            return "warning"
        if value <= 2000:
            return "critical"
        return "danger"

    return "good"


class ChangeDetector:
    """Compares consecutive metric values and records significant changes.

    Pending events are kept newest-first in a bounded ring; the oldest are
    dropped silently on overflow. :meth:`drain` hands them out exactly once.
    """

    def __init__(self, capacity: int = CHANGE_RING_CAPACITY, clock=time.time):
        self.capacity = capacity
        self._clock = clock
        self._pending: Deque[ChangeEvent] = deque(maxlen=capacity)
        self.total_emitted = 0

    def compare(self, metric: str, old_value: float, new_value: float) -> Optional[ChangeEvent]:
        """Evaluate one update and record an event if it is significant.

        Args:
            metric: Metric key (e.g. 'fps', 'draw_calls')
            old_value: The metric's immediately preceding value
            new_value: The freshly computed value

        Returns:
            The recorded ChangeEvent, or None if the change was not significant
        """
        delta = new_value - old_value
        delta_percent = (delta / old_value * 100) if old_value != 0 else 0.0

        if old_value == 0 or abs(delta_percent) <= SIGNIFICANT_CHANGE_PERCENT:
            return None

        event = ChangeEvent(
            timestamp=self._clock(),
            metric=metric,
            old_value=old_value,
            new_value=new_value,
            delta=delta,
            delta_percent=delta_percent,
            severity=classify_change(metric, delta_percent),
        )
        # deque(maxlen) drops from the right end when appending left
        self._pending.appendleft(event)
        self.total_emitted += 1

        if event.severity in ("critical", "danger"):
            logger.debug(f"{metric} changed {delta_percent:+.1f}% ({old_value:.2f} -> {new_value:.2f}): {event.severity}")
        return event

    def drain(self) -> List[ChangeEvent]:
        """Return pending events newest-first and clear them."""
        events = list(self._pending)
        self._pending.clear()
        return events

    @property
    def pending_count(self) -> int:
        return len(self._pending)
