"""Rolling windows and smoothing helpers for per-metric aggregation.

Raw samples arrive in bursts and at irregular cadences. Everything that
feeds the snapshot is first passed through one of these fixed-capacity
windows or through single-pole exponential smoothing.
"""

import math
from collections import deque
from typing import Deque, Iterable, Iterator

from xrperf.core.logging_config import get_logger

logger = get_logger(__name__)

# Window capacities per metric family
FRAME_WINDOW = 60
FPS_WINDOW = 60
LATENCY_WINDOW = 10
MOTION_WINDOW = 10
CONTROLLER_WINDOW = 20
HEAP_HISTORY_WINDOW = 60


def is_valid_sample(value: float, non_negative: bool = True) -> bool:
    """Return True if a raw sample may enter a window."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return False
    if not math.isfinite(value):
        return False
    if non_negative and value < 0:
        return False
    return True


def average(values: Iterable[float]) -> float:
    """Arithmetic mean of ``values``; 0.0 when there are none."""
    total = 0.0
    count = 0
    for value in values:
        total += value
        count += 1
    if count == 0:
        return 0.0
    return total / count


def smooth(current: float, incoming: float, factor: float) -> float:
    """Single-pole exponential smoothing.

    Args:
        current: Previously smoothed value
        incoming: New raw sample
        factor: Weight of the new sample, in [0, 1]

    Returns:
        ``current * (1 - factor) + incoming * factor``
    """
    return current * (1 - factor) + incoming * factor


class RollingWindow:
    """Fixed-capacity FIFO of recent samples for one metric.

    The oldest sample is evicted once capacity is reached. Samples that are
    not finite (or negative, for windows holding durations and sizes) are
    dropped and leave the window untouched.
    """

    def __init__(self, capacity: int, non_negative: bool = True, name: str = ""):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.non_negative = non_negative
        self.name = name
        self._values: Deque[float] = deque(maxlen=capacity)

    def record(self, value: float) -> bool:
        """Append a sample. Returns False if the sample was dropped."""
        if not is_valid_sample(value, self.non_negative):
            logger.debug(f"Dropped invalid sample for {self.name or 'window'}: {value!r}")
            return False
        self._values.append(float(value))
        return True

    def average(self) -> float:
        """Rolling mean over the samples currently held."""
        return average(self._values)

    @property
    def latest(self) -> float:
        return self._values[-1] if self._values else 0.0

    def clear(self) -> None:
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[float]:
        return iter(self._values)

    def __repr__(self) -> str:
        return f"RollingWindow(name={self.name!r}, capacity={self.capacity}, size={len(self._values)})"
