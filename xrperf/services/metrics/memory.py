"""Heap readout and the coarse memory-leak heuristic.

The leak flag is a doubling check against the heap used at engine
construction. It clears on its own once usage falls back under the line.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from xrperf.core.logging_config import get_logger
from .window import HEAP_HISTORY_WINDOW, RollingWindow

logger = get_logger(__name__)

MEMORY_CHECK_EVERY_FRAMES = 60
LEAK_GROWTH_FACTOR = 2.0


@dataclass(frozen=True)
class HeapReading:
    """Heap sizes in bytes."""
    used: float
    total: float
    limit: float


HeapReader = Callable[[], Optional[HeapReading]]


def psutil_heap_reader() -> Optional[HeapReading]:
    """Read the current process' memory through psutil.

    Resident set size is reported as used, virtual size as total and the
    machine's physical memory as the limit. Returns None if psutil is missing.
    """
    try:
        # Lazy import psutil to avoid hard dependency at module load
        import psutil
    except ImportError:
        return None

    info = psutil.Process().memory_info()
    return HeapReading(
        used=float(info.rss),
        total=float(info.vms),
        limit=float(psutil.virtual_memory().total),
    )


class MemoryMonitor:
    """Samples heap usage once every ``check_every`` frames."""

    def __init__(self, reader: Optional[HeapReader] = psutil_heap_reader, check_every: int = MEMORY_CHECK_EVERY_FRAMES):
        self._reader = reader
        self.check_every = check_every
        self.history = RollingWindow(HEAP_HISTORY_WINDOW, name="heap_used")
        self.reading = HeapReading(used=0.0, total=0.0, limit=0.0)
        self.leak_detected = False
        self._frames_since_check = 0
        self._warned_unavailable = False

        self.baseline: Optional[float] = None
        initial = self._read()
        if initial is not None:
            self.baseline = initial.used
            self.reading = initial

    def _read(self) -> Optional[HeapReading]:
        if self._reader is None:
            return None
        try:
            return self._reader()
        except Exception as e:
            if not self._warned_unavailable:
                logger.warning(f"Heap readout failed, holding last memory values: {e}")
                self._warned_unavailable = True
            return None

    def on_frame(self) -> bool:
        """Count a frame and run a check when due. Returns True if a check ran."""
        self._frames_since_check += 1
        if self._frames_since_check < self.check_every:
            return False
        self._frames_since_check = 0
        self.check()
        return True

    def check(self) -> None:
        reading = self._read()
        if reading is None:
            return
        if not self.history.record(reading.used):
            return

        self.reading = reading
        if self.baseline is None:
            # Heap was not readable at construction
            self.baseline = reading.used

        was_leaking = self.leak_detected
        self.leak_detected = reading.used > self.baseline * LEAK_GROWTH_FACTOR
        if self.leak_detected and not was_leaking:
            logger.warning(
                f"Possible memory leak: heap used {reading.used / (1024 * 1024):.1f}MB "
                f"is over twice the {self.baseline / (1024 * 1024):.1f}MB baseline"
            )
        elif was_leaking and not self.leak_detected:
            logger.info("Heap usage back under the leak threshold")
