"""Garbage collection timing via ``gc.callbacks``."""

import gc
import time
from typing import Callable, Dict, Optional

from xrperf.core.logging_config import get_logger

logger = get_logger(__name__)


class GcObserver:
    """Reports the duration (ms) of each collection to ``publish``.

    The callback runs in whichever thread triggered the collection, so
    ``publish`` must be thread-safe.
    """

    def __init__(self, publish: Callable[[float], None]):
        self._publish = publish
        self._started_at: Optional[float] = None
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def _callback(self, phase: str, info: Dict) -> None:
        if phase == "start":
            self._started_at = time.perf_counter()
        elif phase == "stop" and self._started_at is not None:
            duration_ms = (time.perf_counter() - self._started_at) * 1000.0
            self._started_at = None
            self._publish(duration_ms)

    def install(self) -> None:
        if self._installed:
            return
        gc.callbacks.append(self._callback)
        self._installed = True
        logger.debug("GC observer installed")

    def uninstall(self) -> None:
        if not self._installed:
            return
        try:
            gc.callbacks.remove(self._callback)
        except ValueError:
            pass
        self._installed = False
        logger.debug("GC observer removed")
