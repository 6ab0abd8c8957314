"""Periodic latency probe running as a background asyncio task.

The probe measures how long the event loop takes to get round to a freshly
scheduled callback, the closest thing to an idle callback asyncio offers.
With the synthetic policy enabled (the default) the measurement is turned
into a network-like figure: floored at 15ms plus 10-35ms of jitter. It is a
placeholder policy, not a real network round trip.
"""

import asyncio
import time
from typing import Callable, Optional

import numpy as np

from xrperf.core.logging_config import get_logger
from .window import LATENCY_WINDOW, RollingWindow

logger = get_logger(__name__)

SYNTHETIC_FLOOR_MS = 15.0


class LatencyProbe:
    """Fire-and-forget latency measurements every ``interval`` seconds.

    Args:
        publish: Receives the windowed average after each measurement
        interval: Seconds between measurements
        simulated: Apply the synthetic jitter policy
        rng: numpy Generator, injectable for deterministic tests
    """

    def __init__(
        self,
        publish: Callable[[float], None],
        interval: float = 5.0,
        simulated: bool = True,
        rng: Optional[np.random.Generator] = None,
    ):
        self._publish = publish
        self.interval = interval
        self.simulated = simulated
        self._rng = rng or np.random.default_rng()
        self.window = RollingWindow(LATENCY_WINDOW, name="network_latency")
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _wait_for_idle(self) -> float:
        """Milliseconds until a callback scheduled now actually runs."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        start = time.perf_counter()
        loop.call_soon(lambda: future.done() or future.set_result(time.perf_counter()))
        end = await future
        return (end - start) * 1000.0

    async def measure(self) -> float:
        """Take one measurement, record it and publish the rolling average."""
        try:
            system_latency = await self._wait_for_idle()
            if self.simulated:
                latency = max(system_latency, SYNTHETIC_FLOOR_MS) + (self._rng.random() * 25 + 10)
            else:
                latency = system_latency
        except Exception as e:
            logger.debug(f"Latency measurement failed, using fallback: {e}")
            latency = 30 + self._rng.random() * 40

        self.window.record(latency)
        avg_latency = self.window.average()
        self._publish(avg_latency)
        logger.debug(f"Latency estimated: {latency:.2f}ms, average: {avg_latency:.2f}ms")
        return avg_latency

    async def _probe_loop(self, stop_event: asyncio.Event) -> None:
        logger.info(f"Latency probe started every {self.interval}s")

        while not stop_event.is_set():
            try:
                await self.measure()
            except Exception as e:
                logger.error(f"Error in latency probe: {e}")

            try:
                # Wait for the interval or until stop event is set
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
                break  # Stop event was set
            except asyncio.TimeoutError:
                continue

        logger.info("Latency probe stopped")

    def start(self) -> bool:
        """Start the probe task on the running loop. Returns False without a running loop."""
        if self.running:
            logger.warning("Latency probe already running")
            return True

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.info("No running event loop, latency probe not started")
            return False

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._probe_loop(self._stop_event))
        return True

    def stop(self) -> None:
        """Stop the probe task. Safe to call when it never started."""
        if self._stop_event:
            self._stop_event.set()

        if self._task and not self._task.done():
            self._task.cancel()

        self._task = None
        self._stop_event = None
