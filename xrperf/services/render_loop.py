"""Simulated render loop driving the engine when no real renderer is attached.

In ``sim`` mode this stands in for the host application's per-frame
callback: it opens and closes frames at the target rate and pushes synthetic
renderer counters generated with numpy, including occasional load spikes.
"""

import asyncio
import time
from typing import Dict, Optional

import numpy as np

from xrperf.core.logging_config import get_logger
from xrperf.services.metrics.engine import IPerformanceEngine

logger = get_logger(__name__)

# Extra delay after a heavy frame
SPIKE_DELAY_S = 0.012


def synthetic_renderer_stats(rng: np.random.Generator, frame: int, spike: bool = False) -> Dict[str, int]:
    """One frame of plausible renderer counters for a small XR scene."""
    scale = 3.0 if spike else 1.0
    draw_calls = int(rng.normal(120, 8) * scale)
    triangles = int(rng.normal(180_000, 10_000) * scale)
    return {
        "frame": frame,
        "draw_calls": max(draw_calls, 1),
        "triangles": max(triangles, 0),
        "points": 0,
        "lines": int(rng.integers(0, 50)),
        "geometries": 42,
        "textures": 18,
        "programs": 7,
    }


class SimulatedRenderLoop:
    """Drives ``engine`` from an asyncio task at ``target_fps``.

    Args:
        engine: Engine to feed
        target_fps: Frames per second to aim for
        spike_probability: Chance per frame of a heavy frame
        rng: numpy Generator, injectable for deterministic tests
    """

    def __init__(
        self,
        engine: IPerformanceEngine,
        target_fps: float = 60.0,
        spike_probability: float = 0.01,
        rng: Optional[np.random.Generator] = None,
    ):
        self.engine = engine
        self.target_fps = target_fps if target_fps > 0 else 60.0
        self.spike_probability = spike_probability
        self._rng = rng or np.random.default_rng()
        self.frame = 0
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def step(self) -> float:
        """Render one simulated frame.

        Returns:
            Extra seconds the next frame is delayed by; non-zero on spike frames
        """
        spike = bool(self._rng.random() < self.spike_probability)
        self.engine.record_frame_start()
        self.engine.ingest_renderer_stats(synthetic_renderer_stats(self._rng, self.frame, spike))
        self.engine.record_frame_end()
        self.frame += 1
        return SPIKE_DELAY_S if spike else 0.0

    async def _run(self, stop_event: asyncio.Event) -> None:
        interval = 1.0 / self.target_fps
        logger.info(f"Simulated render loop started at {self.target_fps} fps")

        while not stop_event.is_set():
            started = time.perf_counter()
            extra = 0.0
            try:
                extra = self.step()
            except Exception as e:
                logger.error(f"Simulated frame failed: {e}", exc_info=True)

            elapsed = time.perf_counter() - started
            try:
                # Heavy frames stretch the wait so the next frame delta grows
                await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, interval - elapsed) + extra)
                break
            except asyncio.TimeoutError:
                continue

        logger.info(f"Simulated render loop stopped after {self.frame} frames")

    def start(self) -> None:
        if self.running:
            logger.warning("Simulated render loop already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event))

    def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        self._stop_event = None
