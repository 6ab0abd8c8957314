"""MetricsBroadcaster - Background task for pushing snapshots to WebSocket clients.

Broadcasts the engine's latest MetricsSnapshot payload to the
'performance_metrics' WebSocket topic at a configurable rate.
"""

import asyncio
from typing import Optional

from xrperf.core.logging_config import get_logger
from xrperf.services.websocket.manager import ConnectionManager
from .engine import IPerformanceEngine

logger = get_logger("metrics_broadcaster")

METRICS_TOPIC = "performance_metrics"


class MetricsBroadcaster:
    """Pushes ``engine.get_snapshot()`` to ``manager`` every ``1/hz`` seconds.

    With ``pump`` set, each tick also runs ``engine.pump()`` so producer
    samples get published when no render loop closes frames.
    """

    def __init__(self, engine: IPerformanceEngine, manager: ConnectionManager, hz: float = 1.0, pump: bool = False):
        self.engine = engine
        self.manager = manager
        self.hz = hz if hz > 0 else 1.0
        self.pump = pump
        self._broadcast_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._broadcast_task is not None and not self._broadcast_task.done()

    async def _broadcast_loop(self, stop_event: asyncio.Event) -> None:
        """Background loop that broadcasts snapshots until ``stop_event`` is set."""
        interval = 1.0 / self.hz

        # Register the metrics topic
        self.manager.register_topic(METRICS_TOPIC)
        logger.info(f"Metrics broadcaster started at {self.hz} Hz")

        while not stop_event.is_set():
            try:
                # Skip broadcast if metrics are disabled (NullPerformanceEngine)
                if not self.engine.is_enabled():
                    logger.debug("Metrics disabled, skipping broadcast")
                    snapshot = None
                elif self.pump:
                    snapshot = self.engine.pump()
                else:
                    snapshot = self.engine.get_snapshot()

                if snapshot is not None and self.manager.has_subscribers(METRICS_TOPIC):
                    payload_dict = snapshot.model_dump()

                    await self.manager.broadcast(METRICS_TOPIC, payload_dict)
                    logger.debug(f"Broadcasted metrics snapshot for frame {payload_dict['frame_count']}")

            except Exception as e:
                logger.error(f"Error in metrics broadcast loop: {e}")

            try:
                # Wait for interval or until stop event is set
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                break  # Stop event was set
            except asyncio.TimeoutError:
                continue  # Timeout is normal, continue loop

        logger.info("Metrics broadcaster stopped")

    def start(self) -> None:
        """Start the background broadcaster task."""
        if self.running:
            logger.warning("Metrics broadcaster already running")
            return

        self._stop_event = asyncio.Event()
        self._broadcast_task = asyncio.create_task(self._broadcast_loop(self._stop_event))
        logger.info("Metrics broadcaster task created")

    def stop(self) -> None:
        """Stop the background broadcaster task."""
        if self._stop_event:
            self._stop_event.set()

        if self._broadcast_task and not self._broadcast_task.done():
            self._broadcast_task.cancel()

        self._broadcast_task = None
        self._stop_event = None
        logger.info("Metrics broadcaster stop requested")
