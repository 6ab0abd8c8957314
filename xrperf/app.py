from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from xrperf.api.v1 import router as api_router
from xrperf.core.config import settings
from xrperf.core.logging_config import get_logger
from xrperf.services.metrics.broadcaster import MetricsBroadcaster
from xrperf.services.metrics.engine import IPerformanceEngine, PerformanceEngine
from xrperf.services.metrics.null_engine import NullPerformanceEngine
from xrperf.services.render_loop import SimulatedRenderLoop
from xrperf.services.websocket.manager import manager

logger = get_logger("app")


def build_engine() -> IPerformanceEngine:
    """Create the engine selected by configuration."""
    if not settings.XRPERF_ENABLE_METRICS:
        logger.info("Performance metrics disabled")
        return NullPerformanceEngine()

    return PerformanceEngine(
        latency_interval=settings.LATENCY_PROBE_INTERVAL_S,
        latency_simulated=settings.LATENCY_SIMULATED,
    )


def create_app(engine: Optional[IPerformanceEngine] = None, run_render_loop: Optional[bool] = None) -> FastAPI:
    """Build the API around an explicitly provided (or configured) engine.

    Args:
        engine: Engine to serve; built from settings when omitted
        run_render_loop: Drive the engine with the simulated render loop;
            defaults to ``RENDER_LOOP_MODE == "sim"``
    """
    if run_render_loop is None:
        run_render_loop = settings.RENDER_LOOP_MODE == "sim"

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        engine_ = app.state.engine
        engine_.start()

        render_loop = None
        if run_render_loop and engine_.is_enabled():
            render_loop = SimulatedRenderLoop(engine_, target_fps=settings.SIM_TARGET_FPS)
            render_loop.start()
        app.state.render_loop = render_loop

        # Without a render loop nothing else runs the aggregation pass
        broadcaster = MetricsBroadcaster(
            engine_, manager, hz=settings.METRICS_BROADCAST_HZ, pump=render_loop is None
        )
        broadcaster.start()
        app.state.broadcaster = broadcaster

        yield

        # Shutdown
        if render_loop is not None:
            render_loop.stop()
        broadcaster.stop()
        engine_.dispose()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Real-time performance telemetry for 3D/XR sessions",
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.engine = engine if engine is not None else build_engine()
    app.state.broadcaster = None
    app.state.render_loop = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)
    return app
