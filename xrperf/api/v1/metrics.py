"""Performance metrics REST API endpoints.

This module provides HTTP endpoints for reading the engine's snapshot,
draining change events, pushing renderer counters and checking health.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from xrperf.core.config import settings
from xrperf.services.metrics.engine import IPerformanceEngine
from xrperf.services.metrics.models import (
    ChangeEventsResponse,
    MetricsSnapshotModel,
    PerformanceHealthModel,
    RendererStatsModel,
)

router = APIRouter(prefix="/metrics", tags=["metrics"])

DISABLED_DETAIL = "Metrics collection is disabled. Set XRPERF_ENABLE_METRICS=true to enable."


def get_engine(request: Request) -> IPerformanceEngine:
    """FastAPI dependency returning the engine owned by the application."""
    return request.app.state.engine


def require_enabled(engine: IPerformanceEngine = Depends(get_engine)) -> IPerformanceEngine:
    if not engine.is_enabled():
        raise HTTPException(status_code=503, detail=DISABLED_DETAIL)
    return engine


def _driven_by_render_loop(request: Request) -> bool:
    render_loop = getattr(request.app.state, "render_loop", None)
    return bool(render_loop and render_loop.running)


@router.get("/", response_model=MetricsSnapshotModel)
async def get_metrics_snapshot(request: Request, engine: IPerformanceEngine = Depends(require_enabled)):
    """Get the latest metrics snapshot.

    Without a render loop, pending producer samples are applied first so the
    snapshot is never older than the last request.

    Raises:
        HTTPException: 503 if metrics collection is disabled
    """
    if not _driven_by_render_loop(request):
        return engine.pump()
    return engine.get_snapshot()


@router.get("/changes", response_model=ChangeEventsResponse)
async def drain_change_events(engine: IPerformanceEngine = Depends(require_enabled)):
    """Return and clear the change events recorded since the last call.

    Each event is delivered to exactly one caller.

    Raises:
        HTTPException: 503 if metrics collection is disabled
    """
    events = engine.drain_change_events()
    return ChangeEventsResponse(events=events, count=len(events))


@router.post("/frame/start", status_code=204, response_class=Response)
async def start_frame(engine: IPerformanceEngine = Depends(require_enabled)):
    """Open a frame on behalf of an external renderer.

    Raises:
        HTTPException: 503 if metrics collection is disabled
    """
    engine.record_frame_start()


@router.post("/frame/end", response_model=MetricsSnapshotModel)
async def end_frame(engine: IPerformanceEngine = Depends(require_enabled)):
    """Close the current frame, run one aggregation pass and return the new snapshot.

    Raises:
        HTTPException: 503 if metrics collection is disabled
    """
    return engine.record_frame_end()


@router.post("/renderer-stats", status_code=202)
async def ingest_renderer_stats(
    request: Request,
    stats: RendererStatsModel,
    engine: IPerformanceEngine = Depends(require_enabled),
):
    """Push renderer counters for the current frame from an external renderer.

    Without a render loop the counters are published right away; otherwise
    they land with the loop's next frame.

    Raises:
        HTTPException: 503 if metrics collection is disabled
    """
    engine.ingest_renderer_stats(stats)
    if not _driven_by_render_loop(request):
        engine.pump()
    return {"accepted": True}


@router.get("/health/performance", response_model=PerformanceHealthModel)
async def get_performance_health(request: Request, engine: IPerformanceEngine = Depends(get_engine)):
    """Get performance health status.

    Lightweight health check that always returns 200, even when metrics
    are disabled.
    """
    broadcaster = getattr(request.app.state, "broadcaster", None)
    render_loop = getattr(request.app.state, "render_loop", None)
    snapshot = engine.get_snapshot()

    return PerformanceHealthModel(
        metrics_enabled=engine.is_enabled(),
        broadcaster_running=bool(broadcaster and broadcaster.running),
        latency_probe_running=engine.latency_probe_running,
        render_loop_running=bool(render_loop and render_loop.running),
        gpu_timing_mode=snapshot.gpu_timing_mode,
        xr_presenting=snapshot.xr_presenting,
        frame_count=snapshot.frame_count,
        version=settings.VERSION,
    )
