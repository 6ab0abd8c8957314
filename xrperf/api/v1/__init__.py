from fastapi import APIRouter
from .websocket import router as ws_router
from .metrics import router as metrics_router

router = APIRouter(prefix="/api/v1")
router.include_router(metrics_router)
router.include_router(ws_router)
