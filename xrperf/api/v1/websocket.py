from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from xrperf.core.logging_config import get_logger
from xrperf.services.metrics.broadcaster import METRICS_TOPIC
from xrperf.services.websocket.manager import manager

router = APIRouter()
logger = get_logger(__name__)


@router.get("/topics")
async def list_topics():
    """Returns available websocket topics"""
    return {
        "topics": manager.get_topics(),
        "description": {
            METRICS_TOPIC: "Latest metrics snapshot, pushed at METRICS_BROADCAST_HZ",
        },
    }


@router.websocket("/ws/{topic}")
async def websocket_endpoint(websocket: WebSocket, topic: str):
    await manager.connect(websocket, topic)
    try:
        # New metrics subscribers get the current snapshot without waiting for the next tick
        engine = getattr(websocket.app.state, "engine", None)
        if topic == METRICS_TOPIC and engine is not None and engine.is_enabled():
            await websocket.send_json(engine.get_snapshot().model_dump())

        while True:
            # Clients only listen; inbound frames are ignored
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break
    except (WebSocketDisconnect, RuntimeError) as e:
        # Starlette raises RuntimeError if receive() is called after disconnect
        logger.debug(f"WebSocket on '{topic}' closed: {e}")
    finally:
        manager.disconnect(websocket, topic)
