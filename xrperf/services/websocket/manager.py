import asyncio
from typing import Any, Dict, List, Set

from fastapi import WebSocket


class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        # Strong references to in-flight sends until they finish
        self._send_tasks: Set[asyncio.Task] = set()

    def register_topic(self, topic: str):
        """Pre-registers a topic so it appears in the topic list even with no active connections."""
        if topic not in self.active_connections:
            self.active_connections[topic] = []

    def has_subscribers(self, topic: str) -> bool:
        return bool(self.active_connections.get(topic))

    def reset_active_connections(self):
        self.active_connections.clear()

    async def connect(self, websocket: WebSocket, topic: str):
        await websocket.accept()
        if topic not in self.active_connections:
            self.active_connections[topic] = []
        self.active_connections[topic].append(websocket)

    def disconnect(self, websocket: WebSocket, topic: str):
        if topic in self.active_connections:
            try:
                self.active_connections[topic].remove(websocket)
            except ValueError:
                pass

    async def broadcast(self, topic: str, message: Any):
        if topic not in self.active_connections:
            return

        for connection in list(self.active_connections[topic]):
            if getattr(connection, '_is_sending', False):
                # Drop this frame for this specific client to avoid blocking the backend
                # and prevent Starlette "Concurrent call to send" RuntimeError.
                continue

            async def _send(conn=connection, msg=message):
                conn._is_sending = True
                try:
                    await conn.send_json(msg)
                except Exception:
                    self.disconnect(conn, topic)
                finally:
                    conn._is_sending = False

            # Fire and forget instead of awaiting sequentially
            task = asyncio.create_task(_send())
            self._send_tasks.add(task)
            task.add_done_callback(self._send_tasks.discard)

    @property
    def pending_sends(self) -> int:
        return len(self._send_tasks)

    def get_topics(self) -> List[str]:
        return sorted(self.active_connections.keys())


manager = ConnectionManager()
