import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from xrperf.services.websocket.manager import ConnectionManager


def _socket(send_json=None):
    ws = MagicMock()
    ws.accept = AsyncMock()
    ws.send_json = send_json or AsyncMock()
    ws._is_sending = False
    return ws


def test_registered_topic_has_no_subscribers():
    manager = ConnectionManager()
    manager.register_topic("performance_metrics")

    assert manager.get_topics() == ["performance_metrics"]
    assert manager.has_subscribers("performance_metrics") is False
    assert manager.has_subscribers("unknown") is False


@pytest.mark.asyncio
async def test_broadcast_reaches_connected_sockets():
    manager = ConnectionManager()
    ws = _socket()
    await manager.connect(ws, "performance_metrics")

    await manager.broadcast("performance_metrics", {"fps": 60})
    await asyncio.sleep(0)

    ws.accept.assert_awaited_once()
    ws.send_json.assert_awaited_once_with({"fps": 60})
    assert manager.has_subscribers("performance_metrics") is True


@pytest.mark.asyncio
async def test_failed_send_disconnects_socket():
    manager = ConnectionManager()
    ws = _socket(send_json=AsyncMock(side_effect=RuntimeError("closed")))
    await manager.connect(ws, "performance_metrics")

    await manager.broadcast("performance_metrics", {"fps": 60})
    await asyncio.sleep(0)

    assert manager.has_subscribers("performance_metrics") is False


@pytest.mark.asyncio
async def test_busy_socket_skips_frame():
    manager = ConnectionManager()
    ws = _socket()
    await manager.connect(ws, "performance_metrics")
    ws._is_sending = True

    await manager.broadcast("performance_metrics", {"fps": 60})
    await asyncio.sleep(0)

    ws.send_json.assert_not_called()


def test_disconnect_unknown_socket_is_harmless():
    manager = ConnectionManager()
    manager.register_topic("performance_metrics")

    manager.disconnect(_socket(), "performance_metrics")
    manager.disconnect(_socket(), "missing")
    manager.reset_active_connections()

    assert manager.get_topics() == []


@pytest.mark.asyncio
async def test_in_flight_sends_are_held_until_done():
    manager = ConnectionManager()
    release = asyncio.Event()

    async def slow_send(message):
        await release.wait()

    ws = _socket(send_json=AsyncMock(side_effect=slow_send))
    await manager.connect(ws, "performance_metrics")

    await manager.broadcast("performance_metrics", {"fps": 60})
    await asyncio.sleep(0)
    assert manager.pending_sends == 1

    release.set()
    await asyncio.sleep(0.01)

    assert manager.pending_sends == 0
    ws.send_json.assert_awaited_once_with({"fps": 60})
