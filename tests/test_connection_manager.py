"""Tests for ConnectionManager."""

import asyncio
import json
import logging

import pytest

from codeconnect.connection_manager import ConnectionManager
from codeconnect.message import PeerLeft, RelayEvent


class MockWebSocket:
    """Records frames; blocks sends while gate is cleared."""

    def __init__(self, blocked: bool = False):
        self.sent: list[dict] = []
        self.closed = False
        self.close_code = None
        self.gate = asyncio.Event()
        if not blocked:
            self.gate.set()

    async def send_str(self, data: str) -> None:
        await self.gate.wait()
        self.sent.append(json.loads(data))

    async def close(self, *, code: int = 1000, message: bytes = b"") -> None:
        self.closed = True
        self.close_code = code


class FailingWebSocket(MockWebSocket):
    async def send_str(self, data: str) -> None:
        raise ConnectionResetError("gone")


def event(n: int) -> RelayEvent:
    return RelayEvent(event="tick", payload=n, sender_id="conn-a")


async def drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestConnections:
    """Tests for registration and removal."""

    @pytest.mark.asyncio
    async def test_add_assigns_unique_ids(self):
        manager = ConnectionManager()
        a = await manager.add_connection(MockWebSocket())
        b = await manager.add_connection(MockWebSocket())

        assert a.connection_id != b.connection_id
        assert len(manager) == 2
        assert manager.get_connection(a.connection_id) is a
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_remove_stops_writer(self):
        manager = ConnectionManager()
        conn = await manager.add_connection(MockWebSocket())

        removed = await manager.remove_connection(conn.connection_id)

        assert removed is conn
        assert conn.writer_task is None
        assert manager.get_connection(conn.connection_id) is None
        assert await manager.remove_connection(conn.connection_id) is None

    @pytest.mark.asyncio
    async def test_remove_logs_connection_lifetime(self, caplog):
        manager = ConnectionManager()
        conn = await manager.add_connection(MockWebSocket())
        conn.connected_at -= 12.5

        with caplog.at_level(logging.INFO, logger="codeconnect.connection_manager"):
            await manager.remove_connection(conn.connection_id)

        assert f"Connection removed: {conn.connection_id[:8]} after 12.5s" in caplog.text

    @pytest.mark.asyncio
    async def test_close_all_closes_sockets(self):
        manager = ConnectionManager()
        ws = MockWebSocket()
        await manager.add_connection(ws)

        await manager.close_all()

        assert ws.closed
        assert ws.close_code == 1001
        assert len(manager) == 0


class TestDeliver:
    """Tests for ordered, non-blocking delivery."""

    @pytest.mark.asyncio
    async def test_fifo_per_connection(self):
        manager = ConnectionManager()
        ws = MockWebSocket()
        conn = await manager.add_connection(ws)

        for n in range(10):
            assert manager.deliver(conn.connection_id, event(n))
        await drain()

        assert [f["payload"] for f in ws.sent] == list(range(10))
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_unknown_connection(self):
        manager = ConnectionManager()
        assert manager.deliver("nope", event(0)) is False

    @pytest.mark.asyncio
    async def test_full_outbox_drops_only_for_that_connection(self):
        """A stalled recipient loses its own messages, nobody else's."""
        manager = ConnectionManager(outbox_size=2)
        slow_ws = MockWebSocket(blocked=True)
        fast_ws = MockWebSocket()
        slow = await manager.add_connection(slow_ws)
        fast = await manager.add_connection(fast_ws)
        await drain()

        slow_results = [manager.deliver(slow.connection_id, event(n)) for n in range(5)]
        fast_results = []
        for n in range(5):
            fast_results.append(manager.deliver(fast.connection_id, event(n)))
            await drain()

        assert False in slow_results
        assert all(fast_results)
        assert [f["payload"] for f in fast_ws.sent] == list(range(5))

        slow_ws.gate.set()
        await drain()
        assert slow_ws.sent
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_failed_send_marks_dead(self):
        manager = ConnectionManager()
        conn = await manager.add_connection(FailingWebSocket())

        manager.deliver(conn.connection_id, PeerLeft(connection_id="x"))
        await drain()

        assert conn.dead
        assert manager.deliver(conn.connection_id, event(1)) is False
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_send_timeout_marks_dead(self):
        manager = ConnectionManager(send_timeout=0.01)
        conn = await manager.add_connection(MockWebSocket(blocked=True))

        manager.deliver(conn.connection_id, event(0))
        await asyncio.sleep(0.05)

        assert conn.dead
        await manager.close_all()
