"""Track client WebSocket connections and their outbound queues."""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from codeconnect.message import OutboundMessage, encode_outbound

logger = logging.getLogger(__name__)


class WebSocketProtocol(Protocol):
    """Protocol for WebSocket objects (for type hints)."""

    closed: bool

    async def send_str(self, data: str) -> None:
        """Send a text frame."""
        ...

    async def close(self, *, code: int = 1000, message: bytes = b"") -> Any:
        """Close the WebSocket."""
        ...


@dataclass
class Connection:
    """One client socket with its own ordered outbox.

    A single writer task drains the outbox, which gives per-recipient FIFO
    in the order the server queued messages.
    """

    connection_id: str
    ws: Any  # WebSocketProtocol
    outbox: asyncio.Queue
    connected_at: float = field(default_factory=time.time)
    writer_task: Optional[asyncio.Task] = None
    dead: bool = False


class ConnectionManager:
    """Owns every live client connection.

    The relay layer hands messages over with deliver(), which never blocks:
    a full outbox drops the message for that connection only.
    """

    def __init__(self, outbox_size: int = 256, send_timeout: float = 5.0):
        """Initialize connection manager.

        Args:
            outbox_size: Maximum queued messages per connection.
            send_timeout: Timeout for one socket send.
        """
        self.connections: dict[str, Connection] = {}
        self._outbox_size = outbox_size
        self._send_timeout = send_timeout
        self._lock = asyncio.Lock()

    async def add_connection(self, ws: WebSocketProtocol) -> Connection:
        """Register a socket and start its writer.

        Args:
            ws: Prepared WebSocket.

        Returns:
            The created Connection with a fresh id.
        """
        conn = Connection(
            connection_id=uuid.uuid4().hex,
            ws=ws,
            outbox=asyncio.Queue(maxsize=self._outbox_size),
        )
        conn.writer_task = asyncio.create_task(self._writer(conn))

        async with self._lock:
            self.connections[conn.connection_id] = conn

        logger.debug(f"Connection added: {conn.connection_id[:8]}")
        return conn

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        """Get connection by ID."""
        return self.connections.get(connection_id)

    def deliver(self, connection_id: str, message: OutboundMessage) -> bool:
        """Queue a message for one connection without waiting.

        Returns:
            False if the connection is unknown, dead or its outbox is full.
        """
        conn = self.connections.get(connection_id)
        if conn is None or conn.dead:
            return False
        try:
            conn.outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Outbox full for {connection_id[:8]}, dropping message")
            return False
        return True

    async def _writer(self, conn: Connection) -> None:
        """Drain a connection's outbox to its socket."""
        while True:
            message = await conn.outbox.get()
            try:
                await asyncio.wait_for(
                    conn.ws.send_str(encode_outbound(message)),
                    timeout=self._send_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Send timeout to {conn.connection_id[:8]}")
                conn.dead = True
                return
            except Exception as e:
                logger.warning(f"Send to {conn.connection_id[:8]} failed: {e}")
                conn.dead = True
                return

    async def remove_connection(self, connection_id: str) -> Optional[Connection]:
        """Forget a connection and stop its writer.

        Messages still queued are discarded; the socket is owned by the
        HTTP handler and is not closed here.
        """
        async with self._lock:
            conn = self.connections.pop(connection_id, None)

        if conn is None:
            return None

        conn.dead = True
        if conn.writer_task:
            conn.writer_task.cancel()
            try:
                await conn.writer_task
            except asyncio.CancelledError:
                pass
            conn.writer_task = None

        logger.info(
            f"Connection removed: {connection_id[:8]} "
            f"after {time.time() - conn.connected_at:.1f}s"
        )
        return conn

    async def close_all(self) -> None:
        """Close all connections gracefully."""
        async with self._lock:
            conns = list(self.connections.values())

        for conn in conns:
            await self.remove_connection(conn.connection_id)

        if conns:
            await asyncio.gather(
                *[conn.ws.close(code=1001, message=b"Server shutdown") for conn in conns],
                return_exceptions=True,
            )

    def __len__(self) -> int:
        return len(self.connections)
