"""HTTP and WebSocket server for codeconnect.

Single aiohttp server handling all routes:
- /health - Health check
- /health/store - Code store reachability
- /api/pairing/generate-code - Issue a code (POST)
- /api/pairing/validate-code - Read-only joinability check (POST)
- /api/pairing/submit-link - Relay a link into a paired session (POST)
- /api/pairing/active-codes - Live codes (GET)
- /ws - Event channel for pairing and relay
"""

import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from aiohttp import WSMsgType, web

from codeconnect.connection_manager import ConnectionManager
from codeconnect.errors import PairingError, PairingErrorKind, USER_MESSAGES
from codeconnect.lifecycle import ConnectionLifecycleHandler
from codeconnect.message import is_valid_ttl
from codeconnect.pairing.pairing_manager import PairingManager
from codeconnect.store.base import CodeStore

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    PairingErrorKind.NOT_FOUND_OR_EXPIRED: 404,
    PairingErrorKind.ALREADY_CLAIMED: 409,
    PairingErrorKind.CODE_SPACE_EXHAUSTED: 503,
    PairingErrorKind.STORE_UNAVAILABLE: 503,
    PairingErrorKind.SESSION_FULL: 409,
}

LINK_EVENT = "link"
MAX_LINK_LENGTH = 2048
WS_HEARTBEAT = 30.0  # seconds


# =============================================================================
# Rate Limiter
# =============================================================================

class RateLimiter:
    """Sliding window limiter keyed by client address.

    A client with no hit inside the last window loses its entry at the next
    prune, which runs at most once per window.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self.requests: Dict[str, Deque[float]] = {}
        self._last_prune = clock()

    def _prune(self, cutoff: float) -> None:
        for key in list(self.requests):
            hits = self.requests[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if not hits:
                del self.requests[key]

    def is_allowed(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds
        if now - self._last_prune >= self.window_seconds:
            self._prune(cutoff)
            self._last_prune = now

        hits = self.requests.setdefault(key, deque())
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if len(hits) >= self.max_requests:
            return False
        hits.append(now)
        return True

    def __len__(self) -> int:
        return len(self.requests)


# =============================================================================
# CORS
# =============================================================================

def cors_middleware(allowed_origins: list[str]) -> Callable:
    """Build a middleware answering preflights and tagging responses."""
    allow_all = "*" in allowed_origins

    def headers_for(origin: str) -> dict[str, str]:
        return {
            "Access-Control-Allow-Origin": "*" if allow_all else origin,
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
            "Access-Control-Max-Age": "86400",
        }

    @web.middleware
    async def middleware(
        request: web.Request,
        handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
    ) -> web.StreamResponse:
        origin = request.headers.get("Origin")
        if origin is None:
            return await handler(request)

        if not allow_all and origin not in allowed_origins:
            logger.warning(f"CORS blocked origin: {origin}")
            return web.json_response({"error": "origin_not_allowed"}, status=403)

        if request.method == "OPTIONS":
            return web.Response(status=204, headers=headers_for(origin))

        response = await handler(request)
        if not isinstance(response, web.WebSocketResponse):
            response.headers.update(headers_for(origin))
        return response

    return middleware


# =============================================================================
# Server
# =============================================================================

class RelayServer:
    """aiohttp server exposing code issuance and the relay socket."""

    def __init__(
        self,
        pairing_manager: PairingManager,
        lifecycle: ConnectionLifecycleHandler,
        connections: ConnectionManager,
        store: CodeStore,
        cors_origins: Optional[list[str]] = None,
        issue_per_minute: int = 30,
        metrics_provider: Optional[Callable[[], dict[str, Any]]] = None,
    ):
        """Initialize server.

        Args:
            pairing_manager: Issues and validates codes.
            lifecycle: Handles socket events.
            connections: Owns socket outboxes.
            store: Code store, for health checks.
            cors_origins: Allowed browser origins, "*" for any.
            issue_per_minute: generate-code requests allowed per client IP.
            metrics_provider: Returns a counters snapshot for /health.
        """
        self.pairing_manager = pairing_manager
        self.lifecycle = lifecycle
        self.connections = connections
        self.store = store
        self._metrics_provider = metrics_provider
        self._issue_limiter = RateLimiter(max_requests=issue_per_minute, window_seconds=60)

        self.app = web.Application(middlewares=[cors_middleware(cors_origins or ["*"])])
        self._setup_routes()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0

    def _setup_routes(self) -> None:
        """Set up all HTTP routes."""
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/health/store", self._handle_store_health)

        self.app.router.add_post("/api/pairing/generate-code", self._handle_generate_code)
        self.app.router.add_post("/api/pairing/validate-code", self._handle_validate_code)
        self.app.router.add_post("/api/pairing/submit-link", self._handle_submit_link)
        self.app.router.add_get("/api/pairing/active-codes", self._handle_active_codes)

        self.app.router.add_get("/ws", self._handle_websocket)

    # =========================================================================
    # Health
    # =========================================================================

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.Response(text="OK")

    async def _handle_store_health(self, request: web.Request) -> web.Response:
        """Report whether the code store answers."""
        if await self.store.ping():
            body: dict[str, Any] = {"store": "ok", "connections": len(self.connections)}
            if self._metrics_provider:
                body["metrics"] = self._metrics_provider()
            return web.json_response(body)
        return web.json_response({"store": "unavailable"}, status=503)

    # =========================================================================
    # Pairing API
    # =========================================================================

    async def _read_json(self, request: web.Request) -> dict[str, Any]:
        if not request.can_read_body:
            return {}
        try:
            data = await request.json()
        except ValueError:
            raise web.HTTPBadRequest(
                text='{"error": "invalid_request"}', content_type="application/json"
            )
        if not isinstance(data, dict):
            raise web.HTTPBadRequest(
                text='{"error": "invalid_request"}', content_type="application/json"
            )
        return data

    async def _handle_generate_code(self, request: web.Request) -> web.Response:
        """Issue a new code."""
        client_ip = request.remote or "unknown"
        if not self._issue_limiter.is_allowed(client_ip):
            logger.warning(f"generate-code: Rate limited IP {client_ip}")
            return web.json_response({"error": "rate_limited"}, status=429)

        data = await self._read_json(request)
        ttl = data.get("ttl_seconds")
        if ttl is not None and not is_valid_ttl(ttl):
            return web.json_response({"error": "invalid_ttl"}, status=400)

        try:
            record = await self.pairing_manager.issue(ttl)
        except ValueError as e:
            logger.info(f"generate-code: {e}")
            return web.json_response({"error": "invalid_ttl"}, status=400)
        except PairingError as e:
            return self._error_response(e.kind)

        return web.json_response({
            "code": record.code,
            "expires_in_seconds": self.pairing_manager.expires_in(record),
            "owner_token": record.owner_token,
        })

    async def _handle_validate_code(self, request: web.Request) -> web.Response:
        """Check whether a code can still be claimed. Never claims it."""
        data = await self._read_json(request)
        code = data.get("code")
        if not isinstance(code, str):
            return web.json_response({"error": "invalid_request"}, status=400)

        try:
            record = await self.pairing_manager.validate(code)
        except PairingError as e:
            return self._error_response(e.kind)

        if record is None:
            return web.json_response({"valid": False})
        return web.json_response({
            "valid": True,
            "expires_in_seconds": self.pairing_manager.expires_in(record),
        })

    async def _handle_submit_link(self, request: web.Request) -> web.Response:
        """Relay a link to everyone in the session behind a code."""
        data = await self._read_json(request)
        code = data.get("code")
        link = data.get("link")
        if not isinstance(code, str) or not isinstance(link, str) or not link:
            return web.json_response({"error": "invalid_request"}, status=400)
        if len(link) > MAX_LINK_LENGTH:
            return web.json_response({"error": "link_too_long"}, status=400)

        try:
            record = await self.pairing_manager.lookup(code)
        except PairingError as e:
            return self._error_response(e.kind)

        if record is None:
            return self._error_response(PairingErrorKind.NOT_FOUND_OR_EXPIRED)

        delivered = self.lifecycle.relay_from_server(
            record.session_id, LINK_EVENT, {"link": link}
        )
        logger.info(f"Link relayed to {delivered} member(s) of {record.session_id}")
        return web.json_response({"delivered": delivered})

    async def _handle_active_codes(self, request: web.Request) -> web.Response:
        """List live codes."""
        try:
            records = await self.pairing_manager.active_records()
        except PairingError as e:
            return self._error_response(e.kind)

        return web.json_response({
            "codes": [
                {
                    "code": r.code,
                    "state": r.state.value,
                    "expires_in_seconds": self.pairing_manager.expires_in(r),
                    "claims": r.claim_count,
                }
                for r in records
            ]
        })

    def _error_response(self, kind: PairingErrorKind) -> web.Response:
        return web.json_response(
            {"error": kind.value, "message": USER_MESSAGES[kind]},
            status=ERROR_STATUS.get(kind, 400),
        )

    # =========================================================================
    # WebSocket
    # =========================================================================

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Run one client's event channel until it goes away."""
        ws = web.WebSocketResponse(heartbeat=WS_HEARTBEAT)
        await ws.prepare(request)

        conn = await self.connections.add_connection(ws)
        connection_id = conn.connection_id
        self.lifecycle.on_connect(connection_id)
        logger.info(f"WebSocket: {connection_id[:8]} connected from {request.remote}")

        try:
            async for msg in ws:
                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    await self.lifecycle.handle_raw(connection_id, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(
                        f"WebSocket: {connection_id[:8]} closed with {ws.exception()}"
                    )
                    break
        finally:
            await self.lifecycle.on_disconnect(connection_id)
            await self.connections.remove_connection(connection_id)
            logger.info(f"WebSocket: {connection_id[:8]} disconnected")

        return ws

    # =========================================================================
    # Server lifecycle
    # =========================================================================

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the server.

        Args:
            host: Host to bind to.
            port: Port to bind to (0 for random).

        Returns:
            App runner for cleanup.
        """
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        if self._site._server and self._site._server.sockets:
            self._port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"Relay server started on {host}:{self._port}")
        return self._runner

    def get_port(self) -> int:
        """Get the actual bound port."""
        return self._port

    async def close(self) -> None:
        """Close all connections and stop server."""
        await self.connections.close_all()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        logger.info("Relay server closed")
