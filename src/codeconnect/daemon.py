"""Main daemon orchestration - ties all components together."""

import asyncio
import logging
import signal
from typing import Optional

from codeconnect.config import Config
from codeconnect.connection_manager import ConnectionManager
from codeconnect.lifecycle import ConnectionLifecycleHandler
from codeconnect.metrics import PairingMetrics
from codeconnect.pairing.pairing_manager import PairingManager
from codeconnect.pairing.sweeper import ExpirySweeper
from codeconnect.relay import RelayChannel
from codeconnect.server import RelayServer
from codeconnect.session_registry import SessionRegistry
from codeconnect.store.base import CodeStore
from codeconnect.store.memory import MemoryCodeStore
from codeconnect.store.redis_rest import RedisRestCodeStore

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Error during daemon startup."""

    pass


def create_store(config: Config) -> CodeStore:
    """Build the configured code store backend."""
    store_config = config.store
    if store_config.backend == "memory":
        return MemoryCodeStore()
    if store_config.backend == "redis_rest":
        return RedisRestCodeStore(
            url=store_config.url,
            token=store_config.token,
            key_prefix=store_config.key_prefix,
            timeout=store_config.timeout,
        )
    raise StartupError(f"Unknown store backend: {store_config.backend}")


class Daemon:
    """Main daemon orchestrating all components.

    Responsibilities:
    - Build the code store and check it answers
    - Wire pairing, registry, relay and connection handling together
    - Run the expiry sweeper and the HTTP/WebSocket server
    - Handle graceful shutdown
    """

    def __init__(self, config: Config, store: Optional[CodeStore] = None):
        """Initialize daemon.

        Args:
            config: Daemon configuration.
            store: Optional injected code store (for testing).
        """
        self._config = config
        self._running = False

        pairing = config.pairing
        self.metrics = PairingMetrics()
        self.store = store or create_store(config)

        self.pairing_manager = PairingManager(
            store=self.store,
            metrics=self.metrics,
            code_length=pairing.code_length,
            alphabet=pairing.alphabet,
            ttl_seconds=pairing.ttl_seconds,
            max_ttl_seconds=pairing.max_ttl_seconds,
            max_issue_attempts=pairing.max_issue_attempts,
            max_members=pairing.max_members,
            closed_code_policy=pairing.closed_code_policy,
            retention_grace=pairing.retention_grace,
        )
        self.registry = SessionRegistry(
            max_members=pairing.max_members,
            metrics=self.metrics,
            on_session_closed=self._on_session_closed,
        )
        self.connections = ConnectionManager(
            outbox_size=config.relay.outbox_size,
            send_timeout=config.relay.send_timeout,
        )
        self.relay = RelayChannel(
            self.registry, self.connections.deliver, metrics=self.metrics
        )
        self.lifecycle = ConnectionLifecycleHandler(
            self.pairing_manager, self.registry, self.relay
        )
        self.sweeper = ExpirySweeper(
            self.pairing_manager,
            interval=pairing.sweep_interval,
            on_expired=self.lifecycle.notify_expired,
        )
        self.server = RelayServer(
            pairing_manager=self.pairing_manager,
            lifecycle=self.lifecycle,
            connections=self.connections,
            store=self.store,
            cors_origins=config.cors_origins,
            issue_per_minute=config.rate_limit.issue_per_minute,
            metrics_provider=self.metrics.snapshot,
        )

    @property
    def running(self) -> bool:
        return self._running

    def get_port(self) -> int:
        """Get the port the server is listening on."""
        return self.server.get_port() or self._config.port

    async def start(self, install_signal_handlers: bool = True) -> None:
        """Start the daemon.

        Raises:
            StartupError: If the code store does not answer.
        """
        logger.info("Starting daemon...")

        if not await self.store.ping():
            await self.store.close()
            raise StartupError(
                f"Code store '{self._config.store.backend}' is not reachable"
            )

        await self.sweeper.start()
        await self.server.start(host=self._config.host, port=self._config.port)

        if install_signal_handlers:
            self._setup_signals()

        self._running = True
        logger.info(f"Daemon started on {self._config.host}:{self.get_port()}")

    async def run_forever(self) -> None:
        """Run daemon until shutdown signal."""
        if not self._running:
            await self.start()

        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        self._running = False

    def _setup_signals(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda: asyncio.create_task(self.stop()),
            )

    async def _on_session_closed(self, session_id: str) -> None:
        await self.pairing_manager.close(session_id)

    async def _shutdown(self) -> None:
        """Perform graceful shutdown."""
        logger.info("Shutting down daemon...")

        await self.sweeper.stop()
        await self.server.close()
        await self.store.close()

        logger.info(f"Daemon shutdown complete ({self.metrics.snapshot()})")
