"""Background expiry of pairing codes.

Lazy expiry at claim time already rejects dead codes; the sweeper
physically removes them and tells issuers still waiting on a peer.

Usage:
    sweeper = ExpirySweeper(pairing_manager, interval=30.0, on_expired=notify)
    await sweeper.start()
    ...
    await sweeper.stop()
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional

from codeconnect.errors import StoreUnavailableError
from codeconnect.pairing.pairing_manager import PairingManager
from codeconnect.pairing.record import PairingRecord

logger = logging.getLogger(__name__)

ExpiredCallback = Callable[[PairingRecord], Coroutine[Any, Any, None]]


class ExpirySweeper:
    """Runs PairingManager.expire_sweep on a fixed interval."""

    def __init__(
        self,
        pairing_manager: PairingManager,
        interval: float = 30.0,
        on_expired: Optional[ExpiredCallback] = None,
    ):
        """Initialize the sweeper.

        Args:
            pairing_manager: Manager whose records are swept.
            interval: Seconds between sweeps.
            on_expired: Async callback for each removed record.
        """
        self._manager = pairing_manager
        self._interval = interval
        self._on_expired = on_expired
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"ExpirySweeper started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Stop the sweep loop.

        Cancellation lands between store operations, each of which is
        atomic per record, so a half-finished sweep leaves nothing
        inconsistent behind.
        """
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("ExpirySweeper stopped")

    async def sweep_once(self) -> list[PairingRecord]:
        """Run one sweep and notify for each removed record."""
        removed = await self._manager.expire_sweep()
        if self._on_expired:
            for record in removed:
                try:
                    await self._on_expired(record)
                except Exception as e:
                    logger.error(f"Expiry callback failed for {record.code}: {e}")
        return removed

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep_once()
            except StoreUnavailableError as e:
                logger.warning(f"Sweep skipped, store unavailable: {e}")
