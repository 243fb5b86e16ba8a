"""Fan out events to the members of one session."""

import logging
from typing import Callable, Optional

from codeconnect.message import OutboundMessage
from codeconnect.metrics import PairingMetrics
from codeconnect.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

# Non-blocking hand-off to the transport: returns False if the message
# could not be queued for that connection.
Deliver = Callable[[str, OutboundMessage], bool]


class RelayChannel:
    """Delivers a message to exactly the members of a session.

    Membership is snapshotted first, so no registry lock is held while
    messages are handed to the transport. Delivery itself is fire-and-forget:
    each connection has its own ordered outbox, and a slow or dead recipient
    only affects its own queue.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        deliver: Deliver,
        metrics: PairingMetrics | None = None,
    ):
        """Initialize relay channel.

        Args:
            registry: Source of session membership.
            deliver: Transport hand-off for one connection.
            metrics: Counters collaborator.
        """
        self._registry = registry
        self._deliver = deliver
        self.metrics = metrics or PairingMetrics()

    def publish(
        self,
        session_id: str,
        message: OutboundMessage,
        exclude: Optional[str] = None,
    ) -> int:
        """Deliver message to every member except exclude.

        Args:
            session_id: Target session.
            message: Message to deliver.
            exclude: Connection to skip, normally the sender.

        Returns:
            Number of recipients the message was queued for.
        """
        recipients = [c for c in self._registry.members(session_id) if c != exclude]

        delivered = 0
        dropped = 0
        for connection_id in recipients:
            try:
                ok = self._deliver(connection_id, message)
            except Exception as e:
                logger.warning(f"Relay to {connection_id[:8]} failed: {e}")
                ok = False
            if ok:
                delivered += 1
            else:
                dropped += 1

        self.metrics.record_relay(delivered, dropped)
        return delivered

    def send_to(self, connection_id: str, message: OutboundMessage) -> bool:
        """Deliver a message to one connection, session or not."""
        return self._deliver(connection_id, message)
