"""Bind client connections to pairing sessions and clean up after them.

Per connection, relative to pairing:

    UNBOUND --(claim / bind / request-code)--> BOUND(session_id)
    BOUND --(leave)--> UNBOUND
    any --(disconnect)--> CLOSED

A connection in CLOSED is forgotten; it never binds again.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from codeconnect.errors import (
    AlreadyBoundError,
    CodeNotFoundError,
    MessageError,
    NotPairedError,
    PairingError,
    PairingErrorKind,
)
from codeconnect.message import (
    CodeExpired,
    CodeIssued,
    Connected,
    InboundMessage,
    JoinWithCode,
    Leave,
    Paired,
    PairingErrorMessage,
    PeerJoined,
    PeerLeft,
    Relay,
    RelayEvent,
    RequestCode,
    parse_inbound,
)
from codeconnect.pairing.pairing_manager import PairingManager
from codeconnect.pairing.record import PairingRecord, PairingState
from codeconnect.relay import RelayChannel
from codeconnect.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

SERVER_SENDER_ID = "server"


class BindingState(Enum):
    """Pairing state of one connection."""

    UNBOUND = "unbound"
    BOUND = "bound"
    CLOSED = "closed"


@dataclass
class ConnectionBinding:
    """Where a connection currently sits."""

    state: BindingState = BindingState.UNBOUND
    session_id: Optional[str] = None
    code: Optional[str] = None


class ConnectionLifecycleHandler:
    """Routes client messages to pairing, registry and relay.

    Inbound messages form a closed set and are dispatched explicitly by type.
    Expected pairing failures become pairing-error replies to the sender;
    they never propagate to the socket handler.
    """

    def __init__(
        self,
        pairing_manager: PairingManager,
        registry: SessionRegistry,
        relay: RelayChannel,
    ):
        """Initialize handler.

        Args:
            pairing_manager: Issues and arbitrates codes.
            registry: Session membership.
            relay: Delivery to connections.
        """
        self._pairing = pairing_manager
        self._registry = registry
        self._relay = relay
        self._bindings: dict[str, ConnectionBinding] = {}

    def state_of(self, connection_id: str) -> BindingState:
        binding = self._bindings.get(connection_id)
        return binding.state if binding else BindingState.CLOSED

    def session_of(self, connection_id: str) -> Optional[str]:
        binding = self._bindings.get(connection_id)
        return binding.session_id if binding else None

    # =========================================================================
    # Transport events
    # =========================================================================

    def on_connect(self, connection_id: str) -> None:
        """Track a new connection as UNBOUND and tell it its id."""
        self._bindings[connection_id] = ConnectionBinding()
        self._relay.send_to(connection_id, Connected(connection_id=connection_id))
        logger.debug(f"Connection {connection_id[:8]} connected")

    async def on_disconnect(self, connection_id: str) -> None:
        """Clean up after a connection that is gone.

        Remaining members hear peer-left; the session and its code close
        once the last member is out.
        """
        binding = self._bindings.pop(connection_id, None)
        if binding is None:
            return
        if binding.state == BindingState.BOUND:
            await self._unbind(connection_id, binding)
        logger.debug(f"Connection {connection_id[:8]} disconnected")

    async def handle_raw(self, connection_id: str, raw: str | bytes) -> None:
        """Parse and handle one client frame."""
        try:
            message = parse_inbound(raw)
        except MessageError as e:
            logger.debug(f"Bad frame from {connection_id[:8]}: {e}")
            self._reply_error(connection_id, e.kind)
            return
        await self.handle(connection_id, message)

    async def handle(self, connection_id: str, message: InboundMessage) -> None:
        """Handle one typed inbound message."""
        binding = self._bindings.get(connection_id)
        if binding is None:
            logger.warning(f"Message from unknown connection {connection_id[:8]}")
            return

        try:
            if isinstance(message, JoinWithCode):
                await self._join_with_code(connection_id, binding, message)
            elif isinstance(message, RequestCode):
                await self._request_code(connection_id, binding, message)
            elif isinstance(message, Relay):
                self._relay_event(connection_id, binding, message)
            elif isinstance(message, Leave):
                await self._leave(connection_id, binding)
            else:
                raise TypeError(f"Unhandled inbound message: {message!r}")
        except (PairingError, MessageError) as e:
            logger.info(f"Pairing error for {connection_id[:8]}: {e.kind.value}")
            self._reply_error(connection_id, e.kind)

    # =========================================================================
    # Inbound message handlers
    # =========================================================================

    async def _join_with_code(
        self,
        connection_id: str,
        binding: ConnectionBinding,
        message: JoinWithCode,
    ) -> None:
        if binding.state == BindingState.BOUND:
            raise AlreadyBoundError("Connection already paired")

        if message.owner_token is not None:
            session_id = await self._pairing.bind_generator(
                message.code, connection_id, message.owner_token
            )
            claimed = False
        else:
            session_id = await self._pairing.claim(message.code, connection_id)
            claimed = True

        code = session_id.rsplit("-", 1)[0]
        await self._bind(connection_id, binding, session_id, code, claimed=claimed)

    async def _request_code(
        self,
        connection_id: str,
        binding: ConnectionBinding,
        message: RequestCode,
    ) -> None:
        if binding.state == BindingState.BOUND:
            raise AlreadyBoundError("Connection already paired")

        try:
            record = await self._pairing.issue(message.ttl_seconds)
        except ValueError as e:
            raise MessageError(str(e)) from e
        self._relay.send_to(
            connection_id,
            CodeIssued(
                code=record.code,
                expires_in_seconds=self._pairing.expires_in(record),
            ),
        )
        await self._bind(connection_id, binding, record.session_id, record.code)

    def _relay_event(
        self,
        connection_id: str,
        binding: ConnectionBinding,
        message: Relay,
    ) -> None:
        if binding.state != BindingState.BOUND or binding.session_id is None:
            raise NotPairedError("Connection not paired")

        self._relay.publish(
            binding.session_id,
            RelayEvent(event=message.event, payload=message.payload, sender_id=connection_id),
            exclude=connection_id,
        )

    async def _leave(self, connection_id: str, binding: ConnectionBinding) -> None:
        if binding.state != BindingState.BOUND:
            raise NotPairedError("Connection not paired")
        await self._unbind(connection_id, binding)
        binding.state = BindingState.UNBOUND
        binding.session_id = None
        binding.code = None

    # =========================================================================
    # Binding helpers
    # =========================================================================

    async def _bind(
        self,
        connection_id: str,
        binding: ConnectionBinding,
        session_id: str,
        code: str,
        claimed: bool = False,
    ) -> None:
        """Join the registry, then announce the pairing.

        A claim only reserves a slot in the code store; the registry join
        happens after it. Two things can change in between: the claimant's
        own socket can go away, or every other member can leave, which
        closes the session and its code. Either way the join is undone.
        Nothing awaits between the membership check and the announcements,
        so a later peer-left is always ordered after paired.
        """
        await self._registry.join(session_id, connection_id)

        if self._bindings.get(connection_id) is not binding:
            logger.info(f"{connection_id[:8]} disconnected before joining {session_id}")
            self._relay.publish(
                session_id, PeerLeft(connection_id=connection_id), exclude=connection_id
            )
            await self._registry.leave(session_id, connection_id)
            return

        if claimed and self._registry.members(session_id) == {connection_id}:
            logger.info(f"Session {session_id} closed before {connection_id[:8]} joined")
            await self._registry.leave(session_id, connection_id)
            raise CodeNotFoundError("Session closed before the claim landed")

        binding.state = BindingState.BOUND
        binding.session_id = session_id
        binding.code = code

        self._relay.send_to(connection_id, Paired(session_id=session_id, code=code))
        self._relay.publish(
            session_id, PeerJoined(connection_id=connection_id), exclude=connection_id
        )
        logger.info(f"{connection_id[:8]} bound to session {session_id}")

    async def _unbind(self, connection_id: str, binding: ConnectionBinding) -> None:
        session_id = binding.session_id
        if session_id is None:
            return
        # Tell the others first, while the leaver still counts as a member
        self._relay.publish(
            session_id, PeerLeft(connection_id=connection_id), exclude=connection_id
        )
        await self._registry.leave(session_id, connection_id)

    def _reply_error(self, connection_id: str, kind: PairingErrorKind) -> None:
        self._relay.send_to(connection_id, PairingErrorMessage.for_kind(kind))

    # =========================================================================
    # Server-originated events
    # =========================================================================

    async def notify_expired(self, record: PairingRecord) -> None:
        """Tell an issuer still waiting for a peer that its code died."""
        if record.state != PairingState.PENDING:
            return
        self._relay.publish(record.session_id, CodeExpired(code=record.code))

    def relay_from_server(self, session_id: str, event: str, payload: Any) -> int:
        """Relay an event that arrived over HTTP to every session member."""
        return self._relay.publish(
            session_id,
            RelayEvent(event=event, payload=payload, sender_id=SERVER_SENDER_ID),
        )
