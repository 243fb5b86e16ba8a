"""Typed WebSocket messages for codeconnect.

This module provides:
- Inbound messages: JoinWithCode, RequestCode, Relay, Leave
- Outbound messages: Connected, Paired, CodeIssued, PairingErrorMessage,
  RelayEvent, PeerJoined, PeerLeft, CodeExpired
- parse_inbound / encode_outbound: JSON text frame codec

Every frame is a JSON object with a "type" discriminator. The inbound and
outbound sets are closed; anything else is a MessageError.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, ClassVar, Union

from codeconnect.errors import USER_MESSAGES, MessageError, PairingErrorKind

__all__ = [
    "CodeExpired",
    "CodeIssued",
    "Connected",
    "InboundMessage",
    "JoinWithCode",
    "Leave",
    "MessageError",
    "OutboundMessage",
    "Paired",
    "PairingErrorMessage",
    "PeerJoined",
    "PeerLeft",
    "Relay",
    "RelayEvent",
    "RequestCode",
    "encode_outbound",
    "is_valid_ttl",
    "parse_inbound",
]

MAX_EVENT_NAME_LENGTH = 64


# =============================================================================
# Inbound
# =============================================================================


@dataclass(frozen=True)
class JoinWithCode:
    """Join the session behind a code.

    With owner_token the sender is the issuer binding to its own session;
    without it the sender is claiming the code.
    """

    TYPE: ClassVar[str] = "join-with-code"

    code: str
    owner_token: str | None = None


@dataclass(frozen=True)
class RequestCode:
    """Issue a code and bind the sender as its issuer."""

    TYPE: ClassVar[str] = "request-code"

    ttl_seconds: float | None = None


@dataclass(frozen=True)
class Relay:
    """Forward an event to the rest of the session."""

    TYPE: ClassVar[str] = "relay"

    event: str
    payload: Any = None


@dataclass(frozen=True)
class Leave:
    """Leave the current session without closing the socket."""

    TYPE: ClassVar[str] = "leave"


InboundMessage = Union[JoinWithCode, RequestCode, Relay, Leave]


# =============================================================================
# Outbound
# =============================================================================


@dataclass(frozen=True)
class Connected:
    TYPE: ClassVar[str] = "connected"

    connection_id: str


@dataclass(frozen=True)
class Paired:
    TYPE: ClassVar[str] = "paired"

    session_id: str
    code: str


@dataclass(frozen=True)
class CodeIssued:
    TYPE: ClassVar[str] = "code-issued"

    code: str
    expires_in_seconds: int


@dataclass(frozen=True)
class PairingErrorMessage:
    """Discriminated pairing failure; message is the user-facing text."""

    TYPE: ClassVar[str] = "pairing-error"

    kind: PairingErrorKind
    message: str = ""

    @classmethod
    def for_kind(cls, kind: PairingErrorKind) -> "PairingErrorMessage":
        return cls(kind=kind, message=USER_MESSAGES[kind])


@dataclass(frozen=True)
class RelayEvent:
    TYPE: ClassVar[str] = "relay"

    event: str
    payload: Any
    sender_id: str


@dataclass(frozen=True)
class PeerJoined:
    TYPE: ClassVar[str] = "peer-joined"

    connection_id: str


@dataclass(frozen=True)
class PeerLeft:
    TYPE: ClassVar[str] = "peer-left"

    connection_id: str


@dataclass(frozen=True)
class CodeExpired:
    TYPE: ClassVar[str] = "code-expired"

    code: str


OutboundMessage = Union[
    Connected,
    Paired,
    CodeIssued,
    PairingErrorMessage,
    RelayEvent,
    PeerJoined,
    PeerLeft,
    CodeExpired,
]


# =============================================================================
# Codec
# =============================================================================


def is_valid_ttl(value: Any) -> bool:
    """Positive finite number check. json.loads accepts Infinity and NaN."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def _require_str(data: dict, name: str, optional: bool = False) -> str | None:
    value = data.get(name)
    if value is None and optional:
        return None
    if not isinstance(value, str) or not value:
        raise MessageError(f"'{name}' must be a non-empty string")
    return value


def parse_inbound(raw: str | bytes) -> InboundMessage:
    """Parse a client frame into a typed inbound message.

    Args:
        raw: JSON text frame.

    Returns:
        One of the inbound message variants.

    Raises:
        MessageError: On invalid JSON, unknown type or bad fields.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MessageError("Frame must be a JSON object")

    msg_type = data.get("type")

    if msg_type == JoinWithCode.TYPE:
        return JoinWithCode(
            code=_require_str(data, "code"),
            owner_token=_require_str(data, "owner_token", optional=True),
        )

    if msg_type == RequestCode.TYPE:
        ttl = data.get("ttl_seconds")
        if ttl is not None and not is_valid_ttl(ttl):
            raise MessageError("'ttl_seconds' must be a positive finite number")
        return RequestCode(ttl_seconds=ttl)

    if msg_type == Relay.TYPE:
        event = _require_str(data, "event")
        if len(event) > MAX_EVENT_NAME_LENGTH:
            raise MessageError("'event' is too long")
        return Relay(event=event, payload=data.get("payload"))

    if msg_type == Leave.TYPE:
        return Leave()

    raise MessageError(f"Unknown message type: {msg_type!r}")


def _outbound_fields(message: OutboundMessage) -> dict[str, Any]:
    if isinstance(message, Connected):
        return {"connection_id": message.connection_id}
    if isinstance(message, Paired):
        return {"session_id": message.session_id, "code": message.code}
    if isinstance(message, CodeIssued):
        return {"code": message.code, "expires_in_seconds": message.expires_in_seconds}
    if isinstance(message, PairingErrorMessage):
        return {"kind": message.kind.value, "message": message.message}
    if isinstance(message, RelayEvent):
        return {
            "event": message.event,
            "payload": message.payload,
            "sender_id": message.sender_id,
        }
    if isinstance(message, (PeerJoined, PeerLeft)):
        return {"connection_id": message.connection_id}
    if isinstance(message, CodeExpired):
        return {"code": message.code}
    raise TypeError(f"Not an outbound message: {message!r}")


def encode_outbound(message: OutboundMessage) -> str:
    """Serialize an outbound message to a JSON text frame."""
    frame = {"type": message.TYPE}
    frame.update(_outbound_fields(message))
    return json.dumps(frame)
