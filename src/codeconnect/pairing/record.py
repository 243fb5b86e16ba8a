"""Pairing record state machine.

A PairingRecord is what the code store holds for each issued code.
Only the PairingManager moves a record between states.
"""

import math
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PairingState(Enum):
    """Pairing record states."""

    PENDING = "pending"  # issued, waiting for a claimant
    CLAIMED = "claimed"  # all claimant slots taken
    EXPIRED = "expired"  # past expires_at, eligible for removal
    CLOSED = "closed"  # every member disconnected


# Terminal states have no outgoing transitions.
VALID_TRANSITIONS = {
    PairingState.PENDING: {
        PairingState.PENDING,  # group mode: another claimant joined
        PairingState.CLAIMED,
        PairingState.EXPIRED,
        PairingState.CLOSED,
    },
    PairingState.CLAIMED: {PairingState.EXPIRED, PairingState.CLOSED},
    PairingState.EXPIRED: set(),
    PairingState.CLOSED: {PairingState.EXPIRED},
}


def make_session_id(code: str, created_at: float) -> str:
    """Session id that stays distinct when a code string is re-issued."""
    return f"{code}-{int(created_at * 1000)}"


@dataclass
class PairingRecord:
    """Stored state of one issued code.

    Attributes:
        code: The short code.
        created_at: Unix timestamp of issuance.
        expires_at: Unix timestamp after which the code is dead.
        state: Current pairing state.
        session_id: Relay scope id, fixed at issuance.
        claimants: Connection ids that claimed the code, in claim order.
        owner_token: Secret handed to the issuer for bind_generator.
    """

    code: str
    created_at: float
    expires_at: float
    state: PairingState = PairingState.PENDING
    session_id: str = ""
    claimants: list[str] = field(default_factory=list)
    owner_token: str = field(default_factory=lambda: secrets.token_urlsafe(16))

    def __post_init__(self) -> None:
        if not self.session_id:
            self.session_id = make_session_id(self.code, self.created_at)

    @classmethod
    def create(cls, code: str, ttl_seconds: float, now: float | None = None) -> "PairingRecord":
        """Create a new PENDING record.

        Args:
            code: Freshly generated code.
            ttl_seconds: Lifetime of the code.
            now: Issuance time, defaults to the wall clock.

        Returns:
            New PairingRecord instance.
        """
        created_at = time.time() if now is None else now
        return cls(code=code, created_at=created_at, expires_at=created_at + ttl_seconds)

    @property
    def claim_count(self) -> int:
        return len(self.claimants)

    def is_expired(self, now: float | None = None) -> bool:
        """Check the logical deadline, regardless of physical removal."""
        current = time.time() if now is None else now
        return self.state == PairingState.EXPIRED or current >= self.expires_at

    def is_live(self, now: float | None = None) -> bool:
        """PENDING or CLAIMED and not past the deadline."""
        return (
            self.state in (PairingState.PENDING, PairingState.CLAIMED)
            and not self.is_expired(now)
        )

    def expires_in(self, now: float | None = None) -> int:
        """Seconds left before expiry, rounded up, never negative."""
        current = time.time() if now is None else now
        return max(0, math.ceil(self.expires_at - current))

    def can_transition_to(self, new_state: PairingState) -> bool:
        return new_state in VALID_TRANSITIONS.get(self.state, set())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "code": self.code,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "state": self.state.value,
            "session_id": self.session_id,
            "claimants": list(self.claimants),
            "claim_count": self.claim_count,
            "owner_token": self.owner_token,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "PairingRecord":
        """Create from dict."""
        return cls(
            code=d["code"],
            created_at=d["created_at"],
            expires_at=d["expires_at"],
            state=PairingState(d["state"]),
            session_id=d["session_id"],
            claimants=list(d.get("claimants", [])),
            owner_token=d.get("owner_token", ""),
        )
