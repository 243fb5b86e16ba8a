"""Pairing and relay counters.

A single PairingMetrics instance is created by the daemon and handed to
every component that counts something. All mutation happens on the event
loop through the record_* methods, so increments never interleave.
"""

from dataclasses import asdict, dataclass


@dataclass
class PairingMetrics:
    """Process-wide pairing counters."""

    codes_issued: int = 0
    issue_collisions: int = 0
    claims_succeeded: int = 0
    claims_rejected: int = 0
    codes_expired: int = 0
    sessions_opened: int = 0
    sessions_closed: int = 0
    messages_relayed: int = 0
    deliveries_dropped: int = 0

    def record_issued(self, collisions: int = 0) -> None:
        self.codes_issued += 1
        self.issue_collisions += collisions

    def record_claim(self, success: bool) -> None:
        if success:
            self.claims_succeeded += 1
        else:
            self.claims_rejected += 1

    def record_expired(self, count: int = 1) -> None:
        self.codes_expired += count

    def record_session_opened(self) -> None:
        self.sessions_opened += 1

    def record_session_closed(self) -> None:
        self.sessions_closed += 1

    def record_relay(self, delivered: int, dropped: int = 0) -> None:
        self.messages_relayed += delivered
        self.deliveries_dropped += dropped

    @property
    def active_sessions(self) -> int:
        """Sessions opened and not yet closed."""
        return self.sessions_opened - self.sessions_closed

    def snapshot(self) -> dict[str, int]:
        """Copy of all counters."""
        data = asdict(self)
        data["active_sessions"] = self.active_sessions
        return data
