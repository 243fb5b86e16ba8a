"""Base exceptions for codeconnect."""

from enum import Enum


class PairingErrorKind(Enum):
    """Distinguishable pairing failures surfaced to clients."""

    NOT_FOUND_OR_EXPIRED = "not_found_or_expired"
    ALREADY_CLAIMED = "already_claimed"
    CODE_SPACE_EXHAUSTED = "code_space_exhausted"
    STORE_UNAVAILABLE = "store_unavailable"
    SESSION_FULL = "session_full"
    ALREADY_BOUND = "already_bound"
    NOT_PAIRED = "not_paired"
    INVALID_MESSAGE = "invalid_message"


# One user-facing message per kind.
USER_MESSAGES = {
    PairingErrorKind.NOT_FOUND_OR_EXPIRED: (
        "Code not found or expired. Check for typos or request a new code."
    ),
    PairingErrorKind.ALREADY_CLAIMED: (
        "This code has already been used. Request a new code."
    ),
    PairingErrorKind.CODE_SPACE_EXHAUSTED: (
        "No free codes are available right now. Try again later."
    ),
    PairingErrorKind.STORE_UNAVAILABLE: (
        "Pairing is temporarily unavailable. Please retry."
    ),
    PairingErrorKind.SESSION_FULL: "This session is full. Request a new code.",
    PairingErrorKind.ALREADY_BOUND: "This connection is already paired.",
    PairingErrorKind.NOT_PAIRED: "Join a session with a code first.",
    PairingErrorKind.INVALID_MESSAGE: "Message could not be understood.",
}


class CodeConnectError(Exception):
    """Base exception for all codeconnect errors."""

    pass


class ConfigError(CodeConnectError):
    """Invalid configuration value."""

    pass


class MessageError(CodeConnectError):
    """Wire message could not be parsed."""

    kind = PairingErrorKind.INVALID_MESSAGE


class PairingError(CodeConnectError):
    """Pairing operation failed with a user-visible kind."""

    kind: PairingErrorKind = PairingErrorKind.NOT_FOUND_OR_EXPIRED

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]


class CodeNotFoundError(PairingError):
    """Code absent, malformed, or past its expiry."""

    kind = PairingErrorKind.NOT_FOUND_OR_EXPIRED


class CodeAlreadyClaimedError(PairingError):
    """Code is valid but its session already has all members."""

    kind = PairingErrorKind.ALREADY_CLAIMED


class CodeSpaceExhaustedError(PairingError):
    """No free code found after bounded retries."""

    kind = PairingErrorKind.CODE_SPACE_EXHAUSTED


class StoreUnavailableError(PairingError):
    """Code store operation failed. Safe to retry."""

    kind = PairingErrorKind.STORE_UNAVAILABLE


class SessionFullError(PairingError):
    """Session already holds its maximum number of members."""

    kind = PairingErrorKind.SESSION_FULL


class AlreadyBoundError(PairingError):
    """Connection is already bound to a session."""

    kind = PairingErrorKind.ALREADY_BOUND


class NotPairedError(PairingError):
    """Connection tried to relay before joining a session."""

    kind = PairingErrorKind.NOT_PAIRED
