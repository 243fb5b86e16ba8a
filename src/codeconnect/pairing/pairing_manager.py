"""Pairing manager owns the lifecycle of every issued code.

Issue, validate, claim, bind the issuer, close and expire. Every state change
is a single conditional write against the code store; nothing here relies on
in-process locking, so several server instances can share one store.
"""

import hmac
import logging
import math
import time
from typing import Callable

from codeconnect.errors import (
    CodeAlreadyClaimedError,
    CodeNotFoundError,
    CodeSpaceExhaustedError,
    PairingError,
)
from codeconnect.metrics import PairingMetrics
from codeconnect.pairing.codes import (
    DEFAULT_ALPHABET,
    DEFAULT_CODE_LENGTH,
    generate_code,
    is_well_formed,
    normalize_code,
)
from codeconnect.pairing.record import PairingRecord, PairingState
from codeconnect.store.base import CodeStore

logger = logging.getLogger(__name__)


class PairingManager:
    """Issues codes and arbitrates claims on them.

    In the default 2-party mode (max_members=2) a code admits exactly one
    claim besides its issuer. Larger max_members values enable group pairing
    with max_members - 1 claims.
    """

    def __init__(
        self,
        store: CodeStore,
        metrics: PairingMetrics | None = None,
        code_length: int = DEFAULT_CODE_LENGTH,
        alphabet: str = DEFAULT_ALPHABET,
        ttl_seconds: int = 600,
        max_ttl_seconds: int = 86400,
        max_issue_attempts: int = 5,
        max_members: int = 2,
        closed_code_policy: str = "release",
        retention_grace: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize pairing manager.

        Args:
            store: Code store holding pairing records.
            metrics: Counters collaborator.
            code_length: Symbols per code.
            alphabet: Symbols codes are drawn from.
            ttl_seconds: Default code lifetime.
            max_ttl_seconds: Longest lifetime a caller may ask for.
            max_issue_attempts: Generation retries before giving up.
            max_members: Session size including the issuer.
            closed_code_policy: "release" deletes a closed record so its code
                is free again, "retain" keeps it until TTL.
            retention_grace: Extra store TTL so expired records stay visible
                to expire_sweep.
            clock: Time source, injectable for tests.
        """
        self.store = store
        self.metrics = metrics or PairingMetrics()
        self.code_length = code_length
        self.alphabet = alphabet
        self.ttl_seconds = ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds
        self.max_issue_attempts = max_issue_attempts
        self.max_members = max_members
        self.closed_code_policy = closed_code_policy
        self.retention_grace = retention_grace
        self._clock = clock

    @property
    def max_claims(self) -> int:
        return self.max_members - 1

    def _normalize(self, raw: str) -> str | None:
        if not isinstance(raw, str):
            return None
        code = normalize_code(raw, self.alphabet)
        if not is_well_formed(code, self.code_length, self.alphabet):
            return None
        return code

    def expires_in(self, record: PairingRecord) -> int:
        """Seconds left on a record by the manager clock."""
        return record.expires_in(self._clock())

    async def _load(self, code: str) -> PairingRecord | None:
        data = await self.store.get(code)
        if data is None:
            return None
        return PairingRecord.from_dict(data)

    # =========================================================================
    # Issuance
    # =========================================================================

    async def issue(self, ttl_seconds: float | None = None) -> PairingRecord:
        """Issue a fresh PENDING code.

        Args:
            ttl_seconds: Lifetime, defaults to the configured TTL.

        Returns:
            The stored record. Its code is what gets shared.

        Raises:
            ValueError: If ttl_seconds is not a positive finite number no
                larger than max_ttl_seconds.
            CodeSpaceExhaustedError: If every attempt hit a live code.
            StoreUnavailableError: If the store failed.
        """
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if not math.isfinite(ttl) or not 0 < ttl <= self.max_ttl_seconds:
            raise ValueError(
                f"ttl_seconds must be in (0, {self.max_ttl_seconds}], got {ttl}"
            )

        store_ttl = math.ceil(ttl) + self.retention_grace
        for attempt in range(self.max_issue_attempts):
            code = generate_code(self.code_length, self.alphabet)
            record = PairingRecord.create(code, ttl, now=self._clock())
            if await self.store.set_if_absent(code, record.to_dict(), store_ttl):
                self.metrics.record_issued(collisions=attempt)
                logger.info(f"Code issued: {code} (expires in {ttl}s)")
                return record
            logger.debug(f"Code collision on {code}, retrying")

        logger.error(
            f"No free code after {self.max_issue_attempts} attempts; "
            "widen the code length or shorten the TTL"
        )
        raise CodeSpaceExhaustedError(
            f"No free code after {self.max_issue_attempts} attempts"
        )

    # =========================================================================
    # Validation and claims
    # =========================================================================

    async def validate(self, code: str) -> PairingRecord | None:
        """Read-only joinability check.

        Returns:
            The record if the code is PENDING and unexpired, None otherwise.
        """
        key = self._normalize(code)
        if key is None:
            return None
        record = await self._load(key)
        if record is None or record.is_expired(self._clock()):
            return None
        if record.state != PairingState.PENDING:
            return None
        return record

    async def lookup(self, code: str) -> PairingRecord | None:
        """Live PENDING or CLAIMED record behind a code, read-only."""
        key = self._normalize(code)
        if key is None:
            return None
        record = await self._load(key)
        if record is None or not record.is_live(self._clock()):
            return None
        return record

    def _check_claimable(self, record: PairingRecord | None) -> PairingRecord:
        if record is None or record.is_expired(self._clock()):
            raise CodeNotFoundError("Code not found or expired")
        if record.state == PairingState.PENDING:
            return record
        # CLAIMED, or CLOSED under the retain policy
        raise CodeAlreadyClaimedError("Code already used")

    async def claim(self, code: str, connection_id: str) -> str:
        """Redeem a code for a connection.

        The PENDING check and the claimant write are one conditional store
        update keyed on state and claim count. Of any number of concurrent
        claims for the last free slot, exactly one update applies.

        Args:
            code: Code as typed by the user.
            connection_id: Claiming connection.

        Returns:
            Session id of the pairing.

        Raises:
            CodeNotFoundError: Absent, malformed or expired code.
            CodeAlreadyClaimedError: Every claim slot is taken.
            StoreUnavailableError: If the store failed.
        """
        try:
            session_id = await self._claim(code, connection_id)
        except PairingError:
            self.metrics.record_claim(success=False)
            raise
        self.metrics.record_claim(success=True)
        return session_id

    async def _claim(self, code: str, connection_id: str) -> str:
        key = self._normalize(code)
        if key is None:
            raise CodeNotFoundError("Malformed code")

        # A lost CAS means another claimant moved the record; re-read and
        # retry, at most once per slot.
        for _ in range(self.max_claims + 1):
            record = self._check_claimable(await self._load(key))
            claimants = record.claimants + [connection_id]
            new_state = (
                PairingState.CLAIMED
                if len(claimants) >= self.max_claims
                else PairingState.PENDING
            )
            swapped = await self.store.compare_and_swap(
                key,
                {
                    "state": PairingState.PENDING.value,
                    "claim_count": record.claim_count,
                    "session_id": record.session_id,
                },
                {
                    "state": new_state.value,
                    "claimants": claimants,
                    "claim_count": len(claimants),
                },
            )
            if swapped:
                logger.info(f"Code {key} claimed by {connection_id[:8]}")
                return record.session_id
            logger.debug(f"Lost claim race on {key}")

        raise CodeAlreadyClaimedError("Code already used")

    async def bind_generator(
        self,
        code: str,
        connection_id: str,
        owner_token: str | None = None,
    ) -> str:
        """Attach the issuing party to its own session.

        No state transition happens; the issuer is implicitly pre-claimed.

        Args:
            code: Issued code.
            connection_id: Issuer's connection.
            owner_token: Token returned at issuance. When given it must match.

        Returns:
            Session id of the pairing.

        Raises:
            CodeNotFoundError: Code not live, or token mismatch.
            StoreUnavailableError: If the store failed.
        """
        record = await self.lookup(code)
        if record is None:
            raise CodeNotFoundError("Code not found or expired")
        # A token mismatch reads as not-found
        if owner_token is not None and not hmac.compare_digest(
            owner_token.encode(), record.owner_token.encode()
        ):
            logger.warning(f"Owner token mismatch for {record.code}")
            raise CodeNotFoundError("Code not found or expired")

        logger.info(f"Issuer {connection_id[:8]} bound to {record.code}")
        return record.session_id

    # =========================================================================
    # Teardown
    # =========================================================================

    async def close(self, session_id: str) -> bool:
        """Mark the record behind a destroyed session CLOSED.

        A claim may land between the read and the conditional write; the
        write is then retried against the moved record for as long as it
        still belongs to this session and can close.

        Returns:
            True if the record was closed by this call.
        """
        code = session_id.rsplit("-", 1)[0]
        for _ in range(self.max_claims + 2):
            record = await self._load(code)
            if record is None or record.session_id != session_id:
                return False
            if not record.can_transition_to(PairingState.CLOSED):
                return False

            swapped = await self.store.compare_and_swap(
                code,
                {
                    "state": record.state.value,
                    "claim_count": record.claim_count,
                    "session_id": session_id,
                },
                {"state": PairingState.CLOSED.value},
            )
            if swapped:
                break
            logger.debug(f"Record {code} moved during close, retrying")
        else:
            logger.warning(f"Gave up closing {code} after repeated races")
            return False

        if self.closed_code_policy == "release":
            await self.store.delete(code)
        logger.info(f"Code {code} closed ({self.closed_code_policy})")
        return True

    async def expire_sweep(self, now: float | None = None) -> list[PairingRecord]:
        """Remove every record past its deadline.

        Each record is first moved to EXPIRED with a conditional update, then
        deleted, so a sweep racing a claim either sees the claim or beats it.
        Running it again with nothing new to expire removes nothing.

        Args:
            now: Reference time, defaults to the manager clock.

        Returns:
            Removed records, as they were before expiry.
        """
        current = self._clock() if now is None else now
        removed: list[PairingRecord] = []

        for code in await self.store.keys():
            record = await self._load(code)
            if record is None or not record.is_expired(current):
                continue

            if record.state != PairingState.EXPIRED:
                swapped = await self.store.compare_and_swap(
                    code,
                    {
                        "state": record.state.value,
                        "claim_count": record.claim_count,
                        "session_id": record.session_id,
                    },
                    {"state": PairingState.EXPIRED.value},
                )
                if not swapped:
                    continue

            await self.store.delete(code)
            removed.append(record)

        if removed:
            self.metrics.record_expired(len(removed))
            logger.info(f"Expired {len(removed)} code(s)")
        return removed

    async def active_records(self) -> list[PairingRecord]:
        """Live PENDING and CLAIMED records, soonest expiry first."""
        now = self._clock()
        records = []
        for code in await self.store.keys():
            record = await self._load(code)
            if record is not None and record.is_live(now):
                records.append(record)
        return sorted(records, key=lambda r: r.expires_at)
