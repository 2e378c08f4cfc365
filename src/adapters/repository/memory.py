"""
In-process repository adapters - Implement the repository protocols in memory.

Used for local development and the unit/adversarial test suites. The
three repositories share one InMemoryState and every compare-and-swap
runs under its lock, which gives the same exactly-once guarantees the
PostgreSQL adapters get from conditional UPDATEs. State is lost on
restart and is not shared between processes.
"""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime

from src.domain.ports import (
    ACTIVE_STATES,
    Account,
    OtpChallenge,
    PaymentIntentRecord,
    PaymentStatus,
    PendingRegistration,
    RegistrationState,
)


@dataclass
class InMemoryState:
    """Tables shared by the in-memory repositories."""

    lock: threading.RLock = field(default_factory=threading.RLock)
    pending: dict[str, PendingRegistration] = field(default_factory=dict)
    challenges: dict[str, OtpChallenge] = field(default_factory=dict)
    accounts: dict[str, Account] = field(default_factory=dict)
    intents: dict[str, PaymentIntentRecord] = field(default_factory=dict)


_HELD_STATUSES = (PaymentStatus.CREATED, PaymentStatus.CONFIRMED)


def _holds_payment(state: InMemoryState, registration_id: str) -> bool:
    """Whether an open or confirmed intent pins the registration. Caller holds the lock."""
    return any(
        record.registration_id == registration_id and record.status in _HELD_STATUSES
        for record in state.intents.values()
    )


class InMemoryRegistrationRepository:
    """
    Implements RegistrationRepository protocol over InMemoryState.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, state: InMemoryState) -> None:
        self._state = state

    def insert_pending(self, pending: PendingRegistration, challenge: OtpChallenge) -> bool:
        with self._state.lock:
            existing = self._active_for_email(pending.email)
            if existing is not None:
                if existing.expires_at > pending.created_at or _holds_payment(self._state, existing.registration_id):
                    return False
                self._expire(existing)
            self._state.pending[pending.registration_id] = pending
            self._state.challenges[pending.registration_id] = challenge
            return True

    def find_active_by_email(self, email: str, now: datetime) -> PendingRegistration | None:
        with self._state.lock:
            pending = self._active_for_email(email)
            if pending is None:
                return None
            if pending.expires_at <= now and not _holds_payment(self._state, pending.registration_id):
                self._expire(pending)
                return None
            return pending

    def get(self, registration_id: str) -> PendingRegistration | None:
        with self._state.lock:
            return self._state.pending.get(registration_id)

    def get_challenge(self, registration_id: str) -> OtpChallenge | None:
        with self._state.lock:
            return self._state.challenges.get(registration_id)

    def reissue_challenge(
        self, registration_id: str, code_hash: str, issued_at: datetime, expires_at: datetime, attempts: int
    ) -> OtpChallenge | None:
        with self._state.lock:
            pending = self._state.pending.get(registration_id)
            if pending is None or pending.state is not RegistrationState.AWAITING_VERIFICATION:
                return None
            previous = self._state.challenges.get(registration_id)
            challenge = OtpChallenge(
                registration_id=registration_id,
                code_hash=code_hash,
                attempts_remaining=attempts,
                issued_at=issued_at,
                expires_at=expires_at,
                resend_count=(previous.resend_count if previous else 0) + 1,
            )
            self._state.challenges[registration_id] = challenge
            if pending.expires_at < expires_at:
                self._state.pending[registration_id] = replace(pending, expires_at=expires_at)
            return challenge

    def record_failed_attempt(self, registration_id: str) -> int:
        with self._state.lock:
            challenge = self._state.challenges.get(registration_id)
            if challenge is None:
                return 0
            remaining = max(challenge.attempts_remaining - 1, 0)
            self._state.challenges[registration_id] = replace(challenge, attempts_remaining=remaining)
            return remaining

    def consume_challenge(self, registration_id: str, code_hash: str) -> bool:
        with self._state.lock:
            challenge = self._state.challenges.get(registration_id)
            if challenge is None or challenge.code_hash != code_hash or challenge.attempts_remaining <= 0:
                return False
            del self._state.challenges[registration_id]
            return True

    def transition(
        self,
        registration_id: str,
        from_state: RegistrationState,
        to_state: RegistrationState,
        expires_at: datetime | None = None,
    ) -> bool:
        with self._state.lock:
            pending = self._state.pending.get(registration_id)
            if pending is None or pending.state is not from_state:
                return False
            self._state.pending[registration_id] = replace(
                pending, state=to_state, expires_at=expires_at or pending.expires_at
            )
            return True

    def expire_stale(self, now: datetime) -> int:
        with self._state.lock:
            stale = [
                pending
                for pending in self._state.pending.values()
                if pending.state in ACTIVE_STATES
                and pending.expires_at <= now
                and not _holds_payment(self._state, pending.registration_id)
            ]
            for pending in stale:
                self._expire(pending)
            return len(stale)

    def _active_for_email(self, email: str) -> PendingRegistration | None:
        for pending in self._state.pending.values():
            if pending.email == email and pending.state in ACTIVE_STATES:
                return pending
        return None

    def _expire(self, pending: PendingRegistration) -> None:
        self._state.pending[pending.registration_id] = replace(pending, state=RegistrationState.EXPIRED)
        self._state.challenges.pop(pending.registration_id, None)


class InMemoryAccountRepository:
    """Implements AccountRepository protocol over InMemoryState."""

    def __init__(self, state: InMemoryState) -> None:
        self._state = state

    def exists_for_email(self, email: str) -> bool:
        with self._state.lock:
            return any(account.email == email for account in self._state.accounts.values())

    def finalize(self, account: Account, expected_state: RegistrationState) -> bool:
        with self._state.lock:
            pending = self._state.pending.get(account.registration_id)
            if pending is None or pending.state is not expected_state:
                return False
            if self.exists_for_email(account.email):
                return False
            self._state.pending[account.registration_id] = replace(pending, state=RegistrationState.COMPLETED)
            self._state.accounts[account.account_id] = account
            return True

    def get_by_registration(self, registration_id: str) -> Account | None:
        with self._state.lock:
            for account in self._state.accounts.values():
                if account.registration_id == registration_id:
                    return account
            return None

    def count_for_email(self, email: str) -> int:
        with self._state.lock:
            return sum(1 for account in self._state.accounts.values() if account.email == email)


class InMemoryPaymentIntentRepository:
    """Implements PaymentIntentRepository protocol over InMemoryState."""

    def __init__(self, state: InMemoryState) -> None:
        self._state = state

    def insert(self, record: PaymentIntentRecord) -> PaymentIntentRecord:
        with self._state.lock:
            for existing in self._state.intents.values():
                if existing.registration_id == record.registration_id and existing.status in _HELD_STATUSES:
                    return existing
            self._state.intents[record.provider_intent_id] = record
            return record

    def find_open(self, registration_id: str) -> PaymentIntentRecord | None:
        with self._state.lock:
            for record in self._state.intents.values():
                if record.registration_id == registration_id and record.status is PaymentStatus.CREATED:
                    return record
            return None

    def get(self, provider_intent_id: str) -> PaymentIntentRecord | None:
        with self._state.lock:
            return self._state.intents.get(provider_intent_id)

    def transition(self, provider_intent_id: str, from_status: PaymentStatus, to_status: PaymentStatus) -> bool:
        with self._state.lock:
            record = self._state.intents.get(provider_intent_id)
            if record is None or record.status is not from_status:
                return False
            self._state.intents[provider_intent_id] = replace(record, status=to_status)
            return True

    def find_abandoned(self, now: datetime) -> list[PaymentIntentRecord]:
        with self._state.lock:
            abandoned = []
            for record in self._state.intents.values():
                pending = self._state.pending.get(record.registration_id)
                if (
                    record.status is PaymentStatus.CREATED
                    and pending is not None
                    and pending.state in ACTIVE_STATES
                    and pending.expires_at <= now
                ):
                    abandoned.append(record)
            return abandoned
