"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the records the activation pipeline works with and
the interfaces (ports) that the domain requires from infrastructure.
Adapters implement these protocols.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol


class AccountKind(str, Enum):
    """Kind of account being registered."""

    STUDENT = "student"
    DONOR = "donor"


class RegistrationState(str, Enum):
    """
    Pending registration lifecycle states.

    State Transitions (forward-only):
    - AWAITING_VERIFICATION -> VERIFIED (correct code)
    - VERIFIED -> AWAITING_PAYMENT (students)
    - VERIFIED -> COMPLETED (donors)
    - AWAITING_PAYMENT -> COMPLETED (payment confirmed, first writer wins)
    - any active state -> EXPIRED (reaper / lazy expiry)

    Terminal States:
    - COMPLETED: Account created, pending record is inert
    - EXPIRED: Email is released for a fresh registration
    """

    AWAITING_VERIFICATION = "AWAITING_VERIFICATION"
    VERIFIED = "VERIFIED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


ACTIVE_STATES = (
    RegistrationState.AWAITING_VERIFICATION,
    RegistrationState.VERIFIED,
    RegistrationState.AWAITING_PAYMENT,
)

# State a pending registration must hold for the finalizer to promote it.
FINALIZABLE_STATE = {
    AccountKind.DONOR: RegistrationState.VERIFIED,
    AccountKind.STUDENT: RegistrationState.AWAITING_PAYMENT,
}


class NextStep(str, Enum):
    """What the client should do after a pipeline step."""

    VERIFY_EMAIL = "verify_email"
    PAY = "pay"
    DONE = "done"


class PaymentProvider(str, Enum):
    """Supported payment processors."""

    STRIPE = "stripe"
    PAYPAL = "paypal"


class PaymentStatus(str, Enum):
    """Local status of a payment intent record."""

    CREATED = "CREATED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class ProviderStatus(Enum):
    """Settlement status reported by a payment provider."""

    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"


@dataclass(frozen=True)
class PendingRegistration:
    """A registration attempt not yet promoted to an account."""

    registration_id: str
    email: str
    account_kind: AccountKind
    profile: dict[str, Any]
    password_hash: str
    state: RegistrationState
    created_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class OtpChallenge:
    """One-time code bound to a pending registration. Only the hash is kept."""

    registration_id: str
    code_hash: str
    attempts_remaining: int
    issued_at: datetime
    expires_at: datetime
    resend_count: int = 0


@dataclass(frozen=True)
class PaymentIntentRecord:
    """Local record of a provider-side payment intent."""

    provider_intent_id: str
    registration_id: str
    provider: PaymentProvider
    amount_cents: int
    currency: str
    client_secret: str
    status: PaymentStatus
    created_at: datetime


@dataclass(frozen=True)
class Account:
    """Durable student or donor account."""

    account_id: str
    registration_id: str
    email: str
    account_kind: AccountKind
    profile: dict[str, Any]
    password_hash: str
    created_at: datetime


@dataclass(frozen=True)
class ProviderIntent:
    """What a payment gateway hands back when an intent is created."""

    provider_intent_id: str
    client_secret: str


class RegistrationRepository(Protocol):
    """Port interface for pending registration and OTP persistence."""

    def insert_pending(self, pending: PendingRegistration, challenge: OtpChallenge) -> bool:
        """
        Persist a pending registration together with its first challenge.

        Returns:
            True if inserted, False if an active pending registration
            already holds the email
        """
        ...

    def find_active_by_email(self, email: str, now: datetime) -> PendingRegistration | None:
        """
        Return the active pending registration for an email.

        Records whose expires_at has passed are lazily moved to EXPIRED
        and not returned, unless they hold an open or confirmed payment
        intent; those stay active until the payment is resolved.
        """
        ...

    def get(self, registration_id: str) -> PendingRegistration | None:
        """Return a pending registration by id regardless of state."""
        ...

    def get_challenge(self, registration_id: str) -> OtpChallenge | None:
        """Return the live challenge, or None once consumed."""
        ...

    def reissue_challenge(
        self, registration_id: str, code_hash: str, issued_at: datetime, expires_at: datetime, attempts: int
    ) -> OtpChallenge | None:
        """
        Replace the challenge with a fresh code, incrementing resend_count.

        Only succeeds while the registration is AWAITING_VERIFICATION.
        """
        ...

    def record_failed_attempt(self, registration_id: str) -> int:
        """Atomically decrement attempts_remaining (floor 0) and return the new value."""
        ...

    def consume_challenge(self, registration_id: str, code_hash: str) -> bool:
        """
        Conditionally delete the challenge.

        Succeeds only if the stored hash still equals code_hash and
        attempts remain. Exactly one concurrent caller can win.
        """
        ...

    def transition(
        self,
        registration_id: str,
        from_state: RegistrationState,
        to_state: RegistrationState,
        expires_at: datetime | None = None,
    ) -> bool:
        """Compare-and-swap the registration state. Returns True if this call moved it."""
        ...

    def expire_stale(self, now: datetime) -> int:
        """
        Move active registrations past expires_at to EXPIRED. Returns the count.

        Registrations holding a CREATED or CONFIRMED payment intent are
        skipped.
        """
        ...


class AccountRepository(Protocol):
    """Port interface for durable accounts."""

    def exists_for_email(self, email: str) -> bool:
        """Whether an account already exists for the email."""
        ...

    def finalize(self, account: Account, expected_state: RegistrationState) -> bool:
        """
        Atomically move the pending registration to COMPLETED and insert the account.

        Returns:
            True if this call created the account, False if the pending
            registration was not in expected_state (another caller won)
        """
        ...

    def get_by_registration(self, registration_id: str) -> Account | None:
        """Return the account created from a pending registration."""
        ...


class PaymentIntentRepository(Protocol):
    """Port interface for payment intent records."""

    def insert(self, record: PaymentIntentRecord) -> PaymentIntentRecord:
        """
        Insert a CREATED record.

        If another open intent for the same registration won a concurrent
        insert, that record is returned instead.
        """
        ...

    def find_open(self, registration_id: str) -> PaymentIntentRecord | None:
        """Return the CREATED intent for a registration, if any."""
        ...

    def get(self, provider_intent_id: str) -> PaymentIntentRecord | None:
        """Return an intent record by provider id."""
        ...

    def transition(self, provider_intent_id: str, from_status: PaymentStatus, to_status: PaymentStatus) -> bool:
        """Compare-and-swap the intent status. Returns True if this call moved it."""
        ...

    def find_abandoned(self, now: datetime) -> list[PaymentIntentRecord]:
        """Return CREATED intents whose registration is still active but past expires_at."""
        ...


class RateCounterStore(Protocol):
    """Port interface for rate-limit window counters."""

    def increment(self, key: str, window_seconds: int) -> int:
        """
        Increment the counter for key and return the new value.

        Raises:
            RateStoreUnavailable: if the backend cannot be reached
        """
        ...


class EmailSender(Protocol):
    """Port interface for email delivery."""

    def send(self, to: str, subject: str, body: str) -> None:
        """
        Deliver a plain-text message.

        Raises:
            EmailDeliveryError: if the message could not be handed off
        """
        ...


class WelcomeNotifier(Protocol):
    """Port interface for the best-effort welcome notification."""

    def notify_welcome(self, account: Account) -> None:
        """Dispatch the welcome message. Must not raise."""
        ...


class PaymentGateway(Protocol):
    """Port interface for a payment processor."""

    def create_intent(
        self, amount_cents: int, currency: str, registration_id: str, description: str, idempotency_key: str
    ) -> ProviderIntent:
        """
        Create a provider-side intent for the registration fee.

        Retries of one logical request reuse idempotency_key so the
        provider never opens two charges for it.

        Raises:
            PaymentProviderError: if the provider call failed
        """
        ...

    def confirm(self, provider_intent_id: str) -> ProviderStatus:
        """
        Return the settlement status of an intent, capturing it if needed.

        Raises:
            PaymentProviderError: if the provider call failed
        """
        ...

    def cancel(self, provider_intent_id: str) -> ProviderStatus:
        """
        Void an abandoned intent so it can no longer be paid.

        Returns SUCCEEDED if the payer had already paid, FAILED once the
        intent is void, PENDING while a payment is still settling.

        Raises:
            PaymentProviderError: if the provider call failed
        """
        ...
