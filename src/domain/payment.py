"""
Payment gate - registration fee for student accounts.

create_intent() turns a verified token into a provider-side payment
intent for the fixed registration fee. confirm() settles it and is
called twice in the normal course of events: once by the client right
after the provider confirms payment, and once by the provider webhook.

Double confirmation must never create two accounts or charge twice:

- An open CREATED intent is reused instead of creating a second charge.
- CREATED -> CONFIRMED is a conditional update; only one caller moves it.
- Every caller then settles through the account finalizer, which is
  itself idempotent, so winner and loser return the same account.

Provider calls happen with no lock held and after the local record
exists, so a provider timeout leaves a resumable state.
"""

import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from .exceptions import (
    CollaboratorUnavailable,
    Conflict,
    Expired,
    InvalidRegistration,
    InvalidToken,
    InvariantViolation,
    NotFound,
    PaymentFailed,
    PaymentPending,
    PaymentProviderError,
    RegistrationError,
)
from .finalizer import AccountFinalizer, FinalizedAccount
from .ports import (
    AccountKind,
    AccountRepository,
    PaymentGateway,
    PaymentIntentRecord,
    PaymentIntentRepository,
    PaymentProvider,
    PaymentStatus,
    ProviderStatus,
    RegistrationRepository,
    RegistrationState,
)
from .retry import call_with_retry
from .tokens import TokenService

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class PaymentGate:
    """Creates and settles registration fee payments."""

    registrations: RegistrationRepository
    accounts: AccountRepository
    intents: PaymentIntentRepository
    gateways: Mapping[PaymentProvider, PaymentGateway]
    finalizer: AccountFinalizer
    tokens: TokenService
    fee_cents: int = 2500
    currency: str = "usd"
    max_tries: int = 3
    backoff_factor: float = 0.5
    clock: Callable[[], datetime] = _utc_now

    def create_intent(self, verified_token: str, provider: PaymentProvider | str) -> PaymentIntentRecord:
        """
        Create (or return the open) payment intent for a verified student.

        Raises:
            InvalidToken: token is forged, malformed or not a student's
            Expired: token or registration is past its deadline
            NotFound: no pending registration for the token
            Conflict: registration already completed, or an intent is
                open with a different provider
            CollaboratorUnavailable: provider unreachable
        """
        try:
            provider = PaymentProvider(provider)
        except ValueError:
            raise InvalidRegistration(f"Unsupported payment provider: {provider}") from None
        gateway = self.gateways.get(provider)
        if gateway is None:
            raise NotFound(f"Payment provider {provider.value} is not configured")

        claims = self.tokens.decode_verified(verified_token)
        if claims.account_kind is not AccountKind.STUDENT:
            raise InvalidToken("Registration fee applies to student accounts only")

        pending = self.registrations.get(claims.registration_id)
        if pending is None or pending.email != claims.email:
            raise NotFound("No pending registration found for this token")
        if pending.state is RegistrationState.COMPLETED:
            raise Conflict("Registration is already complete")
        if pending.state is RegistrationState.EXPIRED or pending.expires_at <= self.clock():
            raise Expired("Registration has expired, please register again")
        if pending.state is RegistrationState.VERIFIED:
            self.registrations.transition(
                pending.registration_id, RegistrationState.VERIFIED, RegistrationState.AWAITING_PAYMENT
            )
        elif pending.state is not RegistrationState.AWAITING_PAYMENT:
            raise NotFound("No pending registration found for this token")

        existing = self.intents.find_open(pending.registration_id)
        if existing is not None:
            if existing.provider is not provider:
                raise Conflict(f"A {existing.provider.value} payment is already in progress")
            logger.info(
                "Reusing open payment intent: id=%s registration_id=%s",
                existing.provider_intent_id,
                pending.registration_id,
            )
            return existing

        description = "Registration fee for {} {}".format(
            pending.profile.get("first_name", ""), pending.profile.get("last_name", "")
        ).strip()
        provider_intent = call_with_retry(
            gateway.create_intent,
            self.fee_cents,
            self.currency,
            pending.registration_id,
            description,
            f"registration-fee-{pending.registration_id}-{uuid.uuid4().hex}",
            retry_on=PaymentProviderError,
            max_tries=self.max_tries,
            factor=self.backoff_factor,
            collaborator="Payment provider",
        )
        record = self.intents.insert(
            PaymentIntentRecord(
                provider_intent_id=provider_intent.provider_intent_id,
                registration_id=pending.registration_id,
                provider=provider,
                amount_cents=self.fee_cents,
                currency=self.currency,
                client_secret=provider_intent.client_secret,
                status=PaymentStatus.CREATED,
                created_at=self.clock(),
            )
        )
        logger.info(
            "Payment intent created: id=%s provider=%s registration_id=%s",
            record.provider_intent_id,
            provider.value,
            pending.registration_id,
        )
        return record

    def confirm(self, provider_intent_id: str) -> FinalizedAccount:
        """
        Settle a payment intent and return the student's account.

        Safe to call any number of times, concurrently, for the same intent.

        Raises:
            NotFound: unknown intent
            Expired: registration no longer awaits payment; the intent is
                marked FAILED without calling the provider
            PaymentFailed: provider reported failure
            PaymentPending: provider has not settled yet
            CollaboratorUnavailable: provider unreachable
        """
        record = self.intents.get(provider_intent_id)
        if record is None:
            raise NotFound("Payment not found")

        if record.status is PaymentStatus.CONFIRMED:
            return self._settle(record)
        if record.status is PaymentStatus.FAILED:
            raise PaymentFailed("Payment failed, please start a new payment")

        pending = self.registrations.get(record.registration_id)
        if pending is not None and pending.state is RegistrationState.COMPLETED:
            return self._settle(record)
        if pending is None or pending.state is not RegistrationState.AWAITING_PAYMENT:
            if self.intents.transition(provider_intent_id, PaymentStatus.CREATED, PaymentStatus.FAILED):
                logger.warning(
                    "Payment intent voided, registration no longer awaits payment: id=%s registration_id=%s state=%s",
                    provider_intent_id,
                    record.registration_id,
                    pending.state.value if pending else None,
                )
            raise Expired("Registration has expired, please register again")

        gateway = self.gateways.get(record.provider)
        if gateway is None:
            raise NotFound(f"Payment provider {record.provider.value} is not configured")
        status = call_with_retry(
            gateway.confirm,
            provider_intent_id,
            retry_on=PaymentProviderError,
            max_tries=self.max_tries,
            factor=self.backoff_factor,
            collaborator="Payment provider",
        )

        if status is ProviderStatus.PENDING:
            raise PaymentPending("Payment has not completed yet")
        if status is ProviderStatus.FAILED:
            if self.intents.transition(provider_intent_id, PaymentStatus.CREATED, PaymentStatus.FAILED):
                logger.info("Payment failed: id=%s registration_id=%s", provider_intent_id, record.registration_id)
            raise PaymentFailed("Payment failed, please start a new payment")

        performed = self.intents.transition(provider_intent_id, PaymentStatus.CREATED, PaymentStatus.CONFIRMED)
        if performed:
            logger.info("Payment confirmed: id=%s registration_id=%s", provider_intent_id, record.registration_id)
        else:
            current = self.intents.get(provider_intent_id)
            if current is None or current.status is not PaymentStatus.CONFIRMED:
                logger.critical(
                    "Provider reports success but intent could not be confirmed: id=%s status=%s",
                    provider_intent_id,
                    current.status.value if current else None,
                )
                raise InvariantViolation("Unable to complete registration")
        return self._settle(record)

    def release_abandoned_payments(self) -> int:
        """
        Void open intents whose registration has passed its deadline.

        Run by the reaper before expire_stale(). An intent the provider
        reports as paid is settled instead, and one still settling is
        left for the next run. Returns the number of intents voided.
        """
        voided = 0
        for record in self.intents.find_abandoned(self.clock()):
            gateway = self.gateways.get(record.provider)
            if gateway is None:
                logger.warning(
                    "Cannot release intent %s, provider %s is not configured",
                    record.provider_intent_id,
                    record.provider.value,
                )
                continue
            try:
                status = call_with_retry(
                    gateway.cancel,
                    record.provider_intent_id,
                    retry_on=PaymentProviderError,
                    max_tries=self.max_tries,
                    factor=self.backoff_factor,
                    collaborator="Payment provider",
                )
            except CollaboratorUnavailable:
                continue

            if status is ProviderStatus.SUCCEEDED:
                try:
                    self.confirm(record.provider_intent_id)
                except RegistrationError as e:
                    logger.warning("Settling paid abandoned intent %s failed: %s", record.provider_intent_id, e)
            elif status is ProviderStatus.FAILED:
                if self.intents.transition(record.provider_intent_id, PaymentStatus.CREATED, PaymentStatus.FAILED):
                    voided += 1
                    logger.info(
                        "Abandoned payment intent voided: id=%s registration_id=%s",
                        record.provider_intent_id,
                        record.registration_id,
                    )
        return voided

    def _settle(self, record: PaymentIntentRecord) -> FinalizedAccount:
        account = self.accounts.get_by_registration(record.registration_id)
        if account is not None:
            return FinalizedAccount(account=account, session_token=self.tokens.issue_session(account))

        pending = self.registrations.get(record.registration_id)
        if pending is None:
            logger.critical("Confirmed payment has no pending registration: intent=%s", record.provider_intent_id)
            raise InvariantViolation("Unable to complete registration")
        return self.finalizer.finalize(pending)

