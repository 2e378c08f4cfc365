"""
Verification gate - checks one-time codes and advances pending registrations.

Check order (every path computes the HMAC comparison first, so response
time does not reveal which check failed):

1. Active pending registration with a live challenge, else NotFound
2. Attempts remaining, else AttemptsExhausted
3. Challenge within its deadline, else Expired (even for a correct code)
4. Code matches, else the attempt counter is decremented atomically;
   reaching zero kills the challenge (AttemptsExhausted), otherwise
   InvalidCode
5. Challenge consumed by conditional delete (single use), then
   AWAITING_VERIFICATION -> VERIFIED

Donors go straight to the account finalizer. Students move to
AWAITING_PAYMENT and receive a verified token for the payment gate.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta

from .exceptions import AttemptsExhausted, Expired, InvalidCode, NotFound
from .finalizer import AccountFinalizer
from .otp import OtpCodec
from .ports import Account, AccountKind, NextStep, RegistrationRepository, RegistrationState
from .registration import normalize_email
from .tokens import TokenService

logger = logging.getLogger(__name__)

# Compared against when no challenge exists so the HMAC always runs.
_DUMMY_CODE_HASH = "0" * 64


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a successful verification."""

    registration_id: str
    account_kind: AccountKind
    next_step: NextStep
    verified_token: str | None = None
    session_token: str | None = None
    account: Account | None = None


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class VerificationService:
    """Validates submitted codes against the stored challenge."""

    registrations: RegistrationRepository
    finalizer: AccountFinalizer
    tokens: TokenService
    otp: OtpCodec
    clock: Callable[[], datetime] = _utc_now

    def verify(self, email: str, code: str) -> VerificationResult:
        """
        Verify a submitted code for the email's pending registration.

        Raises:
            NotFound: no active registration or challenge (e.g. already used)
            AttemptsExhausted: too many wrong codes, a resend is required
            Expired: the challenge deadline has passed
            InvalidCode: the code is wrong and attempts remain
        """
        normalized_email = normalize_email(email)
        now = self.clock()

        pending = self.registrations.find_active_by_email(normalized_email, now)
        challenge = self.registrations.get_challenge(pending.registration_id) if pending else None

        registration_id = pending.registration_id if pending else ""
        stored_hash = challenge.code_hash if challenge else _DUMMY_CODE_HASH
        code_valid = self.otp.matches(registration_id, code, stored_hash)

        if pending is None or challenge is None:
            raise NotFound("No pending verification found for this email")
        if challenge.attempts_remaining <= 0:
            raise AttemptsExhausted("Too many incorrect attempts, please request a new code")
        if challenge.expires_at <= now:
            raise Expired("Verification code has expired, please request a new one")

        if not code_valid:
            remaining = self.registrations.record_failed_attempt(registration_id)
            logger.info("Verification code mismatch: id=%s attempts_remaining=%d", registration_id, remaining)
            if remaining <= 0:
                raise AttemptsExhausted("Too many incorrect attempts, please request a new code")
            raise InvalidCode("Incorrect verification code", attempts_remaining=remaining)

        if not self.registrations.consume_challenge(registration_id, challenge.code_hash):
            raise NotFound("No pending verification found for this email")
        if not self.registrations.transition(
            registration_id, RegistrationState.AWAITING_VERIFICATION, RegistrationState.VERIFIED
        ):
            raise NotFound("No pending verification found for this email")
        logger.info("Email verified: id=%s kind=%s", registration_id, pending.account_kind.value)

        verified = replace(pending, state=RegistrationState.VERIFIED)
        if pending.account_kind is AccountKind.DONOR:
            finalized = self.finalizer.finalize(verified)
            return VerificationResult(
                registration_id=registration_id,
                account_kind=pending.account_kind,
                next_step=NextStep.DONE,
                session_token=finalized.session_token,
                account=finalized.account,
            )

        payment_deadline = now + timedelta(seconds=self.tokens.verified_ttl_seconds)
        self.registrations.transition(
            registration_id,
            RegistrationState.VERIFIED,
            RegistrationState.AWAITING_PAYMENT,
            expires_at=payment_deadline,
        )
        awaiting_payment = replace(verified, state=RegistrationState.AWAITING_PAYMENT, expires_at=payment_deadline)
        return VerificationResult(
            registration_id=registration_id,
            account_kind=pending.account_kind,
            next_step=NextStep.PAY,
            verified_token=self.tokens.mint_verified(awaiting_payment, now),
        )
