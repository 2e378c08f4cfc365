"""
Registration intake - validates submissions and opens pending registrations.

Intake turns an unauthenticated registration request into a
PendingRegistration in AWAITING_VERIFICATION with a live OtpChallenge,
and hands the code to the email collaborator.

Conflict policy
===============

- An account already exists for the email -> AlreadyRegistered.
- An active pending registration awaits verification -> resume it: the
  same registration_id is returned and a fresh code is issued.
- An active pending registration is already verified -> Conflict; the
  client continues to payment with its verified token.
- A verified donor whose account creation was interrupted -> the account
  is finalized now and AlreadyRegistered tells the client to sign in.

The database enforces one active pending registration per email, so two
concurrent submissions cannot both insert; the loser resumes the winner.

The pending record is written before the email goes out, so an email
outage leaves a registration the client can finish with a resend.
"""

import logging
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt

from .exceptions import (
    AlreadyRegistered,
    Conflict,
    EmailDeliveryError,
    InvalidRegistration,
    NotFound,
)
from .finalizer import AccountFinalizer
from .otp import OtpCodec
from .ports import (
    AccountKind,
    AccountRepository,
    EmailSender,
    NextStep,
    OtpChallenge,
    PendingRegistration,
    RegistrationRepository,
    RegistrationState,
)
from .retry import call_with_retry

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z0-9-]{2,}$")
_NAME_RE = re.compile(r"^[A-Za-z\s'-]+$")
_SPECIAL_CHARS = set("!@#$%^&*()_+-=[]{};':\"\\|,.<>/?")

PASSWORD_MIN_LENGTH = 8


@dataclass(frozen=True)
class RegistrationResult:
    """Response of a successful intake call."""

    registration_id: str
    next_step: NextStep
    expires_in_seconds: int


def _utc_now() -> datetime:
    return datetime.now(UTC)


def normalize_email(email: str) -> str:
    """
    Normalize email address for consistent storage and lookup.

    Applies: strip whitespace + lowercase
    """
    return email.strip().lower()


def validate_password(password: str) -> None:
    """Require minimum length and lower, upper, digit and special character classes."""
    if len(password) < PASSWORD_MIN_LENGTH:
        raise InvalidRegistration(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    classes = (
        any(c.islower() for c in password),
        any(c.isupper() for c in password),
        any(c.isdigit() for c in password),
        any(c in _SPECIAL_CHARS for c in password),
    )
    if not all(classes):
        raise InvalidRegistration(
            "Password must contain at least one uppercase letter, one lowercase letter, "
            "one number, and one special character"
        )


def _clean_name(profile: dict[str, Any], field: str) -> str:
    value = str(profile.get(field) or "").strip()
    if not 2 <= len(value) <= 50:
        raise InvalidRegistration(f"{field} must be between 2 and 50 characters")
    if not _NAME_RE.match(value):
        raise InvalidRegistration(f"{field} can only contain letters, spaces, hyphens, and apostrophes")
    return value


def _clean_optional(profile: dict[str, Any], field: str, max_length: int) -> str | None:
    value = profile.get(field)
    if value is None:
        return None
    value = str(value).strip()
    if len(value) > max_length:
        raise InvalidRegistration(f"{field} must be less than {max_length} characters")
    return value or None


def validate_profile(account_kind: AccountKind, profile: dict[str, Any]) -> dict[str, Any]:
    """
    Validate kind-specific profile fields and return the cleaned profile.

    Students: first_name, last_name, school, optional major.
    Donors: first_name, last_name, optional phone.
    Unknown fields are dropped.
    """
    cleaned: dict[str, Any] = {
        "first_name": _clean_name(profile, "first_name"),
        "last_name": _clean_name(profile, "last_name"),
    }
    if account_kind is AccountKind.STUDENT:
        school = str(profile.get("school") or "").strip()
        if not 2 <= len(school) <= 100:
            raise InvalidRegistration("school must be between 2 and 100 characters")
        cleaned["school"] = school
        cleaned["major"] = _clean_optional(profile, "major", 100)
    else:
        cleaned["phone"] = _clean_optional(profile, "phone", 20)
    return cleaned


def verification_email(code: str, ttl_seconds: int) -> tuple[str, str]:
    """Subject and body of the verification code email."""
    minutes = max(ttl_seconds // 60, 1)
    subject = "Your Village verification code"
    body = (
        "Welcome to Village Platform!\n\n"
        f"Your verification code is: {code}\n\n"
        f"This verification code will expire in {minutes} minutes.\n"
        "If you did not request this, you can ignore this email."
    )
    return subject, body


@dataclass
class RegistrationService:
    """
    Domain service for registration intake and code resends.

    Orchestrates validation, password hashing, code generation,
    pending registration persistence and code delivery.
    """

    registrations: RegistrationRepository
    accounts: AccountRepository
    email_sender: EmailSender
    otp: OtpCodec
    otp_ttl_seconds: int = 600
    otp_max_attempts: int = 5
    pending_ttl_seconds: int = 24 * 60 * 60
    bcrypt_cost: int = 10
    email_max_tries: int = 3
    email_backoff_factor: float = 0.5
    finalizer: AccountFinalizer | None = None
    clock: Callable[[], datetime] = _utc_now

    def register(
        self, account_kind: AccountKind | str, email: str, password: str, profile: dict[str, Any]
    ) -> RegistrationResult:
        """
        Open (or resume) a pending registration and send a verification code.

        Raises:
            InvalidRegistration: email, password or profile fields are invalid
            AlreadyRegistered: an account exists for the email, or a verified
                donor's interrupted account creation was just completed
            Conflict: the email is already verified and awaiting payment
            CollaboratorUnavailable: the code could not be emailed
        """
        try:
            kind = AccountKind(account_kind)
        except ValueError:
            raise InvalidRegistration(f"Unknown account kind: {account_kind}") from None

        normalized_email = normalize_email(email)
        if not _EMAIL_RE.match(normalized_email):
            raise InvalidRegistration("Please provide a valid email address")
        validate_password(password)
        cleaned_profile = validate_profile(kind, profile)

        if self.accounts.exists_for_email(normalized_email):
            raise AlreadyRegistered("An account with this email already exists")

        now = self.clock()
        existing = self.registrations.find_active_by_email(normalized_email, now)
        if existing is not None:
            return self._resume(existing, now)

        registration_id = str(uuid.uuid4())
        code = self.otp.generate()
        pending = PendingRegistration(
            registration_id=registration_id,
            email=normalized_email,
            account_kind=kind,
            profile=cleaned_profile,
            password_hash=self._hash_password(password),
            state=RegistrationState.AWAITING_VERIFICATION,
            created_at=now,
            expires_at=now + timedelta(seconds=self.pending_ttl_seconds),
        )
        challenge = OtpChallenge(
            registration_id=registration_id,
            code_hash=self.otp.hash(registration_id, code),
            attempts_remaining=self.otp_max_attempts,
            issued_at=now,
            expires_at=now + timedelta(seconds=self.otp_ttl_seconds),
        )

        if not self.registrations.insert_pending(pending, challenge):
            # Lost the insert race to a concurrent submission for the same email
            existing = self.registrations.find_active_by_email(normalized_email, now)
            if existing is None:
                raise Conflict("Registration is being processed, please try again")
            return self._resume(existing, now)

        logger.info("Pending registration created: id=%s kind=%s", registration_id, kind.value)
        self._send_code(normalized_email, code)
        return RegistrationResult(
            registration_id=registration_id,
            next_step=NextStep.VERIFY_EMAIL,
            expires_in_seconds=self.otp_ttl_seconds,
        )

    def resend(self, email: str) -> OtpChallenge:
        """
        Issue a fresh code for a registration awaiting verification.

        Resets attempts, extends the deadline and increments resend_count.

        Raises:
            NotFound: no active pending registration for the email
            Conflict: the registration is already verified
            AlreadyRegistered: a verified donor's account was just completed
        """
        normalized_email = normalize_email(email)
        now = self.clock()
        pending = self.registrations.find_active_by_email(normalized_email, now)
        if pending is None:
            raise NotFound("No pending registration found for this email")
        if pending.state is not RegistrationState.AWAITING_VERIFICATION:
            self._complete_verified_donor(pending)
            raise Conflict("Email is already verified, continue to payment")
        return self._issue_fresh_code(pending, now)

    def expire_stale(self) -> int:
        """Reaper entry point: expire abandoned pending registrations."""
        count = self.registrations.expire_stale(self.clock())
        if count:
            logger.info("Expired %d stale pending registration(s)", count)
        return count

    def _resume(self, pending: PendingRegistration, now: datetime) -> RegistrationResult:
        if pending.state is not RegistrationState.AWAITING_VERIFICATION:
            self._complete_verified_donor(pending)
            raise Conflict("Email is already verified, continue to payment")
        logger.info("Resuming pending registration: id=%s", pending.registration_id)
        self._issue_fresh_code(pending, now)
        return RegistrationResult(
            registration_id=pending.registration_id,
            next_step=NextStep.VERIFY_EMAIL,
            expires_in_seconds=self.otp_ttl_seconds,
        )

    def _complete_verified_donor(self, pending: PendingRegistration) -> None:
        """Finish a donor left VERIFIED when finalization failed after verification."""
        if (
            self.finalizer is None
            or pending.account_kind is not AccountKind.DONOR
            or pending.state is not RegistrationState.VERIFIED
        ):
            return
        logger.warning("Completing interrupted donor registration: id=%s", pending.registration_id)
        self.finalizer.finalize(pending)
        raise AlreadyRegistered("Email already verified, your account is now active")

    def _issue_fresh_code(self, pending: PendingRegistration, now: datetime) -> OtpChallenge:
        code = self.otp.generate()
        challenge = self.registrations.reissue_challenge(
            pending.registration_id,
            self.otp.hash(pending.registration_id, code),
            issued_at=now,
            expires_at=now + timedelta(seconds=self.otp_ttl_seconds),
            attempts=self.otp_max_attempts,
        )
        if challenge is None:
            raise NotFound("No pending registration found for this email")
        logger.info(
            "Verification code reissued: id=%s resend_count=%d", pending.registration_id, challenge.resend_count
        )
        self._send_code(pending.email, code)
        return challenge

    def _send_code(self, email: str, code: str) -> None:
        subject, body = verification_email(code, self.otp_ttl_seconds)
        call_with_retry(
            self.email_sender.send,
            email,
            subject,
            body,
            retry_on=EmailDeliveryError,
            max_tries=self.email_max_tries,
            factor=self.email_backoff_factor,
            collaborator="Email service",
        )

    def _hash_password(self, password: str) -> str:
        """Hash password using bcrypt with the configured cost factor."""
        return bcrypt.hashpw(password.encode()[:72], bcrypt.gensalt(rounds=self.bcrypt_cost)).decode()
