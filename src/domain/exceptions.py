"""
Domain exceptions - Semantic error types for account activation.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
Every exception carries a stable machine-readable ``kind`` which the
API layer maps to an HTTP status.
"""


class RegistrationError(Exception):
    """Base class for activation pipeline errors."""

    kind = "registration_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class InvalidRegistration(RegistrationError):
    """Submitted profile data, email or password failed validation."""

    kind = "validation_error"


class Conflict(RegistrationError):
    """Registration for this email is already in progress past verification."""

    kind = "conflict"


class AlreadyRegistered(Conflict):
    """An account already exists for this email."""

    kind = "already_registered"


class NotFound(RegistrationError):
    """No active registration, challenge or payment intent matches the request."""

    kind = "not_found"


class Expired(RegistrationError):
    """Verification code or verified token is past its deadline."""

    kind = "expired"


class AttemptsExhausted(Expired):
    """Too many wrong codes; a fresh code must be requested."""

    kind = "attempts_exhausted"


class InvalidCode(RegistrationError):
    """Submitted verification code does not match."""

    kind = "invalid_code"

    def __init__(self, message: str = "", attempts_remaining: int = 0) -> None:
        super().__init__(message)
        self.attempts_remaining = attempts_remaining


class InvalidToken(RegistrationError):
    """Verified token signature, audience or type is wrong."""

    kind = "invalid_token"


class RateLimited(RegistrationError):
    """Request quota exhausted for this endpoint class."""

    kind = "rate_limited"

    def __init__(self, message: str = "", retry_after_seconds: int = 0, retry_after: str = "") -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds
        self.retry_after = retry_after


class PaymentFailed(RegistrationError):
    """Provider reported the payment as failed."""

    kind = "payment_failed"


class PaymentPending(RegistrationError):
    """Provider has not settled the payment yet."""

    kind = "payment_pending"


class CollaboratorUnavailable(RegistrationError):
    """Email or payment provider unreachable after the retry budget."""

    kind = "collaborator_unavailable"


class InvariantViolation(RegistrationError):
    """Pipeline reached a state that should be impossible."""

    kind = "invariant_violation"


class EmailDeliveryError(Exception):
    """Raised by email adapters when a message could not be handed off."""


class PaymentProviderError(Exception):
    """Raised by payment adapters when the provider call failed."""


class RateStoreUnavailable(Exception):
    """Raised by rate counter stores when the backend cannot be reached."""
