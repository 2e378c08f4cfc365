"""
Domain layer - Pure business logic with zero framework imports.

This package contains the account-activation pipeline: rate limiting,
registration intake, OTP verification, the student payment gate and the
account finalizer. It defines its own port interfaces for infrastructure
abstraction, ensuring true hexagonal architecture decoupling.
"""

from .exceptions import (
    AlreadyRegistered,
    AttemptsExhausted,
    CollaboratorUnavailable,
    Conflict,
    Expired,
    InvalidCode,
    InvalidRegistration,
    InvalidToken,
    InvariantViolation,
    NotFound,
    PaymentFailed,
    PaymentPending,
    RateLimited,
    RegistrationError,
)
from .finalizer import AccountFinalizer, FinalizedAccount
from .otp import OtpCodec
from .payment import PaymentGate
from .ports import (
    Account,
    AccountKind,
    NextStep,
    OtpChallenge,
    PaymentIntentRecord,
    PaymentProvider,
    PaymentStatus,
    PendingRegistration,
    RegistrationState,
)
from .rate_limit import EndpointClass, RateDecision, RateLimiter, RateLimitPolicy, RateLimitRule
from .registration import RegistrationResult, RegistrationService
from .tokens import TokenService
from .verification import VerificationResult, VerificationService

__all__ = [
    "Account",
    "AccountFinalizer",
    "AccountKind",
    "AlreadyRegistered",
    "AttemptsExhausted",
    "CollaboratorUnavailable",
    "Conflict",
    "EndpointClass",
    "Expired",
    "FinalizedAccount",
    "InvalidCode",
    "InvalidRegistration",
    "InvalidToken",
    "InvariantViolation",
    "NextStep",
    "NotFound",
    "OtpChallenge",
    "OtpCodec",
    "PaymentFailed",
    "PaymentGate",
    "PaymentIntentRecord",
    "PaymentPending",
    "PaymentProvider",
    "PaymentStatus",
    "PendingRegistration",
    "RateDecision",
    "RateLimitPolicy",
    "RateLimitRule",
    "RateLimited",
    "RateLimiter",
    "RegistrationError",
    "RegistrationResult",
    "RegistrationService",
    "RegistrationState",
    "TokenService",
    "VerificationResult",
    "VerificationService",
]
