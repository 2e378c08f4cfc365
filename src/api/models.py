"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
Field names are snake_case in Python and camelCase on the wire; requests
accept either form.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from src.domain.finalizer import FinalizedAccount
from src.domain.ports import Account, AccountKind, NextStep, PaymentIntentRecord, PaymentProvider
from src.domain.registration import RegistrationResult
from src.domain.verification import VerificationResult


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StudentRegisterRequest(CamelModel):
    """Request model for student registration."""

    email: EmailStr
    password: str = Field(..., description="At least 8 characters with upper, lower, digit and special character")
    first_name: str
    last_name: str
    school: str
    major: str | None = None

    def profile(self) -> dict[str, Any]:
        return {"first_name": self.first_name, "last_name": self.last_name, "school": self.school, "major": self.major}


class DonorRegisterRequest(CamelModel):
    """Request model for donor registration."""

    email: EmailStr
    password: str = Field(..., description="At least 8 characters with upper, lower, digit and special character")
    first_name: str
    last_name: str
    phone: str | None = None

    def profile(self) -> dict[str, Any]:
        return {"first_name": self.first_name, "last_name": self.last_name, "phone": self.phone}


class RegisterResponse(CamelModel):
    """Response model for successful registration."""

    registration_id: str
    next_step: NextStep
    expires_in_seconds: int

    @classmethod
    def from_result(cls, result: RegistrationResult) -> "RegisterResponse":
        return cls(
            registration_id=result.registration_id,
            next_step=result.next_step,
            expires_in_seconds=result.expires_in_seconds,
        )


class VerifyOtpRequest(CamelModel):
    """Request model for email verification."""

    email: EmailStr
    otp: str = Field(..., pattern=r"^\d{4,10}$", description="Numeric verification code from the email")


class ResendRequest(CamelModel):
    """Request model for a fresh verification code."""

    email: EmailStr


class OkResponse(CamelModel):
    ok: bool = True


class AccountResponse(CamelModel):
    """Public view of an account. Never includes the password hash."""

    id: str
    email: str
    account_kind: AccountKind
    profile: dict[str, Any]
    created_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.account_id,
            email=account.email,
            account_kind=account.account_kind,
            profile=account.profile,
            created_at=account.created_at,
        )


class VerifyOtpResponse(CamelModel):
    """
    Response model for successful verification.

    Students receive the verified token for the payment step; donors
    receive a session token and their account.
    """

    registration_id: str
    account_kind: AccountKind
    next_step: NextStep
    token: str | None = None
    account: AccountResponse | None = None

    @classmethod
    def from_result(cls, result: VerificationResult) -> "VerifyOtpResponse":
        return cls(
            registration_id=result.registration_id,
            account_kind=result.account_kind,
            next_step=result.next_step,
            token=result.session_token or result.verified_token,
            account=AccountResponse.from_account(result.account) if result.account else None,
        )


class CreateIntentRequest(CamelModel):
    """Request model for starting the registration fee payment."""

    verified_token: str = Field(..., min_length=1)
    provider: PaymentProvider


class CreateIntentResponse(CamelModel):
    """Response model for a created (or reused) payment intent."""

    provider_intent_id: str
    provider: PaymentProvider
    client_secret_or_approval_url: str
    amount_cents: int
    currency: str

    @classmethod
    def from_record(cls, record: PaymentIntentRecord) -> "CreateIntentResponse":
        return cls(
            provider_intent_id=record.provider_intent_id,
            provider=record.provider,
            client_secret_or_approval_url=record.client_secret,
            amount_cents=record.amount_cents,
            currency=record.currency,
        )


class ConfirmPaymentRequest(CamelModel):
    provider_intent_id: str = Field(..., min_length=1)


class ConfirmPaymentResponse(CamelModel):
    """Response model for a settled payment."""

    account: AccountResponse
    session_token: str

    @classmethod
    def from_finalized(cls, finalized: FinalizedAccount) -> "ConfirmPaymentResponse":
        return cls(account=AccountResponse.from_account(finalized.account), session_token=finalized.session_token)


class WebhookResponse(CamelModel):
    received: bool = True


class ErrorBody(CamelModel):
    kind: str
    message: str
    attempts_remaining: int | None = None


class ErrorResponse(CamelModel):
    """Standard error response model."""

    error: ErrorBody
    retry_after: str | None = None
    retry_after_seconds: int | None = None
