"""
Registration and email verification routes.

- POST /auth/register/student - Begin a student registration
- POST /auth/register/donor - Begin a donor registration
- POST /auth/verify-otp - Submit the emailed code
- POST /auth/resend-verification - Request a fresh code

Handlers are plain functions so blocking repository, bcrypt and email
calls run in the threadpool.
"""

from fastapi import APIRouter, Depends, status

from src.api.dependencies import get_registration_service, get_verification_service, rate_limit
from src.api.models import (
    DonorRegisterRequest,
    ErrorResponse,
    OkResponse,
    RegisterResponse,
    ResendRequest,
    StudentRegisterRequest,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from src.domain.ports import AccountKind
from src.domain.rate_limit import EndpointClass
from src.domain.registration import RegistrationService
from src.domain.verification import VerificationService

router = APIRouter(prefix="/auth", tags=["auth"])

_register_responses = {
    409: {"model": ErrorResponse, "description": "Account exists or registration already verified"},
    422: {"model": ErrorResponse, "description": "Validation error"},
    429: {"model": ErrorResponse, "description": "Rate limited"},
    503: {"model": ErrorResponse, "description": "Email service unavailable"},
}


@router.post(
    "/register/student",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_register_responses,
    summary="Register a student",
    dependencies=[Depends(rate_limit(EndpointClass.REGISTER))],
)
def register_student(
    request_data: StudentRegisterRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> RegisterResponse:
    """Open a student registration and email a verification code."""
    result = service.register(AccountKind.STUDENT, request_data.email, request_data.password, request_data.profile())
    return RegisterResponse.from_result(result)


@router.post(
    "/register/donor",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_register_responses,
    summary="Register a donor",
    dependencies=[Depends(rate_limit(EndpointClass.REGISTER))],
)
def register_donor(
    request_data: DonorRegisterRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> RegisterResponse:
    """Open a donor registration and email a verification code."""
    result = service.register(AccountKind.DONOR, request_data.email, request_data.password, request_data.profile())
    return RegisterResponse.from_result(result)


@router.post(
    "/verify-otp",
    response_model=VerifyOtpResponse,
    response_model_exclude_none=True,
    responses={
        401: {"model": ErrorResponse, "description": "Incorrect code"},
        404: {"model": ErrorResponse, "description": "No pending verification"},
        410: {"model": ErrorResponse, "description": "Code expired or attempts exhausted"},
        429: {"model": ErrorResponse, "description": "Rate limited"},
    },
    summary="Verify email with the emailed code",
    description="Donors are activated immediately and receive a session token. "
    "Students receive a verified token to pay the registration fee.",
    dependencies=[Depends(rate_limit(EndpointClass.VERIFY_OTP))],
)
def verify_otp(
    request_data: VerifyOtpRequest,
    service: VerificationService = Depends(get_verification_service),
) -> VerifyOtpResponse:
    result = service.verify(request_data.email, request_data.otp)
    return VerifyOtpResponse.from_result(result)


@router.post(
    "/resend-verification",
    response_model=OkResponse,
    responses={
        404: {"model": ErrorResponse, "description": "No pending registration"},
        409: {"model": ErrorResponse, "description": "Email already verified"},
        429: {"model": ErrorResponse, "description": "Rate limited"},
    },
    summary="Send a fresh verification code",
    dependencies=[Depends(rate_limit(EndpointClass.RESEND))],
)
def resend_verification(
    request_data: ResendRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> OkResponse:
    service.resend(request_data.email)
    return OkResponse()
