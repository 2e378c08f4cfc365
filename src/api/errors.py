"""
Exception handlers - map domain errors to HTTP responses.

Every RegistrationError carries a stable kind; the status code is looked
up from it here and nowhere else. Error bodies share one shape:

    {"error": {"kind": "...", "message": "..."}}

Rate-limited responses add retryAfter / retryAfterSeconds and a
Retry-After header. Invariant violations are logged at CRITICAL with the
request context and surface only as a generic 500.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.api.models import ErrorBody, ErrorResponse
from src.domain.exceptions import InvalidCode, InvariantViolation, RateLimited, RegistrationError

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "already_registered": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "expired": status.HTTP_410_GONE,
    "attempts_exhausted": status.HTTP_410_GONE,
    "invalid_code": status.HTTP_401_UNAUTHORIZED,
    "invalid_token": status.HTTP_401_UNAUTHORIZED,
    "rate_limited": status.HTTP_429_TOO_MANY_REQUESTS,
    "payment_failed": status.HTTP_402_PAYMENT_REQUIRED,
    "payment_pending": status.HTTP_409_CONFLICT,
    "collaborator_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "invariant_violation": status.HTTP_500_INTERNAL_SERVER_ERROR,
}

GENERIC_FAILURE_MESSAGE = "Unable to complete registration"


def _error_response(status_code: int, body: ErrorResponse, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


async def registration_error_handler(request: Request, exc: RegistrationError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    message = exc.message
    headers = None
    body = ErrorResponse(error=ErrorBody(kind=exc.kind, message=message))

    if isinstance(exc, InvariantViolation):
        logger.critical("Invariant violation on %s %s: %s", request.method, request.url.path, exc.message)
        body.error.message = GENERIC_FAILURE_MESSAGE
    elif isinstance(exc, InvalidCode):
        body.error.attempts_remaining = exc.attempts_remaining
    elif isinstance(exc, RateLimited):
        body.retry_after = exc.retry_after
        body.retry_after_seconds = exc.retry_after_seconds
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    return _error_response(status_code, body, headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    body = ErrorResponse(error=ErrorBody(kind="validation_error", message=message))
    return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RegistrationError, registration_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
