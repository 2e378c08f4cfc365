"""
Unit tests for domain ports and exceptions.

Tests verify:
- Registration state machine values
- Exceptions carry stable kinds
- Domain purity (zero framework imports)
"""

import subprocess
from enum import Enum
from pathlib import Path

import pytest

from src.domain.exceptions import (
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
from src.domain.ports import (
    ACTIVE_STATES,
    FINALIZABLE_STATE,
    AccountKind,
    RegistrationState,
)

DOMAIN_DIR = Path(__file__).resolve().parents[2] / "src" / "domain"


class TestRegistrationState:
    def test_is_enum(self) -> None:
        assert issubclass(RegistrationState, Enum)

    def test_values(self) -> None:
        assert {s.value for s in RegistrationState} == {
            "AWAITING_VERIFICATION",
            "VERIFIED",
            "AWAITING_PAYMENT",
            "COMPLETED",
            "EXPIRED",
        }

    def test_terminal_states_are_not_active(self) -> None:
        assert RegistrationState.COMPLETED not in ACTIVE_STATES
        assert RegistrationState.EXPIRED not in ACTIVE_STATES

    def test_finalizable_state_per_kind(self) -> None:
        assert FINALIZABLE_STATE[AccountKind.DONOR] is RegistrationState.VERIFIED
        assert FINALIZABLE_STATE[AccountKind.STUDENT] is RegistrationState.AWAITING_PAYMENT


class TestExceptions:
    @pytest.mark.parametrize(
        ("exc_class", "kind"),
        [
            (InvalidRegistration, "validation_error"),
            (AlreadyRegistered, "already_registered"),
            (Conflict, "conflict"),
            (NotFound, "not_found"),
            (Expired, "expired"),
            (AttemptsExhausted, "attempts_exhausted"),
            (InvalidCode, "invalid_code"),
            (InvalidToken, "invalid_token"),
            (RateLimited, "rate_limited"),
            (PaymentFailed, "payment_failed"),
            (PaymentPending, "payment_pending"),
            (CollaboratorUnavailable, "collaborator_unavailable"),
            (InvariantViolation, "invariant_violation"),
        ],
    )
    def test_kind(self, exc_class: type[RegistrationError], kind: str) -> None:
        assert issubclass(exc_class, RegistrationError)
        assert exc_class.kind == kind

    def test_message_preserved(self) -> None:
        assert NotFound("gone").message == "gone"

    def test_invalid_code_carries_attempts(self) -> None:
        assert InvalidCode("wrong", attempts_remaining=2).attempts_remaining == 2

    def test_rate_limited_carries_retry_after(self) -> None:
        exc = RateLimited("slow down", retry_after_seconds=42, retry_after="42 seconds")
        assert exc.retry_after_seconds == 42
        assert exc.retry_after == "42 seconds"


class TestDomainPurity:
    """The domain layer imports no web, validation or database framework."""

    @pytest.mark.parametrize("module", ["fastapi", "pydantic", "psycopg", "redis", "stripe", "httpx", "apscheduler"])
    def test_no_framework_imports_in_domain(self, module: str) -> None:
        result = subprocess.run(
            ["grep", "-rE", f"^(from|import) {module}", str(DOMAIN_DIR)],
            capture_output=True,
            text=True,
        )
        assert result.returncode != 0, f"{module} import found: {result.stdout}"
