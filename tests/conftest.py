"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- A controllable clock
- In-process repositories over one shared InMemoryState
- Recording email sender / welcome notifier test doubles
- Fully wired domain services with fast bcrypt and no retry sleeps
- A FastAPI test client running on the in-process backend
"""

import re
from collections.abc import Generator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from src.adapters.payment.sandbox import SandboxPaymentGateway
from src.adapters.repository.memory import (
    InMemoryAccountRepository,
    InMemoryPaymentIntentRepository,
    InMemoryRegistrationRepository,
    InMemoryState,
)
from src.api.main import create_app
from src.config.settings import Settings
from src.domain.finalizer import AccountFinalizer
from src.domain.otp import OtpCodec
from src.domain.payment import PaymentGate
from src.domain.ports import Account, AccountKind, PaymentProvider
from src.domain.registration import RegistrationService
from src.domain.tokens import TokenService
from src.domain.verification import VerificationService

TEST_PASSWORD = "Str0ng!Pass"

STUDENT_PROFILE = {"first_name": "Amara", "last_name": "Okafor", "school": "Lagos State University", "major": "Biology"}
DONOR_PROFILE = {"first_name": "Jean", "last_name": "O'Neil", "phone": "+1 555 0100"}

_CODE_RE = re.compile(r"verification code is: (\d+)")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        # Starts at wall-clock time: JWT expiry is checked against the real clock
        self.now = start or datetime.now(UTC).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingEmailSender:
    """EmailSender test double that keeps every message."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.messages.append((to, subject, body))

    def last_code(self, email: str) -> str:
        for to, _, body in reversed(self.messages):
            match = _CODE_RE.search(body)
            if to == email and match:
                return match.group(1)
        raise AssertionError(f"No verification code sent to {email}")


class RecordingNotifier:
    """WelcomeNotifier test double."""

    def __init__(self) -> None:
        self.welcomed: list[Account] = []

    def notify_welcome(self, account: Account) -> None:
        self.welcomed.append(account)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state() -> InMemoryState:
    return InMemoryState()


@pytest.fixture
def registrations(state: InMemoryState) -> InMemoryRegistrationRepository:
    return InMemoryRegistrationRepository(state)


@pytest.fixture
def accounts(state: InMemoryState) -> InMemoryAccountRepository:
    return InMemoryAccountRepository(state)


@pytest.fixture
def intents(state: InMemoryState) -> InMemoryPaymentIntentRepository:
    return InMemoryPaymentIntentRepository(state)


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def otp() -> OtpCodec:
    return OtpCodec(secret="test-otp-secret")


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(
        secret_key="test-jwt-secret",
        issuer="village-platform",
        audience="village-users",
        verified_ttl_seconds=24 * 60 * 60,
        session_ttl_seconds=7 * 24 * 60 * 60,
    )


@pytest.fixture
def registration_service(
    registrations: InMemoryRegistrationRepository,
    accounts: InMemoryAccountRepository,
    email_sender: RecordingEmailSender,
    otp: OtpCodec,
    finalizer: AccountFinalizer,
    clock: FakeClock,
) -> RegistrationService:
    return RegistrationService(
        registrations=registrations,
        accounts=accounts,
        email_sender=email_sender,
        otp=otp,
        bcrypt_cost=4,
        email_backoff_factor=0,
        finalizer=finalizer,
        clock=clock,
    )


@pytest.fixture
def finalizer(
    accounts: InMemoryAccountRepository, tokens: TokenService, notifier: RecordingNotifier, clock: FakeClock
) -> AccountFinalizer:
    return AccountFinalizer(accounts=accounts, tokens=tokens, notifier=notifier, clock=clock)


@pytest.fixture
def verification_service(
    registrations: InMemoryRegistrationRepository,
    finalizer: AccountFinalizer,
    tokens: TokenService,
    otp: OtpCodec,
    clock: FakeClock,
) -> VerificationService:
    return VerificationService(registrations=registrations, finalizer=finalizer, tokens=tokens, otp=otp, clock=clock)


@pytest.fixture
def gateways() -> dict[PaymentProvider, SandboxPaymentGateway]:
    return {
        PaymentProvider.STRIPE: SandboxPaymentGateway(PaymentProvider.STRIPE),
        PaymentProvider.PAYPAL: SandboxPaymentGateway(PaymentProvider.PAYPAL),
    }


@pytest.fixture
def payment_gate(
    registrations: InMemoryRegistrationRepository,
    accounts: InMemoryAccountRepository,
    intents: InMemoryPaymentIntentRepository,
    gateways: dict[PaymentProvider, SandboxPaymentGateway],
    finalizer: AccountFinalizer,
    tokens: TokenService,
    clock: FakeClock,
) -> PaymentGate:
    return PaymentGate(
        registrations=registrations,
        accounts=accounts,
        intents=intents,
        gateways=gateways,
        finalizer=finalizer,
        tokens=tokens,
        backoff_factor=0,
        clock=clock,
    )


@pytest.fixture
def verified_student(
    registration_service: RegistrationService,
    verification_service: VerificationService,
    email_sender: RecordingEmailSender,
) -> str:
    """Register and verify a student; returns the verified token."""
    email = "student@example.com"
    registration_service.register(AccountKind.STUDENT, email, TEST_PASSWORD, STUDENT_PROFILE)
    result = verification_service.verify(email, email_sender.last_code(email))
    return result.verified_token


def make_settings(**overrides) -> Settings:
    values = {
        "storage_backend": "memory",
        "rate_limit_backend": "memory",
        "email_backend": "console",
        "sendgrid_api_key": None,
        "reaper_enabled": False,
        "bcrypt_cost": 4,
        "email_backoff_factor": 0,
        "payment_backoff_factor": 0,
        "stripe_secret_key": None,
        "stripe_webhook_secret": None,
        "paypal_client_id": None,
        "paypal_client_secret": None,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def api_settings() -> Settings:
    return make_settings()


@pytest.fixture
def client(api_settings: Settings, monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    """Test client on the in-process backend with a recording email sender."""
    monkeypatch.delenv("DISABLE_RATE_LIMIT", raising=False)
    app = create_app(api_settings)
    with TestClient(app) as test_client:
        sender = RecordingEmailSender()
        app.state.email_sender = sender
        app.state.notifier = RecordingNotifier()
        yield test_client
