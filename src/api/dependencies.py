"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting
domain services and infrastructure adapters into routes.

Long-lived collaborators (connection pool or in-process store, rate
limiter, gateways, notifier) are created during app lifespan startup and
stored in app.state. Repositories and domain services are built per
request on top of them.
"""

from collections.abc import Callable

from fastapi import Request
from starlette.datastructures import State

from src.adapters.repository.memory import (
    InMemoryAccountRepository,
    InMemoryPaymentIntentRepository,
    InMemoryRegistrationRepository,
)
from src.adapters.repository.postgres import (
    PostgresAccountRepository,
    PostgresPaymentIntentRepository,
    PostgresRegistrationRepository,
)
from src.config.settings import Settings
from src.domain.exceptions import RateLimited
from src.domain.finalizer import AccountFinalizer
from src.domain.payment import PaymentGate
from src.domain.ports import AccountRepository, PaymentIntentRepository, RegistrationRepository
from src.domain.rate_limit import EndpointClass
from src.domain.registration import RegistrationService
from src.domain.verification import VerificationService


def registration_repository(state: State) -> RegistrationRepository:
    if state.pool is not None:
        return PostgresRegistrationRepository(state.pool)
    return InMemoryRegistrationRepository(state.memory)


def account_repository(state: State) -> AccountRepository:
    if state.pool is not None:
        return PostgresAccountRepository(state.pool)
    return InMemoryAccountRepository(state.memory)


def payment_intent_repository(state: State) -> PaymentIntentRepository:
    if state.pool is not None:
        return PostgresPaymentIntentRepository(state.pool)
    return InMemoryPaymentIntentRepository(state.memory)


def build_registration_service(state: State) -> RegistrationService:
    """
    Create registration service with injected dependencies.

    Also used by the reaper, which runs outside any request.
    """
    settings: Settings = state.settings
    return RegistrationService(
        registrations=registration_repository(state),
        accounts=account_repository(state),
        email_sender=state.email_sender,
        otp=state.otp,
        otp_ttl_seconds=settings.otp_ttl_seconds,
        otp_max_attempts=settings.otp_max_attempts,
        pending_ttl_seconds=settings.pending_ttl_seconds,
        bcrypt_cost=settings.bcrypt_cost,
        email_max_tries=settings.email_max_tries,
        email_backoff_factor=settings.email_backoff_factor,
        finalizer=build_finalizer(state),
    )


def build_finalizer(state: State) -> AccountFinalizer:
    return AccountFinalizer(accounts=account_repository(state), tokens=state.tokens, notifier=state.notifier)


def get_registration_service(request: Request) -> RegistrationService:
    return build_registration_service(request.app.state)


def get_verification_service(request: Request) -> VerificationService:
    state = request.app.state
    return VerificationService(
        registrations=registration_repository(state),
        finalizer=build_finalizer(state),
        tokens=state.tokens,
        otp=state.otp,
    )


def build_payment_gate(state: State) -> PaymentGate:
    settings: Settings = state.settings
    return PaymentGate(
        registrations=registration_repository(state),
        accounts=account_repository(state),
        intents=payment_intent_repository(state),
        gateways=state.gateways,
        finalizer=build_finalizer(state),
        tokens=state.tokens,
        fee_cents=settings.registration_fee_cents,
        currency=settings.registration_fee_currency,
        max_tries=settings.payment_max_tries,
        backoff_factor=settings.payment_backoff_factor,
    )


def get_payment_gate(request: Request) -> PaymentGate:
    return build_payment_gate(request.app.state)


def reap(state: State) -> int:
    """
    Reaper job: release abandoned payment intents, then expire stale registrations.

    Returns the number of registrations expired.
    """
    build_payment_gate(state).release_abandoned_payments()
    return build_registration_service(state).expire_stale()


def get_settings_from_app(request: Request) -> Settings:
    return request.app.state.settings


def client_identity(request: Request) -> str:
    """Rate-limit identity: the client IP address."""
    return request.client.host if request.client else "unknown"


def rate_limit(endpoint_class: EndpointClass) -> Callable[[Request], None]:
    """
    Dependency factory enforcing the quota for an endpoint class.

    Raises:
        RateLimited: quota exhausted for this client in the current window
    """

    def check(request: Request) -> None:
        decision = request.app.state.rate_limiter.allow(endpoint_class, client_identity(request))
        if not decision.permitted:
            raise RateLimited(
                f"Too many requests, please try again in {decision.retry_after}",
                retry_after_seconds=decision.retry_after_seconds,
                retry_after=decision.retry_after,
            )

    return check
