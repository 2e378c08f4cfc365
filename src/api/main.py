"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures logging, exception handlers, and lifespan events.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from psycopg_pool import ConnectionPool

from src.adapters.mail import BackgroundWelcomeNotifier, ConsoleEmailSender, SendGridEmailSender
from src.adapters.payment import PayPalPaymentGateway, SandboxPaymentGateway, StripePaymentGateway
from src.adapters.ratelimit import InMemoryRateCounterStore, RedisRateCounterStore
from src.adapters.repository.memory import InMemoryState
from src.adapters.repository.postgres import run_migrations
from src.adapters.scheduler import create_reaper, start_reaper, stop_reaper
from src.api.dependencies import reap
from src.api.errors import register_exception_handlers
from src.api.routes import auth_router, payment_router
from src.config.settings import Settings, get_settings
from src.domain.otp import OtpCodec
from src.domain.ports import EmailSender, PaymentGateway, PaymentProvider, RateCounterStore
from src.domain.rate_limit import EndpointClass, RateLimiter, RateLimitPolicy, RateLimitRule
from src.domain.tokens import TokenService

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {"name": "auth", "description": "Register students and donors and verify their email"},
    {"name": "payment", "description": "Student registration fee and account activation"},
]


def build_rate_limiter(settings: Settings) -> tuple[RateLimiter, RateCounterStore]:
    if settings.rate_limit_backend == "redis":
        store: RateCounterStore = RedisRateCounterStore.from_url(settings.redis_url)
    else:
        store = InMemoryRateCounterStore()
    rules = {
        EndpointClass.REGISTER: RateLimitRule.parse(settings.rate_limit_register),
        EndpointClass.VERIFY_OTP: RateLimitRule.parse(settings.rate_limit_verify_otp),
        EndpointClass.RESEND: RateLimitRule.parse(settings.rate_limit_resend),
        EndpointClass.PAYMENT_INTENT: RateLimitRule.parse(settings.rate_limit_payment_intent),
        EndpointClass.PAYMENT_CONFIRM: RateLimitRule.parse(settings.rate_limit_payment_confirm),
    }
    limiter = RateLimiter(store=store, rules=rules, policy=RateLimitPolicy(enabled=settings.rate_limit_enabled))
    return limiter, store


def build_email_sender(settings: Settings) -> EmailSender:
    if settings.email_backend == "sendgrid":
        if settings.sendgrid_api_key:
            return SendGridEmailSender(
                api_key=settings.sendgrid_api_key,
                sender=settings.email_from,
                base_url=settings.sendgrid_base_url,
                timeout_seconds=settings.collaborator_timeout_seconds,
            )
        logger.warning("SendGrid API key not configured, logging emails to console")
    return ConsoleEmailSender()


def build_gateways(settings: Settings) -> dict[PaymentProvider, PaymentGateway]:
    """Live gateways where credentials are configured, sandbox gateways otherwise."""
    gateways: dict[PaymentProvider, PaymentGateway] = {}
    if settings.stripe_secret_key:
        gateways[PaymentProvider.STRIPE] = StripePaymentGateway(
            api_key=settings.stripe_secret_key, timeout_seconds=settings.collaborator_timeout_seconds
        )
    else:
        logger.warning("Stripe credentials not configured, using sandbox gateway")
        gateways[PaymentProvider.STRIPE] = SandboxPaymentGateway(PaymentProvider.STRIPE)
    if settings.paypal_client_id and settings.paypal_client_secret:
        gateways[PaymentProvider.PAYPAL] = PayPalPaymentGateway(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            base_url=settings.paypal_base_url,
            return_url=settings.paypal_return_url,
            cancel_url=settings.paypal_cancel_url,
            timeout_seconds=settings.collaborator_timeout_seconds,
        )
    else:
        logger.warning("PayPal credentials not configured, using sandbox gateway")
        gateways[PaymentProvider.PAYPAL] = SandboxPaymentGateway(PaymentProvider.PAYPAL)
    return gateways


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application. Settings default to the cached environment settings."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        FastAPI lifespan context manager.

        Manages application startup and shutdown:
        - Creates database connection pool (or in-process store) on startup
        - Runs migrations on startup
        - Wires rate limiter, email, payment gateways and the reaper
        - Releases all of them on shutdown
        """
        state = app.state
        logger.info("Starting application...")
        state.settings = settings

        state.pool = None
        state.memory = None
        if settings.storage_backend == "postgres":
            logger.info("Connecting to database...")
            # Create connection pool with explicit sizing
            state.pool = ConnectionPool(
                conninfo=settings.database_url,
                min_size=settings.pool_min_size,
                max_size=settings.pool_max_size,
            )
            logger.info("Running database migrations...")
            run_migrations(state.pool)
        else:
            logger.warning("Using in-process storage; data is lost on restart")
            state.memory = InMemoryState()

        state.rate_limiter, rate_store = build_rate_limiter(settings)
        state.otp = OtpCodec(secret=settings.otp_secret, length=settings.otp_length)
        state.tokens = TokenService(
            secret_key=settings.jwt_secret_key,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            verified_ttl_seconds=settings.verified_token_ttl_seconds,
            session_ttl_seconds=settings.session_token_ttl_seconds,
            algorithm=settings.jwt_algorithm,
        )
        email_sender = build_email_sender(settings)
        state.email_sender = email_sender
        notifier = BackgroundWelcomeNotifier(email_sender)
        state.notifier = notifier
        state.gateways = build_gateways(settings)

        state.reaper = None
        if settings.reaper_enabled:
            state.reaper = create_reaper(
                lambda: reap(state), settings.reaper_interval_seconds
            )
            start_reaper(state.reaper)

        logger.info("Application startup complete")

        yield

        # Shutdown
        logger.info("Shutting down application...")
        if state.reaper is not None:
            stop_reaper(state.reaper)
        notifier.shutdown()
        if isinstance(email_sender, SendGridEmailSender):
            email_sender.close()
        if isinstance(rate_store, RedisRateCounterStore):
            rate_store.close()
        if state.pool is not None:
            state.pool.close()
            logger.info("Database connection pool closed")

    app = FastAPI(
        title="village-activation",
        description="Account activation pipeline for student and donor registrations",
        version="0.1.0",
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.include_router(auth_router)
    app.include_router(payment_router)

    @app.get("/health")
    def health_check(request: Request) -> dict[str, str]:
        """
        Health check endpoint with database validation.

        Returns 200 OK if application and database are healthy.
        Raises exception if database connection fails.
        """
        pool = request.app.state.pool
        if pool is not None:
            with pool.connection() as conn:
                conn.execute("SELECT 1")
        return {"status": "healthy", "storage": settings.storage_backend}

    return app


app = create_app()
