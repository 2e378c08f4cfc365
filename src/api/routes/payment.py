"""
Registration fee payment routes.

- POST /payment/create-intent - Start (or resume) the fee payment
- POST /payment/confirm - Settle the payment and activate the account
- POST /payment/webhook/stripe - Provider-side settlement notification

Client confirmation and the webhook may race for the same intent; both
settle through the same idempotent path.
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool

from src.adapters.payment.stripe_gateway import parse_webhook
from src.api.dependencies import get_payment_gate, get_settings_from_app, rate_limit
from src.api.models import (
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreateIntentRequest,
    CreateIntentResponse,
    ErrorResponse,
    WebhookResponse,
)
from src.config.settings import Settings
from src.domain.exceptions import Expired, InvalidToken, NotFound, PaymentFailed, PaymentPending
from src.domain.payment import PaymentGate
from src.domain.rate_limit import EndpointClass

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])


@router.post(
    "/create-intent",
    response_model=CreateIntentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid verified token"},
        404: {"model": ErrorResponse, "description": "No pending registration"},
        409: {"model": ErrorResponse, "description": "Already completed or other provider in progress"},
        410: {"model": ErrorResponse, "description": "Verification expired"},
        429: {"model": ErrorResponse, "description": "Rate limited"},
        503: {"model": ErrorResponse, "description": "Payment provider unavailable"},
    },
    summary="Create the registration fee payment",
    dependencies=[Depends(rate_limit(EndpointClass.PAYMENT_INTENT))],
)
def create_intent(
    request_data: CreateIntentRequest,
    gate: PaymentGate = Depends(get_payment_gate),
) -> CreateIntentResponse:
    record = gate.create_intent(request_data.verified_token, request_data.provider)
    return CreateIntentResponse.from_record(record)


@router.post(
    "/confirm",
    response_model=ConfirmPaymentResponse,
    responses={
        402: {"model": ErrorResponse, "description": "Payment failed"},
        404: {"model": ErrorResponse, "description": "Unknown payment"},
        409: {"model": ErrorResponse, "description": "Payment not settled yet"},
        410: {"model": ErrorResponse, "description": "Registration expired before payment"},
        429: {"model": ErrorResponse, "description": "Rate limited"},
        503: {"model": ErrorResponse, "description": "Payment provider unavailable"},
    },
    summary="Confirm the registration fee payment",
    description="Idempotent: repeated confirmations return the same account and session token.",
    dependencies=[Depends(rate_limit(EndpointClass.PAYMENT_CONFIRM))],
)
def confirm(
    request_data: ConfirmPaymentRequest,
    gate: PaymentGate = Depends(get_payment_gate),
) -> ConfirmPaymentResponse:
    finalized = gate.confirm(request_data.provider_intent_id)
    return ConfirmPaymentResponse.from_finalized(finalized)


@router.post(
    "/webhook/stripe",
    response_model=WebhookResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        404: {"model": ErrorResponse, "description": "Webhooks not configured"},
        503: {"model": ErrorResponse, "description": "Payment provider unavailable"},
    },
    summary="Stripe webhook",
)
async def stripe_webhook(
    request: Request,
    gate: PaymentGate = Depends(get_payment_gate),
    settings: Settings = Depends(get_settings_from_app),
) -> WebhookResponse:
    """
    Settle a payment from a signed Stripe event.

    Authenticated by signature rather than rate-limited. Pending, failed,
    expired and unknown intents are acknowledged so Stripe stops redelivering;
    provider outages return 503 so it retries.
    """
    if not settings.stripe_webhook_secret:
        raise NotFound("Stripe webhooks are not configured")

    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")
    try:
        provider_intent_id = parse_webhook(payload, signature, settings.stripe_webhook_secret)
    except ValueError:
        logger.warning("Rejected Stripe webhook with invalid payload or signature")
        raise InvalidToken("Invalid webhook signature") from None

    if provider_intent_id is None:
        return WebhookResponse()

    try:
        await run_in_threadpool(gate.confirm, provider_intent_id)
    except (PaymentPending, PaymentFailed, NotFound, Expired) as e:
        logger.info("Stripe webhook for %s not settled: %s", provider_intent_id, e.kind)
    return WebhookResponse()
