"""
Stripe payment gateway - Implements PaymentGateway protocol via the Stripe SDK.

Intents are created server-side; the client confirms them with the
returned client secret, and settlement is read back from the intent
status. Webhook payloads are authenticated with the endpoint signing
secret before any intent id is trusted.
"""

import logging

import stripe

from src.domain.exceptions import PaymentProviderError
from src.domain.ports import ProviderIntent, ProviderStatus

logger = logging.getLogger(__name__)

_PENDING_STATUSES = ("processing", "requires_action", "requires_confirmation", "requires_capture")

_CANCELABLE_STATUSES = ("requires_payment_method", "requires_confirmation", "requires_action", "requires_capture")

WEBHOOK_EVENT_TYPES = ("payment_intent.succeeded", "payment_intent.payment_failed", "payment_intent.canceled")


class StripePaymentGateway:
    """
    Implements PaymentGateway protocol via stripe-python.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, api_key: str, timeout_seconds: float = 10.0) -> None:
        self._api_key = api_key
        # Retries are owned by the domain's backoff policy
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)

    def create_intent(
        self, amount_cents: int, currency: str, registration_id: str, description: str, idempotency_key: str
    ) -> ProviderIntent:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self._api_key,
                amount=amount_cents,
                currency=currency,
                description=description,
                metadata={"type": "registration_fee", "registration_id": registration_id},
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.warning("Stripe create intent failed for %s: %s", registration_id, e)
            raise PaymentProviderError(str(e)) from e
        return ProviderIntent(provider_intent_id=intent.id, client_secret=intent.client_secret)

    def confirm(self, provider_intent_id: str) -> ProviderStatus:
        try:
            intent = stripe.PaymentIntent.retrieve(provider_intent_id, api_key=self._api_key)
        except stripe.StripeError as e:
            logger.warning("Stripe retrieve intent %s failed: %s", provider_intent_id, e)
            raise PaymentProviderError(str(e)) from e
        return stripe_status(intent.status, has_error=bool(getattr(intent, "last_payment_error", None)))

    def cancel(self, provider_intent_id: str) -> ProviderStatus:
        try:
            intent = stripe.PaymentIntent.retrieve(provider_intent_id, api_key=self._api_key)
            if intent.status in _CANCELABLE_STATUSES:
                intent = stripe.PaymentIntent.cancel(
                    provider_intent_id, api_key=self._api_key, cancellation_reason="abandoned"
                )
                logger.info("Stripe intent %s canceled as abandoned", provider_intent_id)
        except stripe.StripeError as e:
            logger.warning("Stripe cancel intent %s failed: %s", provider_intent_id, e)
            raise PaymentProviderError(str(e)) from e
        return stripe_status(intent.status, has_error=bool(getattr(intent, "last_payment_error", None)))


def stripe_status(status: str, has_error: bool = False) -> ProviderStatus:
    """
    Map a Stripe PaymentIntent status to a settlement status.

    A fresh intent is also in requires_payment_method, so that status only
    counts as failed once Stripe has recorded a payment error.
    """
    if status == "succeeded":
        return ProviderStatus.SUCCEEDED
    if status == "canceled":
        return ProviderStatus.FAILED
    if status == "requires_payment_method":
        return ProviderStatus.FAILED if has_error else ProviderStatus.PENDING
    if status in _PENDING_STATUSES:
        return ProviderStatus.PENDING
    logger.warning("Unknown Stripe PaymentIntent status: %s", status)
    return ProviderStatus.PENDING


def parse_webhook(payload: bytes, signature: str, webhook_secret: str) -> str | None:
    """
    Verify a Stripe webhook and return the payment intent id it concerns.

    Returns None for event types the activation pipeline ignores.

    Raises:
        ValueError: payload is not valid JSON or the signature does not verify
    """
    try:
        event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
    except stripe.SignatureVerificationError as e:
        raise ValueError("Invalid Stripe webhook signature") from e
    if event["type"] not in WEBHOOK_EVENT_TYPES:
        return None
    intent = event["data"]["object"]
    try:
        fee_type = intent["metadata"]["type"]
    except KeyError:
        return None
    if fee_type != "registration_fee":
        return None
    return intent["id"]
