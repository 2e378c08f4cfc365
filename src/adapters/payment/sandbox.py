"""
Sandbox payment gateway - Implements PaymentGateway protocol without a provider.

Used in development when no provider credentials are configured. Every
intent settles successfully unless an outcome is set for it, which lets
local flows exercise pending and failed payments.
"""

import logging
import threading
import uuid

from src.domain.ports import PaymentProvider, ProviderIntent, ProviderStatus

logger = logging.getLogger(__name__)


class SandboxPaymentGateway:
    """
    Implements PaymentGateway protocol in memory.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, provider: PaymentProvider, default_outcome: ProviderStatus = ProviderStatus.SUCCEEDED) -> None:
        self._provider = provider
        self._default_outcome = default_outcome
        self._lock = threading.Lock()
        self._intents: dict[str, str] = {}  # idempotency key -> intent id
        self._outcomes: dict[str, ProviderStatus] = {}

    def create_intent(
        self, amount_cents: int, currency: str, registration_id: str, description: str, idempotency_key: str
    ) -> ProviderIntent:
        with self._lock:
            intent_id = self._intents.get(idempotency_key)
            if intent_id is None:
                prefix = "pi" if self._provider is PaymentProvider.STRIPE else "order"
                intent_id = f"{prefix}_sandbox_{uuid.uuid4().hex}"
                self._intents[idempotency_key] = intent_id
        logger.info(
            "[SANDBOX PAYMENT] %s intent %s for %d %s (%s)",
            self._provider.value,
            intent_id,
            amount_cents,
            currency,
            registration_id,
        )
        if self._provider is PaymentProvider.STRIPE:
            client_secret = f"{intent_id}_secret_sandbox"
        else:
            client_secret = f"https://www.sandbox.paypal.com/checkoutnow?token={intent_id}"
        return ProviderIntent(provider_intent_id=intent_id, client_secret=client_secret)

    def confirm(self, provider_intent_id: str) -> ProviderStatus:
        with self._lock:
            return self._outcomes.get(provider_intent_id, self._default_outcome)

    def cancel(self, provider_intent_id: str) -> ProviderStatus:
        """Void the intent unless an outcome was explicitly set for it."""
        with self._lock:
            outcome = self._outcomes.get(provider_intent_id)
            if outcome in (ProviderStatus.SUCCEEDED, ProviderStatus.PENDING):
                return outcome
            self._outcomes[provider_intent_id] = ProviderStatus.FAILED
        logger.info("[SANDBOX PAYMENT] %s intent %s voided", self._provider.value, provider_intent_id)
        return ProviderStatus.FAILED

    def set_outcome(self, provider_intent_id: str, outcome: ProviderStatus) -> None:
        with self._lock:
            self._outcomes[provider_intent_id] = outcome
