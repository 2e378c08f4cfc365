"""
PayPal payment gateway - Implements PaymentGateway protocol via the Orders v2 API.

create_intent() opens a CAPTURE order and returns its approval URL.
confirm() reads the order back and captures it once the payer has
approved; capture requests carry a PayPal-Request-Id so a repeated
confirmation never captures twice.
"""

import logging
import threading
import time

import httpx

from src.domain.exceptions import PaymentProviderError
from src.domain.ports import ProviderIntent, ProviderStatus

logger = logging.getLogger(__name__)


class PayPalPaymentGateway:
    """Implements PaymentGateway protocol via httpx."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        return_url: str,
        cancel_url: str,
        timeout_seconds: float = 10.0,
        http: httpx.Client | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._return_url = return_url
        self._cancel_url = cancel_url
        self._http = http or httpx.Client(base_url=base_url, timeout=timeout_seconds)
        self._token_lock = threading.Lock()
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    def create_intent(
        self, amount_cents: int, currency: str, registration_id: str, description: str, idempotency_key: str
    ) -> ProviderIntent:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": registration_id,
                    "description": description,
                    "custom_id": "registration_fee",
                    "amount": {"currency_code": currency.upper(), "value": f"{amount_cents / 100:.2f}"},
                }
            ],
            "application_context": {"return_url": self._return_url, "cancel_url": self._cancel_url},
        }
        order = self._request("POST", "/v2/checkout/orders", json=body, request_id=idempotency_key)
        approval_url = next(
            (link["href"] for link in order.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        if approval_url is None:
            raise PaymentProviderError(f"PayPal order {order.get('id')} has no approval link")
        return ProviderIntent(provider_intent_id=order["id"], client_secret=approval_url)

    def confirm(self, provider_intent_id: str) -> ProviderStatus:
        order = self._request("GET", f"/v2/checkout/orders/{provider_intent_id}")
        status = order.get("status")
        if status == "APPROVED":
            order = self._request(
                "POST",
                f"/v2/checkout/orders/{provider_intent_id}/capture",
                json={},
                request_id=f"capture-{provider_intent_id}",
            )
            status = order.get("status")
        return paypal_status(status)

    def cancel(self, provider_intent_id: str) -> ProviderStatus:
        """
        Abandon an order. Orders are only captured by confirm(), so any
        order not already COMPLETED is treated as void and never captured.
        """
        order = self._request("GET", f"/v2/checkout/orders/{provider_intent_id}")
        if order.get("status") == "COMPLETED":
            return ProviderStatus.SUCCEEDED
        logger.info("PayPal order %s abandoned in status %s", provider_intent_id, order.get("status"))
        return ProviderStatus.FAILED

    def _request(self, method: str, path: str, json: dict | None = None, request_id: str | None = None) -> dict:
        headers = {"Authorization": f"Bearer {self._token()}", "Content-Type": "application/json"}
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        try:
            response = self._http.request(method, path, json=json, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("PayPal %s %s failed: %s", method, path, e)
            raise PaymentProviderError(str(e)) from e
        return response.json()

    def _token(self) -> str:
        with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token
            try:
                response = self._http.post(
                    "/v1/oauth2/token",
                    data={"grant_type": "client_credentials"},
                    auth=(self._client_id, self._client_secret),
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning("PayPal token request failed: %s", e)
                raise PaymentProviderError(str(e)) from e
            payload = response.json()
            self._access_token = payload["access_token"]
            # Refresh a minute early
            self._token_expires_at = time.monotonic() + max(int(payload.get("expires_in", 0)) - 60, 0)
            return self._access_token


def paypal_status(status: str | None) -> ProviderStatus:
    """Map a PayPal order status to a settlement status."""
    if status == "COMPLETED":
        return ProviderStatus.SUCCEEDED
    if status == "VOIDED":
        return ProviderStatus.FAILED
    return ProviderStatus.PENDING
