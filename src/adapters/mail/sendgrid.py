"""
SendGrid email sender adapter - Implements EmailSender protocol.

Posts plain-text messages to the SendGrid v3 mail/send API with a
bounded timeout. Transport errors and non-2xx responses are raised as
EmailDeliveryError; retries are the caller's concern.
"""

import logging

import httpx

from src.domain.exceptions import EmailDeliveryError

logger = logging.getLogger(__name__)

SENDGRID_BASE_URL = "https://api.sendgrid.com"


class SendGridEmailSender:
    """Implements EmailSender protocol via httpx."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        base_url: str = SENDGRID_BASE_URL,
        timeout_seconds: float = 10.0,
        http: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._sender = sender
        self._http = http or httpx.Client(base_url=base_url, timeout=timeout_seconds)

    def send(self, to: str, subject: str, body: str) -> None:
        payload = {
            "from": {"email": self._sender},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
            "personalizations": [{"to": [{"email": to}]}],
        }
        try:
            response = self._http.post(
                "/v3/mail/send",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "SendGrid rejected message to %s: status=%s detail=%s", to, e.response.status_code, e.response.text
            )
            raise EmailDeliveryError(f"SendGrid returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning("SendGrid delivery to %s failed: %s", to, e)
            raise EmailDeliveryError(str(e)) from e
        logger.info("Email sent: to=%s subject=%s", to, subject)

    def close(self) -> None:
        self._http.close()
