"""
Welcome notifier adapter - Implements WelcomeNotifier protocol.

The welcome email is best-effort: it is handed to a small thread pool so
account creation never waits on the mail server, and any failure is
logged and dropped.
"""

import logging
from concurrent.futures import Executor, ThreadPoolExecutor

from src.domain.ports import Account, EmailSender

logger = logging.getLogger(__name__)


def welcome_email(account: Account) -> tuple[str, str]:
    """Subject and body of the welcome email."""
    name = account.profile.get("first_name") or "there"
    subject = "Welcome to Village Platform"
    if account.account_kind.value == "student":
        next_steps = "Your registration fee has been received and your student profile is ready to set up."
    else:
        next_steps = "You can now browse student profiles and start supporting their education."
    body = f"Hi {name},\n\nYour account is now active. {next_steps}\n\nThank you for joining Village!"
    return subject, body


class BackgroundWelcomeNotifier:
    """Sends welcome emails on a background executor."""

    def __init__(self, email_sender: EmailSender, executor: Executor | None = None) -> None:
        self._email_sender = email_sender
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="welcome-email")

    def notify_welcome(self, account: Account) -> None:
        try:
            self._executor.submit(self._send, account)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning("Welcome email not dispatched for account %s: %s", account.account_id, e)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def _send(self, account: Account) -> None:
        subject, body = welcome_email(account)
        try:
            self._email_sender.send(account.email, subject, body)
        except Exception:
            logger.exception("Welcome email failed for account %s", account.account_id)
