"""Email adapters - Console, SendGrid and welcome notification."""

from .console import ConsoleEmailSender
from .sendgrid import SendGridEmailSender
from .welcome import BackgroundWelcomeNotifier

__all__ = ["BackgroundWelcomeNotifier", "ConsoleEmailSender", "SendGridEmailSender"]
