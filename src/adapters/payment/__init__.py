"""Payment gateway adapters - Stripe, PayPal and sandbox implementations."""

from .paypal import PayPalPaymentGateway
from .sandbox import SandboxPaymentGateway
from .stripe_gateway import StripePaymentGateway

__all__ = ["PayPalPaymentGateway", "SandboxPaymentGateway", "StripePaymentGateway"]
