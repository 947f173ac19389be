"""External integrations (Stripe, PayPal, webhooks)."""
from producers_avenue.integrations.paypal_client import PayPalClient
from producers_avenue.integrations.stripe_client import StripeClient
from producers_avenue.integrations.webhook_handler import (
    PayPalWebhookHandler,
    StripeWebhookHandler,
    WebhookHandler,
)

__all__ = [
    "PayPalClient",
    "PayPalWebhookHandler",
    "StripeClient",
    "StripeWebhookHandler",
    "WebhookHandler",
]
