"""
Payments feature package.

Lemon Squeezy integration: hosted checkout creation and the order webhook
that marks assignments paid or refunded.
"""

from .api.router import router as payments_router  # noqa: F401
from .checkout_service import CheckoutError, LemonSqueezyCheckoutService  # noqa: F401
from .webhook_service import LemonSqueezyWebhookService, WebhookResult  # noqa: F401
