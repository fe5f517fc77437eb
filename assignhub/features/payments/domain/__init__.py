"""
Domain layer for the payments feature.
"""

from .models import (
    PAYMENT_METHOD,
    CheckoutRequest,
    CheckoutResponse,
    PaymentStatus,
    WebhookEvent,
    WebhookEventName,
)

__all__ = [
    "PAYMENT_METHOD",
    "CheckoutRequest",
    "CheckoutResponse",
    "PaymentStatus",
    "WebhookEvent",
    "WebhookEventName",
]
