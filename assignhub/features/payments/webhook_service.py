"""
Lemon Squeezy webhook processing.

Verifies the X-Signature HMAC over the raw body, parses the event and
applies order_created / order_refunded to assignment and payment rows.

Response policy:
    401  signature missing or wrong, or no secret configured
    500  malformed body, or the database is unreachable (the provider retries)
    200  processed, duplicate, unknown event, or a permanent data error
         (logged; redelivery would not fix it)
"""

import hashlib
import hmac
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import ValidationError

from assignhub.config import settings
from assignhub.db.helpers import DatabaseError
from assignhub.features.payments.domain.models import WebhookEvent, WebhookEventName
from assignhub.features.payments.repository import PaymentRepository, payment_repository
from assignhub.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Signature"


class WebhookSignatureError(Exception):
    """Webhook could not be authenticated."""


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    body: str


OK = WebhookResult(200, "OK")
INVALID_SIGNATURE = WebhookResult(401, "Invalid signature")
INTERNAL_ERROR = WebhookResult(500, "Internal server error")


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(
    body: bytes, signature: str | None, secret: str | None, allow_unsigned: bool = False
) -> None:
    """
    Check the hex HMAC-SHA256 of the raw body against the provided signature.

    Raises:
        WebhookSignatureError: when no secret is configured (unless unsigned
            webhooks are explicitly allowed), the signature is missing, or it
            does not match
    """
    if not secret:
        if allow_unsigned:
            logger.warning("Webhook secret not configured, skipping signature verification")
            return
        raise WebhookSignatureError("Webhook secret not configured")

    if not signature:
        raise WebhookSignatureError("Missing signature")

    expected = compute_signature(secret, body).encode()
    # Header values are latin-1 decoded and may contain non-ASCII text
    if not hmac.compare_digest(expected, signature.strip().encode("utf-8", "surrogateescape")):
        raise WebhookSignatureError("Invalid signature")


class LemonSqueezyWebhookService:
    def __init__(
        self,
        repository: PaymentRepository | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.repository = repository or payment_repository
        self.clock = clock
        self._handlers: dict[str, Callable[[WebhookEvent, str], Awaitable[None]]] = {
            WebhookEventName.ORDER_CREATED.value: self._handle_order_created,
            WebhookEventName.ORDER_REFUNDED.value: self._handle_order_refunded,
        }

    async def handle(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        try:
            verify_signature(
                raw_body,
                signature,
                settings.LEMON_SQUEEZY_WEBHOOK_SECRET,
                allow_unsigned=settings.allows_unsigned_webhooks(),
            )
        except WebhookSignatureError as e:
            logger.error("Webhook signature rejected", reason=str(e))
            return INVALID_SIGNATURE

        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except ValidationError as e:
            logger.error("Malformed webhook payload", error=str(e))
            return INTERNAL_ERROR

        logger.info(
            "Received Lemon Squeezy webhook", event_name=event.event_name, order_id=event.order_id
        )

        handler = self._handlers.get(event.event_name)
        if handler is None:
            logger.info("Unhandled event type", event_name=event.event_name)
            return OK

        assignment_id = event.assignment_id()
        if not assignment_id:
            logger.error(
                "No assignment ID found in order",
                event_name=event.event_name,
                order_id=event.order_id,
            )
            return OK

        try:
            await handler(event, assignment_id)
        except DatabaseError as e:
            if e.recoverable:
                logger.error(
                    "Webhook processing failed, provider will redeliver",
                    event_name=event.event_name,
                    assignment_id=assignment_id,
                    error=str(e),
                )
                return INTERNAL_ERROR
            logger.error(
                "Webhook processing failed",
                event_name=event.event_name,
                assignment_id=assignment_id,
                operation=e.operation,
                error=str(e),
            )
            return OK
        except Exception:
            logger.exception("Webhook error", event_name=event.event_name)
            return INTERNAL_ERROR

        return OK

    async def _handle_order_created(self, event: WebhookEvent, assignment_id: str) -> None:
        logger.info("Processing payment for assignment", assignment_id=assignment_id)
        outcome = await self.repository.apply_order_created(event, assignment_id, self.clock())
        logger.info(
            "Payment processed for assignment", assignment_id=assignment_id, outcome=outcome.value
        )

    async def _handle_order_refunded(self, event: WebhookEvent, assignment_id: str) -> None:
        logger.info("Processing refund for assignment", assignment_id=assignment_id)
        outcome = await self.repository.apply_order_refunded(event, assignment_id)
        logger.info(
            "Refund processed for assignment", assignment_id=assignment_id, outcome=outcome.value
        )


webhook_service = LemonSqueezyWebhookService()
