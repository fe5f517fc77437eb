"""
Assignment/payment writes for Lemon Squeezy order events.

Each event is applied in a single transaction together with its entry in
the webhook_events ledger, so a redelivered event is a no-op and a failure
part way through leaves nothing behind.
"""

from datetime import datetime
from enum import Enum

import psycopg

from assignhub.db.helpers import DatabaseError
from assignhub.db.pool import db_pool
from assignhub.features.payments.domain.models import PAYMENT_METHOD, PaymentStatus, WebhookEvent
from assignhub.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RECORD_EVENT_SQL = """
INSERT INTO webhook_events (event_key, event_name, order_id)
VALUES (%s, %s, %s)
ON CONFLICT (event_key) DO NOTHING
"""

MARK_PAID_SQL = """
UPDATE assignments
SET paid = true, payment_date = %s
WHERE id = %s
"""

MARK_UNPAID_SQL = """
UPDATE assignments
SET paid = false, payment_date = NULL
WHERE id = %s
"""

# The payments table predates the Lemon Squeezy integration; the provider
# order id lives in stripe_payment_intent_id.
INSERT_PAYMENT_SQL = """
INSERT INTO payments (
    assignment_id, student_id, amount, currency, status, payment_method, stripe_payment_intent_id
)
VALUES (%s, %s, %s, %s, %s, %s, %s)
"""

REFUND_PAYMENT_SQL = """
UPDATE payments
SET status = %s, updated_at = now()
WHERE assignment_id = %s AND stripe_payment_intent_id = %s
"""


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"


class AssignmentNotFoundError(DatabaseError):
    def __init__(self, assignment_id: str, operation: str):
        super().__init__(
            f"Assignment {assignment_id} not found", operation=operation, recoverable=False
        )
        self.assignment_id = assignment_id


class PaymentRepository:
    async def apply_order_created(
        self, event: WebhookEvent, assignment_id: str, paid_at: datetime
    ) -> ApplyOutcome:
        """Mark the assignment paid and record a completed payment."""

        async def _apply(conn: psycopg.AsyncConnection) -> None:
            cursor = await conn.execute(MARK_PAID_SQL, (paid_at, assignment_id))
            if cursor.rowcount == 0:
                raise AssignmentNotFoundError(assignment_id, operation="order_created")

            await conn.execute(
                INSERT_PAYMENT_SQL,
                (
                    assignment_id,
                    event.student_id(),
                    event.amount(),
                    event.data.attributes.currency,
                    PaymentStatus.COMPLETED.value,
                    PAYMENT_METHOD,
                    event.order_id,
                ),
            )

        return await self._apply_once(event, _apply)

    async def apply_order_refunded(self, event: WebhookEvent, assignment_id: str) -> ApplyOutcome:
        """Mark the assignment unpaid and the matching payment refunded."""

        async def _apply(conn: psycopg.AsyncConnection) -> None:
            cursor = await conn.execute(MARK_UNPAID_SQL, (assignment_id,))
            if cursor.rowcount == 0:
                raise AssignmentNotFoundError(assignment_id, operation="order_refunded")

            cursor = await conn.execute(
                REFUND_PAYMENT_SQL,
                (PaymentStatus.REFUNDED.value, assignment_id, event.order_id),
            )
            if cursor.rowcount == 0:
                logger.warning(
                    "No payment record matched refunded order",
                    assignment_id=assignment_id,
                    order_id=event.order_id,
                )

        return await self._apply_once(event, _apply)

    async def _apply_once(self, event: WebhookEvent, apply) -> ApplyOutcome:
        try:
            async with db_pool.transaction() as conn:
                cursor = await conn.execute(
                    RECORD_EVENT_SQL, (event.event_key, event.event_name, event.order_id)
                )
                duplicate = cursor.rowcount == 0
                if not duplicate:
                    await apply(conn)
        except psycopg.OperationalError as e:
            logger.error("Database unavailable while applying webhook", error=str(e))
            raise DatabaseError(f"Transaction failed: {e}", operation=event.event_name) from e
        except psycopg.Error as e:
            logger.error("Webhook transaction failed", event_key=event.event_key, error=str(e))
            raise DatabaseError(
                f"Transaction failed: {e}", operation=event.event_name, recoverable=False
            ) from e

        if duplicate:
            logger.info("Webhook event already processed", event_key=event.event_key)
            return ApplyOutcome.DUPLICATE
        return ApplyOutcome.APPLIED


payment_repository = PaymentRepository()
