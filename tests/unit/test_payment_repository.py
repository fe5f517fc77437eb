"""
Tests for PaymentRepository against a scripted connection.
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from decimal import Decimal

import psycopg
import pytest
from psycopg import errors

from assignhub.db.helpers import DatabaseError
from assignhub.features.payments import repository
from assignhub.features.payments.domain.models import WebhookEvent
from assignhub.features.payments.repository import (
    INSERT_PAYMENT_SQL,
    MARK_PAID_SQL,
    MARK_UNPAID_SQL,
    RECORD_EVENT_SQL,
    REFUND_PAYMENT_SQL,
    ApplyOutcome,
    AssignmentNotFoundError,
    PaymentRepository,
)

PAID_AT = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


class FakeCursor:
    def __init__(self, rowcount: int):
        self.rowcount = rowcount


class FakeConnection:
    """Returns one scripted rowcount per statement; raises `error` on statement `fail_at`."""

    def __init__(self, rowcounts=(), error=None, fail_at=None):
        self.rowcounts = list(rowcounts)
        self.error = error
        self.fail_at = fail_at
        self.executed: list[tuple[str, tuple]] = []
        self.committed = False
        self.rolled_back = False

    async def execute(self, query, params=()):
        self.executed.append((query, params))
        if self.error is not None and len(self.executed) == self.fail_at:
            raise self.error
        return FakeCursor(self.rowcounts.pop(0))

    @property
    def statements(self):
        return [query for query, _ in self.executed]


@pytest.fixture
def use_connection(monkeypatch):
    def _use(conn: FakeConnection):
        @asynccontextmanager
        async def transaction():
            try:
                yield conn
            except BaseException:
                conn.rolled_back = True
                raise
            conn.committed = True

        monkeypatch.setattr(repository.db_pool, "transaction", transaction)
        return conn

    return _use


def _event(event_name="order_created"):
    return WebhookEvent.model_validate(
        {
            "meta": {"event_name": event_name, "custom_data": {"assignment_id": "assignment-1"}},
            "data": {
                "id": 1001,
                "type": "orders",
                "attributes": {"user_id": "student-7", "currency": "USD", "total": 4999},
            },
        }
    )


@pytest.mark.asyncio
async def test_order_created_records_event_then_marks_paid(use_connection):
    conn = use_connection(FakeConnection(rowcounts=[1, 1, 1]))

    outcome = await PaymentRepository().apply_order_created(_event(), "assignment-1", PAID_AT)

    assert outcome is ApplyOutcome.APPLIED
    assert conn.statements == [RECORD_EVENT_SQL, MARK_PAID_SQL, INSERT_PAYMENT_SQL]
    assert conn.executed[0][1] == ("order_created:1001", "order_created", "1001")
    assert conn.executed[1][1] == (PAID_AT, "assignment-1")
    assert conn.executed[2][1] == (
        "assignment-1",
        "student-7",
        Decimal("49.99"),
        "USD",
        "completed",
        "lemon_squeezy",
        "1001",
    )
    assert conn.committed is True


@pytest.mark.asyncio
async def test_redelivered_order_only_touches_ledger(use_connection):
    conn = use_connection(FakeConnection(rowcounts=[0]))

    outcome = await PaymentRepository().apply_order_created(_event(), "assignment-1", PAID_AT)

    assert outcome is ApplyOutcome.DUPLICATE
    assert conn.statements == [RECORD_EVENT_SQL]


@pytest.mark.asyncio
async def test_unknown_assignment_rolls_back_ledger_entry(use_connection):
    conn = use_connection(FakeConnection(rowcounts=[1, 0]))

    with pytest.raises(AssignmentNotFoundError) as exc_info:
        await PaymentRepository().apply_order_created(_event(), "assignment-1", PAID_AT)

    assert exc_info.value.recoverable is False
    assert exc_info.value.assignment_id == "assignment-1"
    assert conn.statements == [RECORD_EVENT_SQL, MARK_PAID_SQL]
    assert conn.rolled_back is True
    assert conn.committed is False


@pytest.mark.asyncio
async def test_refund_marks_unpaid_and_refunds_payment(use_connection):
    conn = use_connection(FakeConnection(rowcounts=[1, 1, 1]))

    outcome = await PaymentRepository().apply_order_refunded(
        _event("order_refunded"), "assignment-1"
    )

    assert outcome is ApplyOutcome.APPLIED
    assert conn.statements == [RECORD_EVENT_SQL, MARK_UNPAID_SQL, REFUND_PAYMENT_SQL]
    assert conn.executed[0][1][0] == "order_refunded:1001"
    assert conn.executed[2][1] == ("refunded", "assignment-1", "1001")
    assert conn.committed is True


@pytest.mark.asyncio
async def test_refund_without_payment_row_still_applies(use_connection):
    use_connection(FakeConnection(rowcounts=[1, 1, 0]))

    outcome = await PaymentRepository().apply_order_refunded(
        _event("order_refunded"), "assignment-1"
    )

    assert outcome is ApplyOutcome.APPLIED


@pytest.mark.asyncio
async def test_refund_redelivery_is_noop(use_connection):
    conn = use_connection(FakeConnection(rowcounts=[0]))

    outcome = await PaymentRepository().apply_order_refunded(
        _event("order_refunded"), "assignment-1"
    )

    assert outcome is ApplyOutcome.DUPLICATE
    assert conn.statements == [RECORD_EVENT_SQL]


@pytest.mark.asyncio
async def test_operational_error_is_recoverable(use_connection):
    conn = use_connection(
        FakeConnection(error=psycopg.OperationalError("server closed the connection"), fail_at=1)
    )

    with pytest.raises(DatabaseError) as exc_info:
        await PaymentRepository().apply_order_created(_event(), "assignment-1", PAID_AT)

    assert exc_info.value.recoverable is True
    assert exc_info.value.operation == "order_created"
    assert conn.rolled_back is True


@pytest.mark.asyncio
async def test_constraint_violation_is_not_recoverable(use_connection):
    conn = use_connection(
        FakeConnection(
            rowcounts=[1, 1],
            error=errors.ForeignKeyViolation("violates foreign key constraint"),
            fail_at=3,
        )
    )

    with pytest.raises(DatabaseError) as exc_info:
        await PaymentRepository().apply_order_created(_event(), "assignment-1", PAID_AT)

    assert not isinstance(exc_info.value, AssignmentNotFoundError)
    assert exc_info.value.recoverable is False
    assert conn.statements == [RECORD_EVENT_SQL, MARK_PAID_SQL, INSERT_PAYMENT_SQL]
    assert conn.rolled_back is True
