import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from assignhub.auth.verify import auth_dependency
from assignhub.features.payments.domain.models import PAYMENT_METHOD, PaymentStatus, WebhookEvent
from assignhub.features.payments.repository import ApplyOutcome, AssignmentNotFoundError
from assignhub.features.presence.domain.models import PresenceRecord


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


class FakeClock:
    """Deterministic clock; every call advances one second."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 10, 18, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


class FakePresenceRepository:
    """user_presence table keyed by user_id, with last-writer-wins upserts."""

    def __init__(self):
        self.rows: dict[str, PresenceRecord] = {}
        self.upserts: list[tuple[str, bool, datetime]] = []
        self.fail_writes = False
        self.fail_reads = False

    async def fetch(self, user_id: str) -> PresenceRecord | None:
        if self.fail_reads:
            raise RuntimeError("read failed")
        return self.rows.get(user_id)

    async def upsert(self, user_id: str, online: bool, last_seen: datetime):
        if self.fail_writes:
            raise RuntimeError("write failed")
        self.upserts.append((user_id, online, last_seen))
        current = self.rows.get(user_id)
        if current is not None and current.last_seen > last_seen:
            return None
        record = PresenceRecord(user_id=user_id, online=online, last_seen=last_seen)
        self.rows[user_id] = record
        return record

    async def fetch_display_name(self, user_id: str) -> str | None:
        return None


class FakePresenceChannel:
    """In-process stand-in for the per-user Redis channels."""

    def __init__(self):
        self.published: list[PresenceRecord] = []
        self._subscribers: dict[str, list[asyncio.Queue]] = {}
        self.subscribed = asyncio.Event()
        self.active_subscriptions = 0

    async def publish(self, record: PresenceRecord) -> int:
        self.published.append(record)
        queues = self._subscribers.get(record.user_id, [])
        for queue in queues:
            queue.put_nowait(record)
        return len(queues)

    async def subscribe(self, user_id: str):
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(user_id, []).append(queue)
        self.active_subscriptions += 1
        self.subscribed.set()
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers[user_id].remove(queue)
            self.active_subscriptions -= 1


class FakePaymentRepository:
    """assignments, payments and webhook_events tables with transactional semantics."""

    def __init__(self, assignment_ids=("assignment-1",)):
        self.assignments = {
            assignment_id: {"paid": False, "payment_date": None} for assignment_id in assignment_ids
        }
        self.payments: list[dict] = []
        self.processed: set[str] = set()
        self.error: Exception | None = None

    async def apply_order_created(self, event: WebhookEvent, assignment_id: str, paid_at: datetime):
        if self.error:
            raise self.error
        if event.event_key in self.processed:
            return ApplyOutcome.DUPLICATE
        if assignment_id not in self.assignments:
            raise AssignmentNotFoundError(assignment_id, operation="order_created")
        self.assignments[assignment_id] = {"paid": True, "payment_date": paid_at}
        self.payments.append(
            {
                "assignment_id": assignment_id,
                "student_id": event.student_id(),
                "amount": event.amount(),
                "currency": event.data.attributes.currency,
                "status": PaymentStatus.COMPLETED.value,
                "payment_method": PAYMENT_METHOD,
                "order_id": event.order_id,
            }
        )
        self.processed.add(event.event_key)
        return ApplyOutcome.APPLIED

    async def apply_order_refunded(self, event: WebhookEvent, assignment_id: str):
        if self.error:
            raise self.error
        if event.event_key in self.processed:
            return ApplyOutcome.DUPLICATE
        if assignment_id not in self.assignments:
            raise AssignmentNotFoundError(assignment_id, operation="order_refunded")
        self.assignments[assignment_id] = {"paid": False, "payment_date": None}
        for payment in self.payments:
            if payment["assignment_id"] == assignment_id and payment["order_id"] == event.order_id:
                payment["status"] = PaymentStatus.REFUNDED.value
        self.processed.add(event.event_key)
        return ApplyOutcome.APPLIED


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def presence_repository():
    return FakePresenceRepository()


@pytest.fixture
def presence_channel():
    return FakePresenceChannel()


@pytest.fixture
def payment_repository():
    return FakePaymentRepository()
