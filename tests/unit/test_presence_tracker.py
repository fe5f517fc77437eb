"""
Tests for PresenceTracker owner and observer sessions.
"""

import asyncio
from datetime import UTC, datetime

import pytest

from assignhub.features.presence.domain.models import PresenceRecord
from assignhub.features.presence.signals import EnvironmentSignals, SignalKind
from assignhub.features.presence.tracker import PresenceTracker


@pytest.fixture
def tracker(presence_repository, presence_channel, fake_clock):
    return PresenceTracker(
        repository=presence_repository,
        channel=presence_channel,
        heartbeat_interval=3600,
        clock=fake_clock,
    )


@pytest.mark.asyncio
async def test_owner_publishes_online_on_activation(tracker, presence_repository, presence_channel):
    session = await tracker.track_presence("alice")

    assert session.owner is True
    assert session.state.is_online is True
    assert session.state.loading is False
    assert presence_repository.rows["alice"].online is True
    assert [r.user_id for r in presence_channel.published] == ["alice"]

    await session.close()


@pytest.mark.asyncio
async def test_target_equal_to_viewer_is_owner(tracker):
    session = await tracker.track_presence("alice", "alice")
    assert session.owner is True
    await session.close()


@pytest.mark.asyncio
async def test_visibility_and_connectivity_signals(tracker, presence_repository):
    signals = EnvironmentSignals()
    session = await tracker.track_presence("alice", signals=signals)

    signals.set_visibility(False)
    await session.drain()
    assert session.state.is_online is False
    assert presence_repository.rows["alice"].online is False

    signals.set_visibility(True)
    await session.drain()
    assert presence_repository.rows["alice"].online is True

    signals.go_offline()
    await session.drain()
    assert session.state.is_online is False
    assert presence_repository.rows["alice"].online is False

    signals.go_online()
    await session.drain()
    assert session.state.is_online is True
    assert presence_repository.rows["alice"].online is True

    await session.close()


@pytest.mark.asyncio
async def test_upsert_keeps_one_row_with_latest_last_seen(tracker, presence_repository):
    signals = EnvironmentSignals()
    session = await tracker.track_presence("alice", signals=signals)
    signals.go_online()
    await session.drain()

    assert len(presence_repository.upserts) == 2
    assert list(presence_repository.rows) == ["alice"]
    assert presence_repository.rows["alice"].last_seen == presence_repository.upserts[-1][2]

    await session.close()


@pytest.mark.asyncio
async def test_heartbeat_only_while_online(presence_repository, presence_channel, fake_clock):
    tracker = PresenceTracker(
        repository=presence_repository,
        channel=presence_channel,
        heartbeat_interval=0.01,
        clock=fake_clock,
    )
    signals = EnvironmentSignals()
    session = await tracker.track_presence("alice", signals=signals)

    await asyncio.sleep(0.05)
    first_last_seen = presence_repository.rows["alice"].last_seen
    assert len(presence_repository.upserts) > 1

    signals.go_offline()
    await session.drain()
    writes_when_offline = len(presence_repository.upserts)
    await asyncio.sleep(0.05)

    assert len(presence_repository.upserts) == writes_when_offline
    assert presence_repository.rows["alice"].online is False
    assert presence_repository.rows["alice"].last_seen > first_last_seen

    await session.close()


@pytest.mark.asyncio
async def test_close_deregisters_listeners_and_stops_heartbeat(
    presence_repository, presence_channel, fake_clock
):
    tracker = PresenceTracker(
        repository=presence_repository,
        channel=presence_channel,
        heartbeat_interval=0.01,
        clock=fake_clock,
    )
    signals = EnvironmentSignals()
    session = await tracker.track_presence("alice", signals=signals)
    assert signals.listener_count() == 3

    await session.close()
    await session.close()

    assert session.closed is True
    assert signals.listener_count() == 0
    writes = len(presence_repository.upserts)
    await asyncio.sleep(0.05)
    signals.go_offline()
    assert len(presence_repository.upserts) == writes


@pytest.mark.asyncio
async def test_context_manager_tears_down(tracker):
    signals = EnvironmentSignals()
    async with await tracker.track_presence("alice", signals=signals) as session:
        assert signals.listener_count(SignalKind.VISIBILITY) == 1
    assert session.closed is True
    assert signals.listener_count() == 0


@pytest.mark.asyncio
async def test_owner_write_failures_are_logged_not_raised(tracker, presence_repository):
    presence_repository.fail_writes = True
    signals = EnvironmentSignals()

    session = await tracker.track_presence("alice", signals=signals)
    signals.go_offline()
    await session.drain()

    assert session.state.is_online is False
    assert presence_repository.rows == {}
    await session.close()


@pytest.mark.asyncio
async def test_observer_without_history_reads_offline(tracker, presence_repository):
    session = await tracker.track_presence("alice", "bob")

    assert session.owner is False
    assert session.user_id == "bob"
    assert session.state.is_online is False
    assert session.state.last_seen is None
    assert session.state.loading is False
    assert presence_repository.upserts == []

    await session.close()


@pytest.mark.asyncio
async def test_observer_loads_snapshot_and_follows_updates(
    tracker, presence_repository, presence_channel
):
    seen_at = datetime(2026, 10, 18, 9, 30, tzinfo=UTC)
    presence_repository.rows["bob"] = PresenceRecord(user_id="bob", online=False, last_seen=seen_at)
    changes = []

    session = await tracker.track_presence("alice", "bob", on_change=changes.append)
    assert session.state.is_online is False
    assert session.state.last_seen == seen_at

    await asyncio.wait_for(presence_channel.subscribed.wait(), timeout=1)
    later = datetime(2026, 10, 18, 9, 45, tzinfo=UTC)
    await presence_channel.publish(PresenceRecord(user_id="bob", online=True, last_seen=later))
    await presence_channel.publish(PresenceRecord(user_id="carol", online=True, last_seen=later))
    await asyncio.sleep(0.01)

    assert session.state.is_online is True
    assert session.state.last_seen == later
    assert changes[-1].is_online is True

    await session.close()
    assert presence_channel.active_subscriptions == 0


@pytest.mark.asyncio
async def test_observer_read_failure_keeps_default_state(tracker, presence_repository):
    presence_repository.fail_reads = True

    session = await tracker.track_presence("alice", "bob")

    assert session.state.is_online is False
    assert session.state.loading is False
    await session.close()


@pytest.mark.asyncio
async def test_failing_change_callback_does_not_break_session(tracker):
    def explode(state):
        raise RuntimeError("ui exploded")

    session = await tracker.track_presence("alice", on_change=explode)
    assert session.state.is_online is True
    await session.close()
