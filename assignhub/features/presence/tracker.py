"""
Presence tracking for one client.

A client either owns its own presence record (publishes online/offline on
lifecycle signals plus a periodic heartbeat) or observes another user's
record (one snapshot read, then pushed updates). Presence never raises to
the caller: failures are logged and the last known state is kept.

Usage:
    async with await presence_tracker.track_presence(viewer_id) as session:
        ...  # owner: publishing until the block exits

    session = await presence_tracker.track_presence(viewer_id, other_user_id)
    session.state.is_online
    await session.close()
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from assignhub.config import settings
from assignhub.features.presence.domain.models import PresenceRecord, PresenceState
from assignhub.features.presence.realtime import PresenceChannel, presence_channel
from assignhub.features.presence.repository import PresenceRepository, presence_repository
from assignhub.features.presence.signals import EnvironmentSignals, SignalKind
from assignhub.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

StateCallback = Callable[[PresenceState], None]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PresenceSession:
    """
    Handle for one activated presence session.

    Owns every listener, the heartbeat task and the subscription task it
    started; close() releases all of them and may be called any number of
    times.
    """

    def __init__(
        self,
        user_id: str,
        *,
        owner: bool,
        repository: PresenceRepository,
        channel: PresenceChannel,
        signals: EnvironmentSignals | None,
        heartbeat_interval: float,
        on_change: StateCallback | None = None,
        clock: Clock = _utcnow,
    ):
        self.user_id = user_id
        self.owner = owner
        self.state = PresenceState()
        self.signals = signals
        self._repository = repository
        self._channel = channel
        self._heartbeat_interval = heartbeat_interval
        self._on_change = on_change
        self._clock = clock
        self._listeners: list[tuple[SignalKind, Callable[[], None]]] = []
        self._heartbeat_task: asyncio.Task | None = None
        self._subscription_task: asyncio.Task | None = None
        self._pending_writes: set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "PresenceSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    async def activate(self) -> None:
        if self.owner:
            await self._activate_owner()
        else:
            await self._activate_observer()

    async def _activate_owner(self) -> None:
        timestamp = self._clock()
        self._set_state(is_online=True, last_seen=timestamp, loading=False)
        await self._publish(True, timestamp)

        self._listen(SignalKind.VISIBILITY, self._handle_visibility_change)
        self._listen(SignalKind.ONLINE, self._handle_online)
        self._listen(SignalKind.OFFLINE, self._handle_offline)

        self._heartbeat_task = asyncio.create_task(
            self._heartbeat(), name=f"presence-heartbeat:{self.user_id}"
        )
        logger.debug("Presence owner session started", user_id=self.user_id)

    async def _activate_observer(self) -> None:
        try:
            record = await self._repository.fetch(self.user_id)
        except Exception as e:
            logger.error("Error fetching user presence", user_id=self.user_id, error=str(e))
            self._set_state(loading=False)
        else:
            if record is None:
                # No presence history yet
                self._set_state(is_online=False, last_seen=None, loading=False)
            else:
                self._apply(record)

        self._subscription_task = asyncio.create_task(
            self._follow(), name=f"presence-subscription:{self.user_id}"
        )
        logger.debug("Presence observer session started", user_id=self.user_id)

    def _listen(self, kind: SignalKind, handler: Callable[[], None]) -> None:
        self.signals.add_listener(kind, handler)
        self._listeners.append((kind, handler))

    # ------------------------------------------------------------------
    # Owner side
    # ------------------------------------------------------------------

    def _handle_visibility_change(self) -> None:
        self._go(self.signals.visible)

    def _handle_online(self) -> None:
        self._go(True)

    def _handle_offline(self) -> None:
        self._go(False)

    def _go(self, online: bool) -> None:
        timestamp = self._clock()
        self._set_state(is_online=online, last_seen=timestamp)
        task = asyncio.create_task(self._publish(online, timestamp))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            if self.state.is_online:
                timestamp = self._clock()
                self._set_state(last_seen=timestamp)
                await self._publish(True, timestamp)

    async def _publish(self, online: bool, timestamp: datetime) -> None:
        try:
            record = await self._repository.upsert(self.user_id, online, timestamp)
        except Exception as e:
            logger.error("Error updating user presence", user_id=self.user_id, error=str(e))
            return

        if record is None:
            logger.debug("Stale presence write ignored", user_id=self.user_id)
            return

        try:
            await self._channel.publish(record)
        except Exception as e:
            logger.error("Error publishing presence update", user_id=self.user_id, error=str(e))

    async def drain(self) -> None:
        """Wait for fire-and-forget presence writes that are still in flight."""
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes, return_exceptions=True)

    # ------------------------------------------------------------------
    # Observer side
    # ------------------------------------------------------------------

    async def _follow(self) -> None:
        try:
            async for record in self._channel.subscribe(self.user_id):
                self._apply(record)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Presence subscription failed", user_id=self.user_id, error=str(e))

    def _apply(self, record: PresenceRecord) -> None:
        self._set_state(**PresenceState.from_record(record).model_dump())

    # ------------------------------------------------------------------
    # State + teardown
    # ------------------------------------------------------------------

    def _set_state(self, **changes) -> None:
        self.state = self.state.model_copy(update=changes)
        if self._on_change is None:
            return
        try:
            self._on_change(self.state)
        except Exception:
            logger.exception("Presence change callback failed", user_id=self.user_id)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        for kind, handler in self._listeners:
            self.signals.remove_listener(kind, handler)
        self._listeners.clear()

        tasks = [t for t in (self._heartbeat_task, self._subscription_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._heartbeat_task = None
        self._subscription_task = None

        await self.drain()
        logger.debug("Presence session closed", user_id=self.user_id, owner=self.owner)


class PresenceTracker:
    def __init__(
        self,
        repository: PresenceRepository | None = None,
        channel: PresenceChannel | None = None,
        heartbeat_interval: float | None = None,
        clock: Clock = _utcnow,
    ):
        self.repository = repository or presence_repository
        self.channel = channel or presence_channel
        self.heartbeat_interval = heartbeat_interval or settings.PRESENCE_HEARTBEAT_SECONDS
        self.clock = clock

    async def track_presence(
        self,
        viewer_id: str,
        target_user_id: str | None = None,
        *,
        signals: EnvironmentSignals | None = None,
        on_change: StateCallback | None = None,
    ) -> PresenceSession:
        """
        Start tracking a user's presence.

        Args:
            viewer_id: The calling user
            target_user_id: User to observe; omitted or equal to viewer_id makes
                the caller the owner of its own record
            signals: Lifecycle signal source for owner sessions
            on_change: Called with the new PresenceState on every change

        Returns:
            An activated PresenceSession
        """
        owner = target_user_id is None or target_user_id == viewer_id
        session = PresenceSession(
            viewer_id if owner else target_user_id,
            owner=owner,
            repository=self.repository,
            channel=self.channel,
            signals=(signals or EnvironmentSignals()) if owner else None,
            heartbeat_interval=self.heartbeat_interval,
            on_change=on_change,
            clock=self.clock,
        )
        await session.activate()
        return session


presence_tracker = PresenceTracker()
