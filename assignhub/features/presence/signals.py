"""
Environment lifecycle signals for an owning presence session.

A client connection reports page visibility and network connectivity
changes here; the presence session registers listeners for them.
"""

from collections import defaultdict
from collections.abc import Callable
from enum import Enum

from assignhub.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[], None]


class SignalKind(str, Enum):
    VISIBILITY = "visibilitychange"
    ONLINE = "online"
    OFFLINE = "offline"


class EnvironmentSignals:
    """Event source for visibility and connectivity changes of one client."""

    def __init__(self, visible: bool = True):
        self.visible = visible
        self._listeners: dict[SignalKind, list[Listener]] = defaultdict(list)

    def add_listener(self, kind: SignalKind, listener: Listener) -> None:
        self._listeners[kind].append(listener)

    def remove_listener(self, kind: SignalKind, listener: Listener) -> None:
        try:
            self._listeners[kind].remove(listener)
        except ValueError:
            pass

    def listener_count(self, kind: SignalKind | None = None) -> int:
        if kind is not None:
            return len(self._listeners[kind])
        return sum(len(listeners) for listeners in self._listeners.values())

    def set_visibility(self, visible: bool) -> None:
        self.visible = visible
        self._emit(SignalKind.VISIBILITY)

    def go_online(self) -> None:
        self._emit(SignalKind.ONLINE)

    def go_offline(self) -> None:
        self._emit(SignalKind.OFFLINE)

    def _emit(self, kind: SignalKind) -> None:
        for listener in list(self._listeners[kind]):
            try:
                listener()
            except Exception:
                logger.exception("Signal listener failed", signal=kind.value)
