"""
Presence feature package.

Tracks whether users are online: owning clients publish their own status
(lifecycle signals plus heartbeat), observers read a snapshot and follow a
per-user change feed.
"""

from .api.router import router as presence_router  # noqa: F401
from .domain.models import PresenceRecord, PresenceState  # noqa: F401
from .signals import EnvironmentSignals, SignalKind  # noqa: F401
from .status import describe_status  # noqa: F401
from .tracker import PresenceSession, PresenceTracker, presence_tracker  # noqa: F401
