"""
Domain models for user presence.
"""

from datetime import datetime

from pydantic import BaseModel


class PresenceRecord(BaseModel):
    """One row of the user_presence table, keyed by user_id."""

    user_id: str
    online: bool
    last_seen: datetime


class PresenceState(BaseModel):
    """A client's local view of one user's presence."""

    is_online: bool = False
    last_seen: datetime | None = None
    loading: bool = True

    @classmethod
    def from_record(cls, record: PresenceRecord) -> "PresenceState":
        return cls(is_online=record.online, last_seen=record.last_seen, loading=False)


class PresenceSnapshotResponse(BaseModel):
    user_id: str
    online: bool
    last_seen: datetime | None = None
    status_text: str
