"""
Postgres access for the user_presence table.
"""

from datetime import datetime

from assignhub.db.helpers import fetch_one
from assignhub.features.presence.domain.models import PresenceRecord

# Last writer wins by timestamp: an older heartbeat never overwrites a newer one.
UPSERT_PRESENCE_SQL = """
INSERT INTO user_presence (user_id, online, last_seen)
VALUES (%s, %s, %s)
ON CONFLICT (user_id) DO UPDATE
SET online = EXCLUDED.online,
    last_seen = EXCLUDED.last_seen
WHERE user_presence.last_seen <= EXCLUDED.last_seen
RETURNING user_id::text AS user_id, online, last_seen
"""

FETCH_PRESENCE_SQL = """
SELECT user_id::text AS user_id, online, last_seen
FROM user_presence
WHERE user_id = %s
"""

FETCH_DISPLAY_NAME_SQL = """
SELECT COALESCE(full_name, email) AS name
FROM profiles
WHERE id = %s
"""


class PresenceRepository:
    async def fetch(self, user_id: str) -> PresenceRecord | None:
        """Current presence row for a user, or None if the user has no presence history."""
        row = await fetch_one(FETCH_PRESENCE_SQL, (user_id,))
        return PresenceRecord(**row) if row else None

    async def upsert(
        self, user_id: str, online: bool, last_seen: datetime
    ) -> PresenceRecord | None:
        """
        Create or overwrite the user's presence row.

        Returns:
            The stored record, or None when a newer row already exists
        """
        row = await fetch_one(UPSERT_PRESENCE_SQL, (user_id, online, last_seen))
        return PresenceRecord(**row) if row else None

    async def fetch_display_name(self, user_id: str) -> str | None:
        row = await fetch_one(FETCH_DISPLAY_NAME_SQL, (user_id,))
        return row["name"] if row else None


presence_repository = PresenceRepository()
