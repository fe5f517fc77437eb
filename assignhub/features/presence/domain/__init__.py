"""
Domain layer for the presence feature.
"""

from .models import PresenceRecord, PresenceSnapshotResponse, PresenceState

__all__ = ["PresenceRecord", "PresenceSnapshotResponse", "PresenceState"]
