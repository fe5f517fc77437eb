"""
Human-readable presence status, as shown next to a user's name in chat.
"""

from datetime import UTC, datetime


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}{'' if value == 1 else 's'}"


def describe_status(
    name: str | None,
    is_online: bool,
    last_seen: datetime | None,
    now: datetime | None = None,
) -> str:
    """
    Describe a user's presence.

    Examples:
        "Ada is online", "Ada was just active", "Ada was active 5 minutes ago",
        "Ada was active 2 hours ago", "Ada was active 3 days ago", "Ada is offline"
    """
    name = name or "User"
    if is_online:
        return f"{name} is online"

    if last_seen is None:
        return f"{name} is offline"

    now = now or datetime.now(UTC)
    minutes = int((now - last_seen).total_seconds() // 60)

    if minutes < 1:
        return f"{name} was just active"
    if minutes < 60:
        return f"{name} was active {_plural(minutes, 'minute')} ago"

    hours = minutes // 60
    if hours < 24:
        return f"{name} was active {_plural(hours, 'hour')} ago"

    return f"{name} was active {_plural(hours // 24, 'day')} ago"
