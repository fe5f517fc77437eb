"""
Per-user presence change feed over Redis Pub/Sub.

Each user has its own channel, so an observer's subscription only ever
receives updates for the user it follows.
"""

from collections.abc import AsyncIterator

from pydantic import ValidationError

from assignhub.features.presence.domain.models import PresenceRecord
from assignhub.infrastructure.observability.logging import get_logger
from assignhub.services.redis_client import RedisClient, redis_client

logger = get_logger(__name__)

CHANNEL_PREFIX = "presence:"


def channel_name(user_id: str) -> str:
    return f"{CHANNEL_PREFIX}{user_id}"


class PresenceChannel:
    def __init__(self, client: RedisClient | None = None):
        self.client = client or redis_client

    async def publish(self, record: PresenceRecord) -> int:
        return await self.client.publish(channel_name(record.user_id), record.model_dump_json())

    async def subscribe(self, user_id: str) -> AsyncIterator[PresenceRecord]:
        """
        Yield every update published for `user_id` until the consumer stops.

        The pub/sub connection is released when the generator is closed or
        the consuming task is cancelled.
        """
        channel = channel_name(user_id)
        pubsub = await self.client.pubsub()
        await pubsub.subscribe(channel)
        logger.debug("Subscribed to presence channel", channel=channel)

        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield PresenceRecord.model_validate_json(message["data"])
                except ValidationError as e:
                    logger.warning(
                        "Dropping malformed presence update", channel=channel, error=str(e)
                    )
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.debug("Unsubscribed from presence channel", channel=channel)


presence_channel = PresenceChannel()
