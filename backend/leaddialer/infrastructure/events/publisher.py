"""
Call Lifecycle Event Publisher
Fire-and-forget notifications over Redis pub/sub
"""
import logging
from typing import Optional

import redis.asyncio as redis

from leaddialer.domain.models.events import LifecycleEvent

logger = logging.getLogger(__name__)


class CallEventPublisher:
    """
    Publishes call lifecycle events to a Redis channel.

    Delivery is best effort: a publish failure is logged and dropped so
    that notification problems never affect dialing.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        channel: str = "dialer:calls:events",
        client: Optional[redis.Redis] = None,
    ):
        self._redis_url = redis_url
        self._channel = channel
        self._redis = client
        self._published = 0
        self._dropped = 0

    @property
    def channel(self) -> str:
        return self._channel

    async def initialize(self) -> None:
        """Create the Redis client. Connection happens on first publish."""
        if self._redis is None and self._redis_url:
            self._redis = redis.from_url(self._redis_url, decode_responses=True)
            logger.info(f"Event publisher using channel {self._channel}")

    async def publish(self, event: LifecycleEvent) -> bool:
        """Publish one event. Returns False when it could not be delivered."""
        if self._redis is None:
            logger.debug(f"No event channel configured, dropping {event.event.value}")
            self._dropped += 1
            return False

        try:
            await self._redis.publish(self._channel, event.to_message())
            self._published += 1
            logger.debug(f"Published {event.event.value} for attempt {event.call_attempt_id}")
            return True
        except Exception as e:
            self._dropped += 1
            logger.error(f"Failed to publish {event.event.value} event: {e}")
            return False

    async def close(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning(f"Error closing event publisher: {e}")
            self._redis = None

    def get_stats(self) -> dict:
        return {"published": self._published, "dropped": self._dropped}
