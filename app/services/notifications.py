"""
Notification emitter.

The engine publishes coordination events after its state and ledger changes
have committed. Delivery is best-effort: a failed publish is logged and
dropped, never propagated back into the operation that produced it.
"""
import logging

import redis.asyncio as aioredis

from app.schemas.events import RideEvent

logger = logging.getLogger(__name__)


class EventEmitter:
    """Base emitter; logs each event. Subclasses override `_deliver`."""

    async def emit(self, event: RideEvent) -> None:
        try:
            await self._deliver(event)
        except Exception as exc:
            logger.error(
                "Failed to deliver %s for ride=%s: %s",
                event.kind.value, event.ride_id, exc,
                exc_info=True,
            )

    async def _deliver(self, event: RideEvent) -> None:
        logger.info("Event %s ride=%s", event.kind.value, event.ride_id)


class RedisEventEmitter(EventEmitter):
    """Publishes events as JSON on a Redis pub/sub channel."""

    def __init__(self, redis: aioredis.Redis, channel: str):
        self._redis = redis
        self._channel = channel

    async def _deliver(self, event: RideEvent) -> None:
        receivers = await self._redis.publish(self._channel, event.model_dump_json())
        logger.debug(
            "Published %s ride=%s to %s (%s receivers)",
            event.kind.value, event.ride_id, self._channel, receivers,
        )
