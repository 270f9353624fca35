"""
Fan-out bridge between the Redis pub/sub channel and the local registry.

Every instance publishes each new notification on one shared channel and
every instance listens to it, so a user's sockets are reached wherever they
are connected. Messages carry no routing key; each instance filters by user
id through its own registry. An instance also hears its own publishes, which
can push a notification twice to a local socket. That duplicate is accepted.
"""
import asyncio
import logging

from pydantic import ValidationError
from redis.exceptions import RedisError

from common.messages import NotificationRecord
from . import config
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

RESUBSCRIBE_DELAY_SECONDS = 1.0


class FanOutBridge:

    def __init__(
        self,
        redis,
        registry: ConnectionRegistry,
        channel: str = config.NOTIFICATION_CHANNEL,
        resubscribe_delay: float = RESUBSCRIBE_DELAY_SECONDS,
    ):
        self.redis = redis
        self.registry = registry
        self.channel = channel
        self.resubscribe_delay = resubscribe_delay

    async def publish(self, notification: NotificationRecord) -> bool:
        if self.redis is None:
            logger.warning(f"Redis unavailable - notification {notification.id} not fanned out")
            return False
        await self.redis.publish(self.channel, notification.to_json())
        return True

    async def handle_message(self, data: str) -> int:
        try:
            notification = NotificationRecord.model_validate_json(data)
        except ValidationError as e:
            logger.error(f"Ignoring unrecognised message on '{self.channel}': {data}. Error: {e}")
            return 0
        return await self.registry.broadcast(notification.user_id, notification)

    async def run(self, shutdown_event: asyncio.Event):
        """Listens on the channel until ``shutdown_event`` is set.

        Any Redis error drops the subscription; it is re-established after
        ``resubscribe_delay``.
        """
        while not shutdown_event.is_set():
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                logger.info(f"Subscribed to '{self.channel}' channel")
                while not shutdown_event.is_set():
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    if message and message["type"] == "message":
                        await self.handle_message(message["data"])
            except RedisError as e:
                logger.error(f"Lost '{self.channel}' subscription, retrying: {e}")
                await asyncio.sleep(self.resubscribe_delay)
            finally:
                try:
                    await pubsub.unsubscribe(self.channel)
                    await pubsub.aclose()
                except RedisError as e:
                    logger.debug(f"Pub/sub cleanup failed: {e}")
