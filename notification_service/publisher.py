"""
Notification store and publisher.

Every trigger (HTTP request, the notifications queue, order events on the
event log) ends in ``create_notification``: the record is stored first,
then published on the fan-out channel and pushed straight to the sockets
registered on this instance, so local subscribers get it even while Redis
is down.
"""
import logging

from common import messages
from common.dispatch import publish_isolated
from common.errors import MissingFieldsError
from common.queue_client import Delivery
from . import config, crud

logger = logging.getLogger(__name__)


class NotificationPublisher:

    def __init__(self, session_factory, registry, bridge=None, history_limit: int = config.NOTIFICATION_HISTORY_LIMIT):
        self.session_factory = session_factory
        self.registry = registry
        self.bridge = bridge
        self.history_limit = history_limit

    async def create_notification(self, user_id, type, title, message, data=None) -> messages.NotificationRecord:
        missing = [name for name, value in (("userId", user_id), ("title", title), ("message", message)) if not value]
        if missing:
            raise MissingFieldsError(*missing)

        async with self.session_factory() as db:
            db_notification = await crud.create_notification(db, user_id, type, title, message, data)
        notification = messages.NotificationRecord.model_validate(db_notification, from_attributes=True)

        if self.bridge is not None:
            await publish_isolated(f"{self.bridge.channel} pub/sub", self.bridge.publish(notification))
        await self.registry.broadcast(notification.user_id, notification)
        return notification

    async def history(self, user_id: int) -> list[messages.NotificationRecord]:
        async with self.session_factory() as db:
            rows = await crud.list_notifications_for_user(db, user_id, limit=self.history_limit)
        return [messages.NotificationRecord.model_validate(row, from_attributes=True) for row in rows]

    async def on_notification_requested(self, delivery: Delivery):
        """Consumer for the notifications queue."""
        request: messages.NotificationRequestMessage = delivery.payload
        logger.info(f"Received notification request for user {request.user_id}: {request.title}")
        try:
            notification = await self.create_notification(
                request.user_id, request.type, request.title, request.message, request.data
            )
        except Exception as e:
            logger.error(f"Error creating notification, requeueing: {e}")
            await delivery.nack(requeue=True)
            return
        logger.info(f"Notification created successfully: {notification.id}")
        await delivery.ack()

    async def on_event(self, topic: str, key: str | None, event: dict):
        """Event log consumer. Only order.created on order-events turns into a notification."""
        if topic != messages.ORDER_EVENTS_TOPIC or key != messages.ORDER_CREATED_KEY:
            return
        order_created = messages.OrderCreatedEvent.model_validate(event)
        await self.create_notification(
            order_created.user_id,
            "order",
            "Order Created",
            f"Your order #{order_created.order_id} has been created",
            {"orderId": order_created.order_id},
        )
