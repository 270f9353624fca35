"""
Order Orchestrator.

Creating an order writes the row first and only then fans the news out:
order.created, the "Order Created" notification request and the event log
mirror go out side by side, followed by the payment request. None of these
publishes is transactional with the insert or with each other; a failed
publish is logged and the order simply stays pending.

The payment-completed queue closes the loop by moving the order to paid.
"""
import logging

from common import messages
from common.dispatch import publish_all, publish_isolated
from common.errors import MissingFieldsError
from common.queue_client import Delivery
from . import config, crud, models

logger = logging.getLogger(__name__)


class OrderOrchestrator:

    def __init__(self, session_factory, queue=None, events=None):
        self.session_factory = session_factory
        self.queue = queue # None when Redis was unreachable at start-up
        self.events = events

    async def _send(self, queue_name: str, message: messages.Message, **kwargs) -> bool:
        if self.queue is None:
            logger.error(f"Queue unavailable - cannot send to '{queue_name}'")
            return False
        await self.queue.publish(queue_name, message, **kwargs)
        return True

    async def _mirror(self, topic: str, key: str, event: messages.Message):
        if self.events is None:
            return False
        return await self.events.publish(topic, key, event)

    async def create_order(self, user_id, items, total_amount) -> models.Order:
        missing = [name for name, value in (("userId", user_id), ("items", items), ("totalAmount", total_amount)) if not value]
        if missing:
            raise MissingFieldsError(*missing)

        async with self.session_factory() as db:
            order = await crud.create_order(db, user_id, items, total_amount)

        await publish_all(
            ("order.created", self._send(
                messages.ORDER_CREATED_QUEUE,
                messages.OrderCreatedMessage(order_id=order.id, user_id=order.user_id, total_amount=order.total_amount),
                maxlen=config.ORDER_CREATED_QUEUE_MAXLEN,
            )),
            ("order created notification", self._send(
                messages.NOTIFICATIONS_QUEUE,
                messages.NotificationRequestMessage(
                    user_id=order.user_id,
                    type="order",
                    title="Order Created",
                    message=f"Your order #{order.id} has been created",
                    data={"orderId": order.id},
                ),
            )),
            ("order-events/order.created", self._mirror(
                messages.ORDER_EVENTS_TOPIC,
                messages.ORDER_CREATED_KEY,
                messages.OrderCreatedEvent(order_id=order.id, user_id=order.user_id, total_amount=order.total_amount),
            )),
        )

        await publish_isolated("payment.request", self._send(
            messages.PAYMENT_REQUEST_QUEUE,
            messages.PaymentRequestMessage(order_id=order.id, user_id=order.user_id, amount=order.total_amount),
        ))
        return order

    async def on_payment_completed(self, delivery: Delivery):
        """Consumer for order.payment.processed: ack once the order is paid, requeue if the write fails."""
        payment: messages.PaymentCompletedMessage = delivery.payload
        try:
            async with self.session_factory() as db:
                order, changed = await crud.mark_order_paid(db, payment.order_id, payment.payment_id)
        except Exception as e:
            logger.error(f"Error updating order {payment.order_id} to paid, requeueing: {e}")
            await delivery.nack(requeue=True)
            return

        if order is None:
            logger.warning(f"Payment {payment.payment_id} references unknown order {payment.order_id}")
        elif changed:
            logger.info(f"Order {order.id} paid with payment {payment.payment_id}")
            await publish_isolated("payment received notification", self._send(
                messages.NOTIFICATIONS_QUEUE,
                messages.NotificationRequestMessage(
                    user_id=order.user_id,
                    type="payment",
                    title="Payment Received",
                    message=f"Payment for order #{order.id} has been completed",
                    data={"orderId": order.id, "paymentId": payment.payment_id},
                ),
            ))
        else:
            logger.info(f"Order {order.id} already paid with payment {payment.payment_id}, redelivery ignored")
        await delivery.ack()
