"""
Payment Processor.

Settlement is simulated: every request is recorded as a completed payment.
After the row exists the processor emits payment-completed on the queue and
mirrors a settlement event onto the event log.
"""
import logging

from common import messages
from common.dispatch import publish_isolated
from common.errors import MissingFieldsError
from common.queue_client import Delivery
from . import config, crud, models

logger = logging.getLogger(__name__)


class PaymentProcessor:

    def __init__(self, session_factory, queue=None, events=None):
        self.session_factory = session_factory
        self.queue = queue
        self.events = events

    async def _record(self, order_id: int, user_id: int, amount: float, method: str) -> tuple[models.Payment, bool]:
        async with self.session_factory() as db:
            payment, created = await crud.create_payment(db, order_id, user_id, amount, method)
        if not created:
            logger.warning(f"Order {order_id} already has payment {payment.id}, re-announcing it")
        return payment, created

    async def _announce(self, payment: models.Payment) -> bool:
        """Publishes payment-completed, then the settlement event. True if the queue publish went out."""
        completed = False
        if self.queue is None:
            logger.error(f"Queue unavailable - cannot announce payment {payment.id}")
        else:
            completed = await publish_isolated(messages.PAYMENT_COMPLETED_QUEUE, self.queue.publish(
                messages.PAYMENT_COMPLETED_QUEUE,
                messages.PaymentCompletedMessage(order_id=payment.order_id, payment_id=payment.id),
            ))
        if self.events is not None:
            await publish_isolated("payment-events/payment.completed", self.events.publish(
                messages.PAYMENT_EVENTS_TOPIC,
                messages.PAYMENT_COMPLETED_KEY,
                messages.PaymentCompletedEvent(
                    payment_id=payment.id,
                    order_id=payment.order_id,
                    user_id=payment.user_id,
                    amount=payment.amount,
                ),
            ))
        return completed

    async def on_payment_requested(self, delivery: Delivery):
        """Consumer for payment.request."""
        request: messages.PaymentRequestMessage = delivery.payload
        logger.info(f"Received payment request for order {request.order_id} ({request.amount:.2f})")
        try:
            payment, _ = await self._record(request.order_id, request.user_id, request.amount, config.DEFAULT_PAYMENT_METHOD)
        except Exception as e:
            logger.error(f"Payment processing error for order {request.order_id}, requeueing: {e}")
            await delivery.nack(requeue=True)
            return

        if not await self._announce(payment):
            # The payment row exists; the redelivery finds it and announces it again
            await delivery.nack(requeue=True)
            return
        await delivery.ack()

    async def process_payment_direct(self, order_id, user_id, amount, method=None) -> models.Payment:
        missing = [name for name, value in (("orderId", order_id), ("userId", user_id), ("amount", amount)) if not value]
        if missing:
            raise MissingFieldsError(*missing)
        payment, _ = await self._record(order_id, user_id, amount, method or config.DEFAULT_PAYMENT_METHOD)
        await self._announce(payment)
        return payment
