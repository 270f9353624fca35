"""
Payload types for every queue, topic and channel the services exchange.

Each channel carries exactly one payload model. Bodies travel as JSON with
camelCase keys (``orderId``, ``userId`` ...) so they stay readable by the
web client and by non-Python consumers of the event log.
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal
from datetime import datetime, timezone

# --- Durable queues (Redis Streams) ---
ORDER_CREATED_QUEUE = "order.created"
PAYMENT_REQUEST_QUEUE = "payment.request"
PAYMENT_COMPLETED_QUEUE = "order.payment.processed"
NOTIFICATIONS_QUEUE = "notifications"

# --- Event log (Kafka) topics and keys ---
ORDER_EVENTS_TOPIC = "order-events"
USER_EVENTS_TOPIC = "user-events"
PAYMENT_EVENTS_TOPIC = "payment-events"
ORDER_CREATED_KEY = "order.created"
PAYMENT_COMPLETED_KEY = "payment.completed"

# --- Pub/sub fan-out channel (Redis) ---
NOTIFICATIONS_CHANNEL = "notifications"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """Base for all wire payloads: camelCase on the wire, unknown keys rejected."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


# --- Queue payloads ---

class OrderCreatedMessage(Message):
    order_id: int
    user_id: int
    total_amount: float


class PaymentRequestMessage(Message):
    order_id: int
    user_id: int
    amount: float


class PaymentCompletedMessage(Message):
    order_id: int
    payment_id: int


class NotificationRequestMessage(Message):
    user_id: int
    type: str = "info"
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)


QUEUE_PAYLOADS = {
    ORDER_CREATED_QUEUE: OrderCreatedMessage,
    PAYMENT_REQUEST_QUEUE: PaymentRequestMessage,
    PAYMENT_COMPLETED_QUEUE: PaymentCompletedMessage,
    NOTIFICATIONS_QUEUE: NotificationRequestMessage,
}


# --- Event log payloads ---

class OrderCreatedEvent(Message):
    order_id: int
    user_id: int
    total_amount: float
    timestamp: datetime = Field(default_factory=utcnow)


class PaymentCompletedEvent(Message):
    payment_id: int
    order_id: int
    user_id: int
    amount: float
    timestamp: datetime = Field(default_factory=utcnow)


# --- Fan-out channel and socket payloads ---

class NotificationRecord(Message):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class SubscribeMessage(Message):
    type: Literal["subscribe"]
    user_id: int


class NotificationPush(Message):
    type: Literal["notification"] = "notification"
    data: NotificationRecord


class NotificationHistory(Message):
    type: Literal["notifications"] = "notifications"
    data: List[NotificationRecord]
