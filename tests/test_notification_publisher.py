"""
Tests for the notification store and publisher and the fan-out bridge.
"""
import asyncio
import json

import pytest

from common import messages
from common.errors import MissingFieldsError
from notification_service.bridge import FanOutBridge
from notification_service.publisher import NotificationPublisher
from notification_service.registry import ConnectionRegistry
from tests.fakes import FailingSessionFactory, FakeSocket, cancel, pump, wait_for


def create(publisher, user_id=7, title="Order Created", message="Your order #1 has been created", data=None):
    return asyncio.run(publisher.create_notification(user_id, "order", title, message, data or {"orderId": 1}))


class TestCreateNotification:

    def test_persists_and_publishes_on_channel(self, publisher, redis):
        notification = create(publisher)

        assert notification.id is not None
        [published] = redis.published[messages.NOTIFICATIONS_CHANNEL]
        assert json.loads(published)["id"] == notification.id
        assert json.loads(published)["userId"] == 7

    def test_default_type_is_info(self, publisher):
        notification = asyncio.run(publisher.create_notification(7, None, "Hello", "World"))
        assert notification.type == "info"
        assert notification.data == {}

    def test_missing_fields(self, publisher, redis):
        with pytest.raises(MissingFieldsError):
            asyncio.run(publisher.create_notification(7, "info", None, "World"))
        assert redis.published == {}

    def test_subscribers_receive_exact_content(self, publisher, registry):
        socket = FakeSocket()
        registry.add(7, socket)

        create(publisher, title="Shipped", message="On its way", data={"orderId": 3, "carrier": "UPS"})

        [frame] = socket.sent
        assert frame["type"] == "notification"
        assert frame["data"]["title"] == "Shipped"
        assert frame["data"]["message"] == "On its way"
        assert frame["data"]["data"] == {"orderId": 3, "carrier": "UPS"}

    def test_two_sockets_same_user_other_user_excluded(self, publisher, registry):
        first, second, other = FakeSocket(), FakeSocket(), FakeSocket()
        registry.add(7, first)
        registry.add(7, second)
        registry.add(8, other)

        create(publisher, user_id=7)

        assert len(first.sent) == 1
        assert len(second.sent) == 1
        assert other.sent == []

    def test_local_delivery_survives_redis_outage(self, publisher, registry, redis):
        redis.fail_publish = True
        socket = FakeSocket()
        registry.add(7, socket)

        notification = create(publisher)

        assert notification.id is not None
        assert len(socket.sent) == 1

    def test_works_without_redis(self, session_factory, registry):
        publisher = NotificationPublisher(session_factory, registry, FanOutBridge(None, registry))
        socket = FakeSocket()
        registry.add(7, socket)

        create(publisher)
        assert len(socket.sent) == 1

    def test_late_subscriber_gets_history_only(self, publisher, registry):
        create(publisher)
        late = FakeSocket()
        registry.add(7, late)

        history = asyncio.run(publisher.history(7))
        assert [n.title for n in history] == ["Order Created"]
        assert late.sent == []


class TestHistory:

    def test_newest_first_and_bounded(self, session_factory, registry):
        publisher = NotificationPublisher(session_factory, registry, history_limit=3)
        for i in range(5):
            create(publisher, title=f"n{i}")
        create(publisher, user_id=8, title="someone else")

        history = asyncio.run(publisher.history(7))
        assert [n.title for n in history] == ["n4", "n3", "n2"]


class TestQueueConsumer:

    def request(self, queue, publisher, **overrides):
        body = {"user_id": 7, "type": "order", "title": "Order Created", "message": "Your order #1 has been created"}
        body.update(overrides)

        async def scenario():
            await queue.publish(messages.NOTIFICATIONS_QUEUE, messages.NotificationRequestMessage(**body))
            await pump(queue, messages.NOTIFICATIONS_QUEUE, publisher.on_notification_requested)
        asyncio.run(scenario())

    def test_creates_and_acknowledges(self, notification_queue, publisher, registry, redis):
        socket = FakeSocket()
        registry.add(7, socket)

        self.request(notification_queue, publisher)

        assert len(socket.sent) == 1
        assert redis.bodies(messages.NOTIFICATIONS_QUEUE) == []

    def test_failure_requeues(self, notification_queue, registry, redis):
        publisher = NotificationPublisher(FailingSessionFactory(), registry)

        self.request(notification_queue, publisher)

        entries = redis.streams[messages.NOTIFICATIONS_QUEUE]
        assert len(entries) == 1
        assert entries[0][1]["deliveries"] == "2"


class TestEventLogConsumer:

    def test_order_created_event_becomes_notification(self, publisher, registry):
        socket = FakeSocket()
        registry.add(7, socket)
        event = messages.OrderCreatedEvent(order_id=12, user_id=7, total_amount=20.0)

        asyncio.run(publisher.on_event(
            messages.ORDER_EVENTS_TOPIC, messages.ORDER_CREATED_KEY, json.loads(event.to_json())
        ))

        [frame] = socket.sent
        assert frame["data"]["message"] == "Your order #12 has been created"
        assert frame["data"]["data"] == {"orderId": 12}

    def test_other_events_ignored(self, publisher, redis):
        asyncio.run(publisher.on_event(messages.USER_EVENTS_TOPIC, "user.registered", {"userId": 7}))
        asyncio.run(publisher.on_event(messages.ORDER_EVENTS_TOPIC, "order.paid", {"orderId": 1}))
        assert redis.published == {}


class TestFanOutBridge:

    def test_message_from_another_instance_reaches_local_sockets(self, publisher, redis):
        # Instance B only has the bridge and its own registry
        remote_registry = ConnectionRegistry()
        remote_bridge = FanOutBridge(redis, remote_registry)
        socket = FakeSocket()
        remote_registry.add(7, socket)

        notification = create(publisher)
        [published] = redis.published[messages.NOTIFICATIONS_CHANNEL]
        delivered = asyncio.run(remote_bridge.handle_message(published))

        assert delivered == 1
        assert socket.sent[0]["data"]["id"] == notification.id

    def test_messages_for_absent_users_deliver_nowhere(self, bridge, registry):
        record = messages.NotificationRecord(
            id=1, user_id=99, type="info", title="t", message="m", created_at="2026-01-01T00:00:00Z"
        )
        assert asyncio.run(bridge.handle_message(record.to_json())) == 0

    def test_unrecognised_message_ignored(self, bridge, registry):
        socket = FakeSocket()
        registry.add(7, socket)
        assert asyncio.run(bridge.handle_message('{"hello": "world"}')) == 0
        assert socket.sent == []

    def test_publish_reports_success(self, bridge, redis):
        record = messages.NotificationRecord(
            id=1, user_id=7, type="info", title="t", message="m", created_at="2026-01-01T00:00:00Z"
        )
        assert asyncio.run(bridge.publish(record)) is True
        assert redis.published[messages.NOTIFICATIONS_CHANNEL] == [record.to_json()]

    def test_publish_without_redis_reports_failure(self, registry):
        record = messages.NotificationRecord(
            id=1, user_id=7, type="info", title="t", message="m", created_at="2026-01-01T00:00:00Z"
        )
        assert asyncio.run(FanOutBridge(None, registry).publish(record)) is False

    def test_listener_delivers_channel_messages(self, publisher, redis, registry):
        socket = FakeSocket()
        registry.add(7, socket)
        listener = FanOutBridge(redis, registry)

        async def scenario():
            shutdown = asyncio.Event()
            task = asyncio.create_task(listener.run(shutdown))
            await wait_for(lambda: len(redis.subscribers) == 1)
            await publisher.create_notification(7, "order", "Order Created", "Your order #1 has been created", {})
            # Local delivery plus the copy heard back on the channel
            await wait_for(lambda: len(socket.sent) == 2)
            shutdown.set()
            await asyncio.wait_for(task, timeout=2.0)

        asyncio.run(scenario())
        assert redis.subscribers == []

    def test_listener_resubscribes_after_redis_error(self, redis, registry):
        socket = FakeSocket()
        registry.add(7, socket)
        listener = FanOutBridge(redis, registry, resubscribe_delay=0.01)
        record = messages.NotificationRecord(
            id=5, user_id=7, type="info", title="t", message="m", created_at="2026-01-01T00:00:00Z"
        )

        async def scenario():
            redis.fail_pubsub = 1
            task = asyncio.create_task(listener.run(asyncio.Event()))
            await wait_for(lambda: redis.fail_pubsub == 0 and len(redis.subscribers) == 1)
            await listener.publish(record)
            await wait_for(lambda: len(socket.sent) == 1)
            assert not task.done()
            await cancel(task)

        asyncio.run(scenario())
        assert socket.sent[0]["data"]["id"] == 5
