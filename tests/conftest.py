"""
Shared pytest fixtures.

Each test gets its own SQLite file and fresh fakes for Redis and Kafka.
Async code is driven with ``asyncio.run``; endpoints go through TestClient
without entering the app lifespan, so no real broker is ever contacted.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test-bootstrap.db")
os.environ["KAFKA_ENABLED"] = "false"

import asyncio
import pytest

from common import database, messages
from common.queue_client import DurableQueue
from order_service import models as order_models  # noqa: F401 registers tables
from payment_service import models as payment_models  # noqa: F401
from notification_service import models as notification_models  # noqa: F401
from order_service.orchestrator import OrderOrchestrator
from payment_service.processor import PaymentProcessor
from notification_service.bridge import FanOutBridge
from notification_service.publisher import NotificationPublisher
from notification_service.registry import ConnectionRegistry

from tests.fakes import FakeEventLog, FakeRedis


@pytest.fixture
def session_factory(tmp_path):
    """Fresh database with every service's tables."""
    database.configure_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    asyncio.run(database.create_tables())
    yield database.session_factory()
    asyncio.run(database.dispose_engine())


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def event_log():
    return FakeEventLog()


@pytest.fixture
def order_queue(redis):
    return DurableQueue(redis, group="order-service", consumer="order-1")


@pytest.fixture
def payment_queue(redis):
    return DurableQueue(redis, group="payment-service", consumer="payment-1")


@pytest.fixture
def notification_queue(redis):
    return DurableQueue(redis, group="notification-service", consumer="notification-1")


@pytest.fixture
def orchestrator(session_factory, order_queue, event_log):
    return OrderOrchestrator(session_factory, order_queue, event_log)


@pytest.fixture
def processor(session_factory, payment_queue, event_log):
    return PaymentProcessor(session_factory, payment_queue, event_log)


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def bridge(redis, registry):
    return FanOutBridge(redis, registry, channel=messages.NOTIFICATIONS_CHANNEL)


@pytest.fixture
def publisher(session_factory, registry, bridge):
    return NotificationPublisher(session_factory, registry, bridge)

