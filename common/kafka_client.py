"""
Event log relay on Kafka.

The event log is a secondary propagation path: every publish and every
consumed event is best-effort. Nothing here raises into the queue-driven flow.
"""
from aiokafka import AIOKafkaProducer, AIOKafkaConsumer
from pydantic import BaseModel
import json
import logging
from . import config

logger = logging.getLogger(__name__)


class EventLogRelay:
    """Mirrors domain signals onto Kafka topics for downstream consumers."""

    def __init__(self, client_id: str, bootstrap_servers: str = config.KAFKA_BOOTSTRAP_SERVERS, enabled: bool = config.KAFKA_ENABLED):
        self.client_id = client_id
        self.bootstrap_servers = bootstrap_servers
        self.enabled = enabled
        self.producer = None

    @property
    def available(self) -> bool:
        return self.producer is not None

    async def start(self):
        if not self.enabled:
            logger.info("Kafka disabled, event log relay inactive")
            return
        logger.info(f"Initializing Kafka producer: {self.bootstrap_servers}")
        producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            key_serializer=lambda k: k.encode('utf-8'),
            value_serializer=lambda v: v.encode('utf-8'),
            acks='all'
        )
        try:
            await producer.start()
        except Exception as e:
            logger.error(f"Kafka connection error (non-critical, event log unavailable): {e}")
            await producer.stop()
            return
        self.producer = producer
        logger.info("Connected to Kafka")

    async def stop(self):
        if self.producer:
            logger.info("Stopping Kafka producer...")
            await self.producer.stop()
            self.producer = None

    async def publish(self, topic: str, key: str, event: BaseModel) -> bool:
        """Appends an event to a topic. Returns False instead of raising when it can't."""
        if self.producer is None:
            logger.debug(f"Event log unavailable, dropping '{key}' for topic '{topic}'")
            return False
        try:
            await self.producer.send_and_wait(topic, key=key, value=event.model_dump_json(by_alias=True))
            logger.debug(f"Event '{key}' sent to Kafka topic '{topic}'")
            return True
        except Exception as e:
            logger.error(f"Kafka publish error (non-critical) on topic '{topic}': {e}")
            return False


async def handle_record(msg, handler) -> bool:
    """Decodes one raw record and hands it to ``handler``. Bad records are logged and dropped."""
    try:
        key = msg.key.decode('utf-8') if msg.key else None
        event = json.loads(msg.value.decode('utf-8'))
    except (AttributeError, UnicodeDecodeError, ValueError) as e:
        logger.error(f"Dropping undecodable Kafka record from '{msg.topic}' at offset {msg.offset}: {e}")
        return False
    try:
        await handler(msg.topic, key, event)
    except Exception as e:
        logger.error(f"Error processing Kafka message from '{msg.topic}' (dropped): {e}")
        return False
    return True


async def consume_events(topics: list[str], group_id: str, handler, bootstrap_servers: str = config.KAFKA_BOOTSTRAP_SERVERS):
    """Runs ``handler(topic, key, event)`` for every event on ``topics`` until cancelled.

    Offsets are auto-committed; a failing event is logged and skipped so it
    never holds the partition back.
    """
    consumer = AIOKafkaConsumer(
        *topics,
        bootstrap_servers=bootstrap_servers,
        group_id=group_id,
        auto_offset_reset='latest', # Only events produced from now on
        enable_auto_commit=True,
    )
    try:
        await consumer.start()
    except Exception as e:
        logger.error(f"Kafka consumer connection error (non-critical): {e}")
        await consumer.stop()
        return
    logger.info(f"Kafka consumer started for topics {topics}")
    try:
        async for msg in consumer:
            await handle_record(msg, handler)
    finally:
        logger.info("Stopping Kafka consumer...")
        await consumer.stop()
