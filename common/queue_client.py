"""
Durable point-to-point queues on Redis Streams.

Every queue is a stream with a single consumer group per consuming service,
so each message is handed to one consumer instance. A delivered message stays
pending in the group until it is acknowledged. A consumer that restarts under
the same name reads its own pending messages first; messages left pending by
a consumer that never comes back are claimed by a live one once they have been
idle for ``claim_idle_ms`` (at-least-once).

Settling a delivery:

* ``ack()``                  -- removes the message.
* ``nack(requeue=True)``     -- appends the body again with the delivery
                                counter bumped, then removes the original.
* ``nack(requeue=False)``    -- moves the body to ``<queue>.dead-letter``.

``max_deliveries=0`` requeues forever; a positive value dead-letters a message
once it has been delivered that many times.
"""
import asyncio
import json
import logging
from typing import Awaitable, Callable, Type

from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError, ResponseError

from . import config

logger = logging.getLogger(__name__)

DEAD_LETTER_SUFFIX = ".dead-letter"
class Delivery:
    """One received queue message and the means to settle it."""

    def __init__(self, queue: str, message_id: str, body: str, deliveries: int, broker: "DurableQueue"):
        self.queue = queue
        self.message_id = message_id
        self.body = body
        self.deliveries = deliveries
        self.payload = None
        self.settled = False
        self._broker = broker

    async def ack(self):
        await self._broker.ack(self)

    async def nack(self, requeue: bool = True, reason: str = ""):
        await self._broker.nack(self, requeue=requeue, reason=reason)

    def __repr__(self):
        return f"<Delivery(queue='{self.queue}', id='{self.message_id}', deliveries={self.deliveries})>"


class DurableQueue:

    def __init__(
        self,
        redis,
        group: str,
        consumer: str = config.QUEUE_CONSUMER_NAME,
        max_deliveries: int = config.QUEUE_MAX_DELIVERIES,
        block_ms: int = config.QUEUE_BLOCK_MS,
        claim_idle_ms: int = config.QUEUE_CLAIM_IDLE_MS,
        retry_delay: float = config.QUEUE_RETRY_DELAY_SECONDS,
    ):
        self.redis = redis
        self.group = group
        self.consumer = consumer
        self.max_deliveries = max_deliveries
        self.block_ms = block_ms
        self.claim_idle_ms = claim_idle_ms
        self.retry_delay = retry_delay

    async def declare(self, queue: str):
        """Creates the stream and this service's consumer group if they don't exist yet."""
        try:
            await self.redis.xgroup_create(queue, self.group, id="0", mkstream=True)
            logger.info(f"Declared queue '{queue}' for group '{self.group}'")
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def publish(self, queue: str, message, deliveries: int = 1, maxlen: int | None = None) -> str:
        body = message.to_json() if isinstance(message, BaseModel) else json.dumps(message)
        message_id = await self.redis.xadd(queue, {"body": body, "deliveries": deliveries}, maxlen=maxlen, approximate=True)
        logger.debug(f"Message {message_id} sent to queue '{queue}': {body}")
        return message_id

    async def ack(self, delivery: Delivery):
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.xack(delivery.queue, self.group, delivery.message_id)
            pipe.xdel(delivery.queue, delivery.message_id)
            await pipe.execute()
        delivery.settled = True

    async def nack(self, delivery: Delivery, requeue: bool = True, reason: str = ""):
        exhausted = self.max_deliveries > 0 and delivery.deliveries >= self.max_deliveries
        if requeue and not exhausted:
            await self.publish_raw(delivery.queue, delivery.body, delivery.deliveries + 1)
            logger.warning(f"Requeued message {delivery.message_id} on '{delivery.queue}' (delivery {delivery.deliveries})")
        else:
            if exhausted:
                reason = reason or f"gave up after {delivery.deliveries} deliveries"
            await self.redis.xadd(
                delivery.queue + DEAD_LETTER_SUFFIX,
                {"body": delivery.body, "deliveries": delivery.deliveries, "reason": reason},
            )
            logger.error(f"Dead-lettered message {delivery.message_id} from '{delivery.queue}': {reason}")
        await self.ack(delivery)

    async def publish_raw(self, queue: str, body: str, deliveries: int) -> str:
        return await self.redis.xadd(queue, {"body": body, "deliveries": deliveries})

    async def _deliveries(self, queue: str, entries) -> list[Delivery]:
        deliveries = []
        for message_id, fields in entries or []:
            if not fields:
                # Entry was deleted while pending
                await self.redis.xack(queue, self.group, message_id)
                continue
            deliveries.append(Delivery(
                queue,
                message_id,
                fields.get("body", ""),
                int(fields.get("deliveries", 1)),
                self,
            ))
        return deliveries

    async def read(self, queue: str, pending: bool = False, count: int = 10) -> list[Delivery]:
        """Reads a batch for this consumer; ``pending=True`` re-reads what it was given but never settled."""
        response = await self.redis.xreadgroup(
            self.group,
            self.consumer,
            {queue: "0" if pending else ">"},
            count=count,
            block=None if pending else self.block_ms,
        )
        deliveries = []
        for _stream, entries in response or []:
            deliveries.extend(await self._deliveries(queue, entries))
        return deliveries

    async def claim(self, queue: str, count: int = 10) -> list[Delivery]:
        """Takes over messages any consumer of the group has left pending for ``claim_idle_ms``."""
        response = await self.redis.xautoclaim(
            queue,
            self.group,
            self.consumer,
            min_idle_time=self.claim_idle_ms,
            start_id="0-0",
            count=count,
        )
        deliveries = await self._deliveries(queue, response[1] if response else [])
        if deliveries:
            logger.warning(f"Claimed {len(deliveries)} stale message(s) on '{queue}' for '{self.consumer}'")
        return deliveries

    async def consume(
        self,
        queue: str,
        handler: Callable[[Delivery], Awaitable[None]],
        payload_type: Type[BaseModel] | None = None,
    ):
        """Feeds every delivery on ``queue`` to ``handler`` until cancelled.

        The handler settles each delivery itself. Bodies that don't match
        ``payload_type`` are dead-lettered before the handler sees them.
        Redis errors are logged and retried; the loop only ends on cancellation.
        """
        await self.declare(queue)
        logger.info(f"Queue consumer '{self.consumer}' ({self.group}) started for '{queue}'")
        pending = True
        while True:
            try:
                batch = []
                if pending:
                    batch = await self.read(queue, pending=True)
                    pending = False
                seen = {delivery.message_id for delivery in batch}
                batch += [d for d in await self.claim(queue) if d.message_id not in seen]
                if not batch:
                    batch = await self.read(queue)
                for delivery in batch:
                    await self.dispatch(delivery, handler, payload_type)
            except asyncio.CancelledError:
                logger.info(f"Queue consumer for '{queue}' cancelled")
                raise
            except RedisError as e:
                logger.error(f"Redis error while consuming '{queue}', retrying: {e}")
                pending = True
                await asyncio.sleep(self.retry_delay)
                if isinstance(e, ResponseError) and "NOGROUP" in str(e):
                    await self._redeclare(queue)

    async def _redeclare(self, queue: str):
        try:
            await self.declare(queue)
        except RedisError as e:
            logger.error(f"Could not re-declare queue '{queue}': {e}")

    async def dispatch(self, delivery: Delivery, handler, payload_type=None):
        if payload_type is not None:
            try:
                delivery.payload = payload_type.model_validate_json(delivery.body)
            except ValidationError as e:
                logger.error(f"Rejecting unrecognised message on '{delivery.queue}': {delivery.body}. Error: {e}")
                await self.nack(delivery, requeue=False, reason="unrecognised payload")
                return
        try:
            await handler(delivery)
        except Exception as e:
            logger.exception(f"Unhandled error processing {delivery}: {e}")
            if not delivery.settled:
                await self.nack(delivery, requeue=True)
            return
        if not delivery.settled:
            logger.warning(f"Handler left {delivery} unsettled, requeueing")
            await self.nack(delivery, requeue=True)
