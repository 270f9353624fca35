"""
In-memory stand-ins for the brokers and sockets the services talk to.

``FakeRedis`` covers only the commands the services use: streams with
consumer groups for the durable queues (including claiming stale entries),
and pub/sub for the fan-out channel.
"""
import asyncio
import time

from starlette.websockets import WebSocketState
from redis.exceptions import ConnectionError as RedisConnectionError, ResponseError, TimeoutError as RedisTimeoutError

from common import messages


def _seq(message_id: str) -> int:
    return int(message_id.split("-")[0])


class FakePipeline:

    def __init__(self, redis):
        self.redis = redis
        self.calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def xack(self, *args):
        self.calls.append(("xack", args))
        return self

    def xdel(self, *args):
        self.calls.append(("xdel", args))
        return self

    async def execute(self):
        return [await getattr(self.redis, name)(*args) for name, args in self.calls]


class FakePubSub:

    def __init__(self, redis):
        self.redis = redis
        self.channels = set()
        self.inbox = []

    async def subscribe(self, *channels):
        self.channels.update(channels)
        self.redis.subscribers.append(self)

    async def unsubscribe(self, *channels):
        self.channels.difference_update(channels)
        if self in self.redis.subscribers:
            self.redis.subscribers.remove(self)

    async def get_message(self, ignore_subscribe_messages=False, timeout=0.0):
        if self.redis.fail_pubsub:
            self.redis.fail_pubsub -= 1
            raise RedisConnectionError("Connection reset by peer")
        if self.inbox:
            return self.inbox.pop(0)
        await asyncio.sleep(min(timeout, 0.005))
        return None

    async def aclose(self):
        self.inbox.clear()


class FakeRedis:

    def __init__(self):
        self.streams = {}  # name -> list of (id, fields)
        self.groups = {}   # (name, group) -> {"last": int, "pending": {id: consumer}, "delivered": {id: time}}
        self.published = {}
        self.subscribers = []
        self.fail_publish = False
        self.fail_xadd = False
        self.fail_reads = 0   # next N group reads time out
        self.fail_pubsub = 0  # next N pub/sub reads lose the connection
        self._counter = 0

    def _group(self, name, groupname):
        try:
            return self.groups[(name, groupname)]
        except KeyError:
            raise ResponseError(f"NOGROUP No such key '{name}' or consumer group '{groupname}'")

    async def ping(self):
        return True

    async def xadd(self, name, fields, maxlen=None, approximate=True):
        if self.fail_xadd:
            raise ConnectionError("redis down")
        self._counter += 1
        message_id = f"{self._counter}-0"
        entries = self.streams.setdefault(name, [])
        entries.append((message_id, {k: str(v) for k, v in fields.items()}))
        if maxlen is not None and len(entries) > maxlen:
            del entries[: len(entries) - maxlen]
        return message_id

    async def xgroup_create(self, name, groupname, id="$", mkstream=False):
        if (name, groupname) in self.groups:
            raise ResponseError("BUSYGROUP Consumer Group name already exists")
        entries = self.streams.setdefault(name, [])
        last = 0 if id == "0" else (_seq(entries[-1][0]) if entries else 0)
        self.groups[(name, groupname)] = {"last": last, "pending": {}, "delivered": {}}
        return True

    async def xreadgroup(self, groupname, consumername, streams, count=None, block=None, noack=None):
        if self.fail_reads:
            self.fail_reads -= 1
            raise RedisTimeoutError("Timeout reading from socket")
        response = []
        now = time.monotonic()
        for name, start in streams.items():
            group = self._group(name, groupname)
            entries = self.streams.get(name, [])
            if start == ">":
                batch = [(i, f) for i, f in entries if _seq(i) > group["last"]][:count]
                for message_id, _ in batch:
                    group["pending"][message_id] = consumername
                if batch:
                    group["last"] = _seq(batch[-1][0])
            else:
                live = dict(entries)
                batch = [
                    (message_id, live.get(message_id, {}))
                    for message_id, owner in sorted(group["pending"].items(), key=lambda p: _seq(p[0]))
                    if owner == consumername and _seq(message_id) > _seq(start)
                ][:count]
            for message_id, _ in batch:
                group["delivered"][message_id] = now
            if batch:
                response.append([name, batch])
        if not response and block:
            # Stand-in for the blocking wait, short enough for tests
            await asyncio.sleep(0.005)
        return response

    async def xautoclaim(self, name, groupname, consumername, min_idle_time, start_id="0-0", count=None, justid=False):
        group = self._group(name, groupname)
        live = dict(self.streams.get(name, []))
        now = time.monotonic()
        claimed, deleted = [], []
        for message_id in sorted(group["pending"], key=_seq):
            if _seq(message_id) < _seq(start_id):
                continue
            if (now - group["delivered"].get(message_id, now)) * 1000 < min_idle_time:
                continue
            if message_id not in live:
                group["pending"].pop(message_id)
                group["delivered"].pop(message_id, None)
                deleted.append(message_id)
                continue
            group["pending"][message_id] = consumername
            group["delivered"][message_id] = now
            claimed.append((message_id, live[message_id]))
            if count and len(claimed) >= count:
                break
        return ["0-0", claimed, deleted]

    async def xack(self, name, groupname, *ids):
        group = self._group(name, groupname)
        for message_id in ids:
            group["delivered"].pop(message_id, None)
        return sum(1 for message_id in ids if group["pending"].pop(message_id, None) is not None)

    async def xdel(self, name, *ids):
        before = len(self.streams.get(name, []))
        self.streams[name] = [(i, f) for i, f in self.streams.get(name, []) if i not in ids]
        return before - len(self.streams[name])

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def pubsub(self):
        return FakePubSub(self)

    async def publish(self, channel, message):
        if self.fail_publish:
            raise ConnectionError("redis down")
        self.published.setdefault(channel, []).append(message)
        receivers = [pubsub for pubsub in self.subscribers if channel in pubsub.channels]
        for pubsub in receivers:
            pubsub.inbox.append({"type": "message", "channel": channel, "data": message})
        return len(receivers)

    def flushall(self):
        """Drops every stream and group, as a Redis restart without persistence would."""
        self.streams.clear()
        self.groups.clear()

    # Test helpers

    def bodies(self, name):
        return [fields["body"] for _, fields in self.streams.get(name, [])]

    def pending(self, name, groupname):
        return dict(self.groups[(name, groupname)]["pending"])


class FakeEventLog:
    """Stands in for EventLogRelay."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events = []

    async def publish(self, topic, key, event):
        if self.fail:
            raise RuntimeError("kafka down")
        self.events.append((topic, key, event))
        return True

    def keys(self):
        return [(topic, key) for topic, key, _ in self.events]


class FakeSocket:
    """Just enough of a starlette WebSocket for the registry."""

    def __init__(self, broken: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.sent = []
        self.broken = broken

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("socket went away")
        self.sent.append(data)

    def close(self):
        self.client_state = WebSocketState.DISCONNECTED


class FailingSessionFactory:
    """Session factory whose sessions blow up on first use."""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise ConnectionError("database unavailable")

    async def __aexit__(self, *exc):
        return False


async def pump(queue, name: str, handler, payload_type=None):
    """Hands every message currently waiting on ``name`` to ``handler`` once."""
    await queue.declare(name)
    batch = await queue.read(name)
    for delivery in batch:
        await queue.dispatch(delivery, handler, payload_type or messages.QUEUE_PAYLOADS[name])
    return batch


async def wait_for(condition, timeout: float = 2.0):
    """Lets background tasks run until ``condition()`` holds."""
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


async def cancel(task: asyncio.Task):
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
