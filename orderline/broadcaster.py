"""
Topic-based fan-out of order events over Redis pub/sub.

Topics:
- "orders": global admin feed carrying order:new and order:update
- "order-{shortId}": one order's customer feed carrying order:update

Each message is a JSON envelope {"event": <name>, "data": <payload>}.
Delivery is at-most-once with no replay; a subscriber that attaches late must fetch
the current snapshot itself. Publishing never raises: failures are logged and counted.
"""
import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import redis.asyncio as redis

from orderline.metrics import broadcast_events_total, broadcast_failures_total
from orderline.redis_client import get_redis
from orderline.schemas import Order

logger = logging.getLogger(__name__)

GLOBAL_TOPIC = "orders"
ORDER_TOPIC_PREFIX = "order-"
EVENT_NEW = "order:new"
EVENT_UPDATE = "order:update"

_broadcaster: "Broadcaster | None" = None


def order_topic(short_id: str) -> str:
    return f"{ORDER_TOPIC_PREFIX}{short_id}"


def topic_kind(topic: str) -> str:
    return "global" if topic == GLOBAL_TOPIC else "order"


@dataclass(frozen=True)
class Event:
    topic: str
    name: str
    data: dict


@dataclass
class PublishResult:
    topic: str
    event: str
    ok: bool
    receivers: int = 0
    error: str | None = None


def new_order_payload(order: Order) -> dict:
    """Summary sent to the admin feed when an order is created."""
    return order.to_payload(include={"id", "short_id", "name", "type", "status", "total", "item_count", "created_at"})


def update_payload(order: Order) -> dict:
    return order.to_payload(include={"id", "short_id", "status"})


def _decode(topic: str, raw: str) -> Event | None:
    try:
        envelope = json.loads(raw)
        return Event(topic=topic, name=envelope["event"], data=envelope.get("data") or {})
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        logger.warning("Dropping malformed message on %s: %s", topic, e)
        return None


class Subscription:
    """
    Handle on one or more topics, obtained from Broadcaster.subscribe().
    Iterating yields Event objects until the handle is closed.
    """

    def __init__(self, pubsub, topics: tuple[str, ...]):
        self._pubsub = pubsub
        self.topics = topics
        self.closed = False

    async def get(self, timeout: float = 1.0) -> Event | None:
        """Next event, or None when nothing arrived within timeout."""
        if self.closed:
            return None
        msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
        if msg is None or msg.get("type") != "message":
            return None
        return _decode(msg["channel"], msg["data"])

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        while not self.closed:
            event = await self.get()
            if event is not None:
                return event
        raise StopAsyncIteration

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self._pubsub.unsubscribe(*self.topics)
        finally:
            await self._pubsub.aclose()


class Broadcaster:
    def __init__(self, r: redis.Redis):
        self.redis = r

    async def publish(self, topic: str, event: str, data: dict) -> PublishResult:
        body = json.dumps({"event": event, "data": data}, default=str)
        kind = topic_kind(topic)
        try:
            receivers = await self.redis.publish(topic, body)
        except Exception as e:
            broadcast_failures_total.labels(topic_kind=kind).inc()
            logger.exception("Publish %s to %s failed: %s", event, topic, e)
            return PublishResult(topic=topic, event=event, ok=False, error=str(e))
        broadcast_events_total.labels(topic_kind=kind, event=event).inc()
        return PublishResult(topic=topic, event=event, ok=True, receivers=receivers)

    async def order_created(self, order: Order) -> list[PublishResult]:
        """order:new on the admin feed; seed the order's own topic with status and items."""
        items = [item.to_payload() for item in order.items]
        return list(await asyncio.gather(
            self.publish(GLOBAL_TOPIC, EVENT_NEW, new_order_payload(order)),
            self.publish(order_topic(order.short_id), EVENT_UPDATE, {"status": order.status, "items": items}),
        ))

    async def order_updated(self, order: Order) -> list[PublishResult]:
        """Exactly two events per status change: global feed and the order's topic."""
        per_order = {"shortId": order.short_id, "status": order.status}
        return list(await asyncio.gather(
            self.publish(GLOBAL_TOPIC, EVENT_UPDATE, update_payload(order)),
            self.publish(order_topic(order.short_id), EVENT_UPDATE, per_order),
        ))

    @asynccontextmanager
    async def subscribe(self, *topics: str) -> AsyncIterator[Subscription]:
        """Subscribe for the duration of the block; leaving it always unsubscribes."""
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(*topics)
        except Exception:
            await pubsub.aclose()
            raise
        sub = Subscription(pubsub, topics)
        try:
            yield sub
        finally:
            await sub.close()


async def get_broadcaster() -> Broadcaster:
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = Broadcaster(await get_redis())
    return _broadcaster


def reset_broadcaster() -> None:
    global _broadcaster
    _broadcaster = None
