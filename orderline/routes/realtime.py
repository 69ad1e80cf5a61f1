"""
WebSocket relay for browsers: forwards one topic's events as JSON envelopes.
The global "orders" topic needs an admin token (?token=...); per-order topics are public
but must name an existing order, and are followed under its stored shortId.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, status

from orderline.auth import actor_from_token
from orderline.broadcaster import (
    GLOBAL_TOPIC,
    ORDER_TOPIC_PREFIX,
    Broadcaster,
    Subscription,
    get_broadcaster,
    order_topic,
)
from orderline.db import OrderStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _topic_allowed(topic: str, token: str | None) -> bool:
    if topic == GLOBAL_TOPIC:
        actor = actor_from_token(token)
        return actor is not None and actor.is_admin
    return topic.startswith(ORDER_TOPIC_PREFIX) and len(topic) > len(ORDER_TOPIC_PREFIX)


async def _resolve_topic(topic: str, store: OrderStore) -> str | None:
    """Canonical topic name, or None when a per-order topic names no known order."""
    if topic == GLOBAL_TOPIC:
        return topic
    order = await store.get(topic[len(ORDER_TOPIC_PREFIX):])
    return order_topic(order.short_id) if order else None


async def _forward(websocket: WebSocket, sub: Subscription) -> None:
    async for event in sub:
        await websocket.send_json({"event": event.name, "data": event.data})


async def _wait_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws/topics/{topic}")
async def relay_topic(
    websocket: WebSocket,
    topic: str,
    token: str | None = None,
    broadcaster: Broadcaster = Depends(get_broadcaster),
    store: OrderStore = Depends(get_store),
):
    if not _topic_allowed(topic, token):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    resolved = await _resolve_topic(topic, store)
    if resolved is None:
        logger.info("Relay refused for %s: no such order", topic)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    # subscribed before accept, so anything published after the handshake is relayed
    async with broadcaster.subscribe(resolved) as sub:
        await websocket.accept()
        tasks = {
            asyncio.create_task(_forward(websocket, sub)),
            asyncio.create_task(_wait_disconnect(websocket)),
        }
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for t in done:
            if not t.cancelled() and t.exception() is not None:
                logger.info("Relay on %s ended: %s", resolved, t.exception())
    logger.info("Relay on %s closed", resolved)
