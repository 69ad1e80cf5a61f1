"""
Status Transition Authority: the only writer of Order.status.

transition() runs authorize -> validate -> persist -> broadcast and then schedules the
confirmation notifications as a background task. Persistence is the durability boundary:
once the store has committed, the call succeeds whatever happens to the broadcast or to
the notifications.
"""
import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from datetime import datetime, timezone

from orderline.auth import Actor, authorize_admin
from orderline.broadcaster import Broadcaster, PublishResult
from orderline.config import settings
from orderline.db import OrderStore
from orderline.errors import OrderlineError
from orderline.metrics import order_transitions_total, transitions_rejected_total
from orderline.notify import dispatch_order_confirmed
from orderline.order_state import CONFIRMED, validate_status
from orderline.schemas import Order

logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task] = set()


def spawn(coro: Coroutine, name: str | None = None) -> asyncio.Task:
    """Run coro detached from the request; the task is tracked until it finishes."""
    t = asyncio.create_task(coro, name=name)
    _background_tasks.add(t)
    t.add_done_callback(_background_tasks.discard)
    return t


async def drain_background(timeout: float | None = None) -> None:
    """Wait for in-flight background tasks, cancelling whatever is left after timeout."""
    tasks = set(_background_tasks)
    if not tasks:
        return
    timeout = settings.shutdown_drain_seconds if timeout is None else timeout
    logger.info("Waiting for %d in-flight background task(s) (max %ss) ...", len(tasks), timeout)
    _, pending = await asyncio.wait(tasks, timeout=timeout, return_when=asyncio.ALL_COMPLETED)
    for t in pending:
        t.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


@dataclass
class TransitionResult:
    order: Order
    broadcasts: list[PublishResult]
    notifications: asyncio.Task | None = None


async def transition(
    store: OrderStore,
    broadcaster: Broadcaster,
    short_id: str,
    target_status: object,
    actor: Actor | None,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """
    Move the order identified by short_id to target_status on behalf of actor.

    Raises UnauthorizedError / ForbiddenError before anything is read, InvalidStatusError
    before the store is touched, and OrderNotFoundError / InvalidTransitionError /
    VersionConflictError from the store. Other store errors propagate unchanged.
    """
    try:
        authorize_admin(actor)
        target = validate_status(target_status)
        order = await store.apply_transition(
            short_id,
            target,
            now=now or datetime.now(timezone.utc),
            enforce_forward=settings.enforce_forward_transitions,
            expected_version=expected_version,
        )
    except OrderlineError as e:
        transitions_rejected_total.labels(reason=type(e).__name__).inc()
        logger.info("Rejected transition of %s to %r: %s", short_id, target_status, e.message)
        raise

    order_transitions_total.labels(status=order.status).inc()
    logger.info("Order %s -> %s (version %d) by %s", order.short_id, order.status, order.version, actor.subject)

    try:
        broadcasts = await broadcaster.order_updated(order)
    except Exception as e:
        logger.exception("Broadcast for order %s failed: %s", order.short_id, e)
        broadcasts = []

    notifications = None
    if order.status == CONFIRMED:
        notifications = spawn(dispatch_order_confirmed(order), name=f"notify-{order.short_id}")
    return TransitionResult(order=order, broadcasts=broadcasts, notifications=notifications)
