"""
Subscriber clients for the order feeds.

AdminBoard follows the global "orders" topic and keeps every order grouped by status.
CustomerTracker follows one order's "order-{shortId}" topic and derives a progress stepper.

Both mount the same way: subscribe, load a snapshot, then merge incoming events with a pure
reducer. Subscribing before the snapshot is read means events published while it loads are
buffered and applied on top of it. When the snapshot names the order differently than the
caller did (shortId letter case), the tracker moves its subscription to the stored shortId.
Unmounting releases the subscription and any event that is still in flight is ignored.
Events carrying a status outside the known set are dropped by the reducers.
"""
import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic.alias_generators import to_camel

from orderline.broadcaster import EVENT_NEW, EVENT_UPDATE, GLOBAL_TOPIC, Broadcaster, Event, Subscription, order_topic
from orderline.order_state import (
    CANCELED,
    RECEIVED,
    STAGE_TIMESTAMP_FIELDS,
    STATUS_SEQUENCE,
    STATUSES,
    progress_index,
)
from orderline.seed import demo_board_orders

logger = logging.getLogger(__name__)

BoardLoader = Callable[[], Awaitable[list[dict]]]
StatusPatcher = Callable[[str, str], Awaitable[dict]]
OrderLoader = Callable[[str], Awaitable[dict | None]]

STATUS_LABELS: dict[str, str] = {
    "received": "Received",
    "confirmed": "Confirmed",
    "preparing": "Preparing",
    "ready": "Ready",
    "out_for_delivery": "Out for delivery",
    "completed": "Completed",
    "canceled": "Canceled",
}

TRACKER_STEPS: dict[str, list[tuple[str, str]]] = {
    "pickup": [
        ("received", "Order Received"),
        ("confirmed", "Confirmed"),
        ("preparing", "Preparing"),
        ("ready", "Ready for Pickup"),
        ("completed", "Order Complete"),
    ],
    "delivery": [
        ("received", "Order Received"),
        ("confirmed", "Confirmed"),
        ("preparing", "Preparing"),
        ("ready", "Ready"),
        ("out_for_delivery", "Out for Delivery"),
        ("completed", "Delivered"),
    ],
}

STATUS_MESSAGES: dict[str, str] = {
    "received": "We've received your order and will begin processing it shortly.",
    "confirmed": "Your order has been confirmed! We'll start preparing it now.",
    "preparing": "Our team is carefully preparing your order.",
    "ready": "Your order is ready!",
    "out_for_delivery": "Your order is on its way to you!",
    "completed": "Your order has been completed. Thank you for your business!",
    "canceled": "This order has been canceled. Please contact us if you have questions.",
}


# Reducers

def _known_status(data: dict) -> bool:
    """A payload without a status is fine; one with a status must name a known one."""
    return "status" not in data or data["status"] in STATUSES


def merge_board_event(orders: list[dict], name: str, data: dict) -> list[dict]:
    """
    Fold one global-feed event into the board's order list (newest first).
    order:new prepends unless the shortId is already known; order:update shallow-merges
    into the matching order, or prepends it when the board has never seen that order.
    """
    short_id = data.get("shortId")
    if not short_id:
        logger.warning("Ignoring %s without shortId: %r", name, data)
        return orders
    if not _known_status(data):
        logger.warning("Ignoring %s for %s with unknown status %r", name, short_id, data["status"])
        return orders
    idx = next((i for i, o in enumerate(orders) if o.get("shortId") == short_id), None)
    if name == EVENT_NEW:
        if idx is not None:
            return orders
        return [{**data, "demo": False}, *orders]
    if name == EVENT_UPDATE:
        if idx is None:
            return [{**data, "demo": False}, *orders]
        return [*orders[:idx], {**orders[idx], **data, "demo": False}, *orders[idx + 1:]]
    logger.debug("Ignoring unknown event %s", name)
    return orders


def merge_tracker_update(order: dict, data: dict, now: datetime | None = None) -> dict:
    """Shallow-merge an order:update payload; stamp the stage time locally if none is known yet."""
    if not _known_status(data):
        logger.warning("Ignoring update for %s with unknown status %r", order.get("shortId"), data["status"])
        return order
    merged = {**order, **data}
    ts_field = STAGE_TIMESTAMP_FIELDS.get(data.get("status"))
    if ts_field:
        key = to_camel(ts_field)
        if not merged.get(key):
            merged[key] = (now or datetime.now(timezone.utc)).isoformat()
    return merged


def group_by_status(orders: list[dict]) -> dict[str, list[dict]]:
    columns: dict[str, list[dict]] = {status: [] for status in STATUSES}
    for order in orders:
        columns.setdefault(order.get("status", RECEIVED), []).append(order)
    return columns


def status_counts(orders: list[dict]) -> dict[str, int]:
    counts = {"all": len(orders)}
    counts.update({status: len(col) for status, col in group_by_status(orders).items()})
    return counts


# Clients

class _Subscriber:
    topics: tuple[str, ...] = ()

    def __init__(self, broadcaster: Broadcaster):
        self.broadcaster = broadcaster
        self._sub: Subscription | None = None

    @property
    def mounted(self) -> bool:
        return self._sub is not None and not self._sub.closed

    async def load(self) -> None:
        raise NotImplementedError

    def apply(self, event: Event) -> None:
        raise NotImplementedError

    def resolved_topics(self) -> tuple[str, ...]:
        """Topics to follow once the snapshot is loaded."""
        return self.topics

    @asynccontextmanager
    async def mount(self) -> AsyncIterator["_Subscriber"]:
        async with AsyncExitStack() as stack:
            self._sub = await stack.enter_async_context(self.broadcaster.subscribe(*self.topics))
            try:
                await self.load()
                topics = self.resolved_topics()
                if topics != self.topics:
                    logger.info("Moving subscription from %s to %s", ", ".join(self.topics), ", ".join(topics))
                    await self._sub.close()
                    self.topics = topics
                    self._sub = await stack.enter_async_context(self.broadcaster.subscribe(*topics))
                    # events published between the first load and the new subscription
                    await self.load()
                yield self
            finally:
                self._sub = None

    async def next_event(self, timeout: float = 1.0) -> Event | None:
        """Wait for and apply one event. Returns None on timeout or when unmounted."""
        sub = self._sub
        if sub is None or sub.closed:
            return None
        event = await sub.get(timeout=timeout)
        if event is None or not self.mounted:
            return None
        self.apply(event)
        return event

    async def run(
        self,
        stop: asyncio.Event,
        on_change: Callable[["_Subscriber"], None] | None = None,
        resync_seconds: float | None = None,
    ) -> None:
        """
        Consume events until stop is set. With resync_seconds the snapshot is reloaded
        periodically, which bounds how long a missed event can leave the view stale.
        """
        last_sync = time.monotonic()
        while not stop.is_set() and self.mounted:
            event = await self.next_event()
            changed = event is not None
            if resync_seconds and time.monotonic() - last_sync >= resync_seconds:
                await self.load()
                last_sync = time.monotonic()
                changed = True
            if changed and on_change is not None:
                on_change(self)


class AdminBoard(_Subscriber):
    """Every order, grouped into one column per status."""

    topics = (GLOBAL_TOPIC,)

    def __init__(self, broadcaster: Broadcaster, loader: BoardLoader | None = None, demo_fallback: bool = True):
        super().__init__(broadcaster)
        self.loader = loader
        self.demo_fallback = demo_fallback
        self.orders: list[dict] = []
        self.loaded = False

    async def load(self) -> None:
        """
        Replace the board with a fresh snapshot. Only the first load falls back to the demo
        set; when a later resync fails the current orders are kept.
        """
        snapshot = None
        if self.loader is not None:
            try:
                snapshot = await self.loader()
            except Exception as e:
                logger.warning("Board snapshot unavailable: %s", e)
        if snapshot is None and self.loaded:
            logger.info("Keeping %d order(s) from the last snapshot", len(self.orders))
            return
        snapshot = snapshot or []
        if not snapshot and not self.loaded and self.demo_fallback:
            snapshot = demo_board_orders()
        self.orders = list(snapshot)
        self.loaded = True

    def apply(self, event: Event) -> None:
        self.orders = merge_board_event(self.orders, event.name, event.data)

    async def change_status(self, short_id: str, status: str, patcher: StatusPatcher) -> bool:
        """
        Move an order to status on the board right away, then ask the API to persist it.
        The server's copy is merged in on success; on failure only this order is put back
        the way it was. Returns whether the API accepted the change.
        """
        before = next((o for o in self.orders if o.get("shortId") == short_id), None)
        self.orders = merge_board_event(self.orders, EVENT_UPDATE, {"shortId": short_id, "status": status})
        try:
            saved = await patcher(short_id, status)
        except Exception as e:
            logger.warning("Status change of %s to %s failed, rolling back: %s", short_id, status, e)
            if before is None:
                self.orders = [o for o in self.orders if o.get("shortId") != short_id]
            else:
                self.orders = [before if o.get("shortId") == short_id else o for o in self.orders]
            return False
        if saved:
            self.orders = merge_board_event(self.orders, EVENT_UPDATE, {**saved, "shortId": short_id})
        return True

    def columns(self) -> dict[str, list[dict]]:
        return group_by_status(self.orders)

    def counts(self) -> dict[str, int]:
        return status_counts(self.orders)


@dataclass
class Step:
    key: str
    label: str
    done: bool
    current: bool
    timestamp: str | None = None


class CustomerTracker(_Subscriber):
    """One order's live status as a stepper; canceled is shown on its own, not as a step."""

    def __init__(self, broadcaster: Broadcaster, short_id: str, loader: OrderLoader | None = None):
        super().__init__(broadcaster)
        self.short_id = short_id
        self.topics = (order_topic(short_id),)
        self.loader = loader
        self.order: dict = {"shortId": short_id}
        self.loaded = False

    async def load(self) -> None:
        snapshot = None
        if self.loader is not None:
            try:
                snapshot = await self.loader(self.short_id)
            except Exception as e:
                logger.warning("Snapshot for %s unavailable: %s", self.short_id, e)
        self.loaded = snapshot is not None
        if snapshot:
            self.order = {**self.order, **snapshot}
            self.short_id = self.order.get("shortId") or self.short_id

    def resolved_topics(self) -> tuple[str, ...]:
        """Events are published under the stored shortId, whatever case the caller typed."""
        return (order_topic(self.short_id),)

    def apply(self, event: Event) -> None:
        if event.name == EVENT_UPDATE:
            self.order = merge_tracker_update(self.order, event.data)

    @property
    def status(self) -> str | None:
        return self.order.get("status")

    @property
    def is_canceled(self) -> bool:
        return self.status == CANCELED

    @property
    def message(self) -> str:
        return STATUS_MESSAGES.get(self.status or "", "Loading status...")

    def steps(self) -> list[Step]:
        """Stepper for the order's fulfillment type. Empty while canceled or unknown."""
        if self.status not in STATUS_SEQUENCE:
            return []
        steps = TRACKER_STEPS.get(self.order.get("type") or "delivery", TRACKER_STEPS["delivery"])
        position = progress_index(self.status)
        # A status the stepper has no slot for (pickup + out_for_delivery) lights the last slot before it
        current = max(i for i, (key, _) in enumerate(steps) if STATUS_SEQUENCE.index(key) <= position)
        return [
            Step(
                key=key,
                label=label,
                done=i <= current,
                current=i == current,
                timestamp=self._stage_time(key),
            )
            for i, (key, label) in enumerate(steps)
        ]

    def _stage_time(self, status: str) -> str | None:
        field = STAGE_TIMESTAMP_FIELDS[status]
        return self.order.get(to_camel(field) if field else "createdAt")

    @property
    def current_step(self) -> int | None:
        for i, step in enumerate(self.steps()):
            if step.current:
                return i
        return None

