"""
Order creation and reads. Creation is the only other writer besides the Transition Authority,
and it only ever inserts orders in status 'received'.
"""
import logging
import secrets

from orderline.broadcaster import Broadcaster
from orderline.config import settings
from orderline.db import OrderStore
from orderline.errors import DuplicateShortIdError, OrderlineError, OrderNotFoundError
from orderline.metrics import orders_created_total
from orderline.order_state import RECEIVED
from orderline.schemas import Order, OrderCreate, PublicOrder

logger = logging.getLogger(__name__)

SHORT_ID_BYTES = 3  # 6 hex chars, e.g. ALP-3F9C2A


def generate_short_id(prefix: str | None = None) -> str:
    prefix = settings.short_id_prefix if prefix is None else prefix
    return f"{prefix}-{secrets.token_hex(SHORT_ID_BYTES).upper()}"


def build_order_row(body: OrderCreate, short_id: str) -> dict:
    """
    Row for a new order. Item subtotals, itemCount, subtotal and total are computed here
    (subtotal/total only when the caller did not supply them) and never recomputed later.
    """
    items = [
        {
            "product_id": item.product_id,
            "name": item.name,
            "price": item.price,
            "quantity": item.quantity,
            "category": item.category or "other",
            "subtotal": round(item.price * item.quantity, 2),
        }
        for item in body.items
    ]
    computed = round(sum(i["subtotal"] for i in items), 2)
    subtotal = body.subtotal if body.subtotal is not None else computed
    total = body.total if body.total is not None else subtotal
    return {
        "short_id": short_id,
        "name": body.name.strip(),
        "email": body.email.strip(),
        "phone": body.phone.strip(),
        "type": body.type,
        "address": body.address,
        "notes": body.notes,
        "status": RECEIVED,
        "items": items,
        "item_count": sum(i["quantity"] for i in items),
        "subtotal": subtotal,
        "total": total,
    }


async def insert_with_short_id(store: OrderStore, make_row) -> Order:
    """Insert make_row(short_id), drawing a fresh shortId whenever one is already taken."""
    attempts = settings.short_id_attempts
    for attempt in range(1, attempts + 1):
        short_id = generate_short_id()
        try:
            return await store.insert(make_row(short_id))
        except DuplicateShortIdError:
            logger.warning("shortId %s already taken, regenerating (attempt %d/%d)", short_id, attempt, attempts)
    raise OrderlineError("Could not allocate a unique shortId")


async def create_order(store: OrderStore, broadcaster: Broadcaster, body: OrderCreate) -> Order:
    order = await insert_with_short_id(store, lambda short_id: build_order_row(body, short_id))
    orders_created_total.labels(type=order.type).inc()
    logger.info("Created order %s (%s, %d items, total %.2f)", order.short_id, order.type, order.item_count, order.total)
    await broadcaster.order_created(order)
    return order


async def get_snapshot(store: OrderStore, key: str) -> PublicOrder:
    key = key.strip()
    order = await store.get(key) if key else None
    if order is None:
        raise OrderNotFoundError()
    return PublicOrder.from_order(order)


async def list_orders(store: OrderStore, limit: int = 200) -> list[Order]:
    return await store.list(limit=limit)
