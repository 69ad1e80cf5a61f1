"""
Demo orders for local development and for the admin board's offline fallback.
"""
import logging
from datetime import datetime, timedelta, timezone

from orderline.broadcaster import EVENT_NEW, GLOBAL_TOPIC, Broadcaster, new_order_payload
from orderline.db import OrderStore
from orderline.order_state import RECEIVED
from orderline.orders import build_order_row, insert_with_short_id
from orderline.schemas import OrderCreate

logger = logging.getLogger(__name__)

DEMO_ORDERS: list[dict] = [
    {
        "name": "Maria Lopez",
        "email": "maria@example.com",
        "phone": "(917) 555-1212",
        "type": "pickup",
        "status": "received",
        "items": [
            {"name": "Rotisserie Chicken (Whole)", "quantity": 1, "price": 10.99, "category": "deli"},
            {"name": "Caesar Salad (Large)", "quantity": 1, "price": 7.49, "category": "deli"},
            {"name": "Sourdough Bread", "quantity": 1, "price": 3.99, "category": "bakery"},
        ],
    },
    {
        "name": "Samir Khan",
        "email": "samir@example.com",
        "phone": "(347) 555-0101",
        "type": "delivery",
        "status": "confirmed",
        "address": "215 Richmond Ave, Staten Island, NY 10302",
        "items": [
            {"name": "Turkey Club Sandwich", "quantity": 2, "price": 8.99, "category": "deli"},
            {"name": "Iced Tea (Bottle)", "quantity": 2, "price": 2.49, "category": "drinks"},
            {"name": "Kettle Chips (Sea Salt)", "quantity": 1, "price": 1.99, "category": "snacks"},
        ],
    },
    {
        "name": "Alexis Chen",
        "email": "alexis@example.com",
        "phone": "(646) 555-3344",
        "type": "pickup",
        "status": "preparing",
        "items": [
            {"name": "Breakfast Burrito", "quantity": 1, "price": 6.99, "category": "breakfast"},
            {"name": "Fresh Orange Juice (12oz)", "quantity": 1, "price": 3.49, "category": "drinks"},
            {"name": "Blueberries (Pint)", "quantity": 1, "price": 4.99, "category": "produce"},
        ],
    },
    {
        "name": "David Rossi",
        "email": "drossi@example.com",
        "phone": "(929) 555-7788",
        "type": "delivery",
        "status": "ready",
        "address": "88 Bay St, Staten Island, NY 10301",
        "items": [
            {"name": "Italian Combo Hero", "quantity": 1, "price": 9.99, "category": "deli"},
            {"name": "San Pellegrino (Lemon)", "quantity": 1, "price": 2.29, "category": "drinks"},
            {"name": "Bananas (3 ct)", "quantity": 1, "price": 1.39, "category": "produce"},
        ],
    },
    {
        "name": "Emily Carter",
        "email": "emilyc@example.com",
        "phone": "(917) 555-8866",
        "type": "delivery",
        "status": "out_for_delivery",
        "address": "155 Bay St, Staten Island, NY 10301",
        "items": [
            {"name": "Greek Salad (Large)", "quantity": 1, "price": 7.49, "category": "deli"},
            {"name": "Grilled Chicken Breast (8oz)", "quantity": 1, "price": 5.99, "category": "deli"},
            {"name": "Avocado (2 ct)", "quantity": 1, "price": 3.50, "category": "produce"},
        ],
    },
]


def demo_order_body(demo: dict) -> OrderCreate:
    return OrderCreate.model_validate({k: v for k, v in demo.items() if k != "status"})


def demo_board_orders(now: datetime | None = None) -> list[dict]:
    """Demo set in board payload shape, never persisted."""
    now = now or datetime.now(timezone.utc)
    orders = []
    for i, demo in enumerate(DEMO_ORDERS):
        row = build_order_row(demo_order_body(demo), f"DEMO-{i + 1:02d}")
        orders.append({
            "id": None,
            "shortId": row["short_id"],
            "name": row["name"],
            "type": row["type"],
            "status": demo["status"],
            "total": row["total"],
            "itemCount": row["item_count"],
            "createdAt": (now - timedelta(minutes=7 * i)).isoformat(),
            "demo": True,
        })
    return orders


async def seed_demo_orders(store: OrderStore, broadcaster: Broadcaster) -> dict:
    """
    Persist the demo orders (advancing each through the store's transition path so stage
    timestamps are consistent) and announce them with order:new. If persistence fails the
    in-memory demo set is still announced so a board can be exercised without a database.
    """
    created: list[dict] = []
    try:
        for demo in DEMO_ORDERS:
            body = demo_order_body(demo)
            order = await insert_with_short_id(store, lambda short_id, body=body: build_order_row(body, short_id))
            if demo["status"] != RECEIVED:
                order = await store.apply_transition(order.short_id, demo["status"])
            created.append(new_order_payload(order))
    except Exception as e:
        logger.exception("Demo seed persistence failed after %d order(s): %s", len(created), e)

    payloads = created or demo_board_orders()
    for payload in payloads:
        await broadcaster.publish(GLOBAL_TOPIC, EVENT_NEW, payload)
    return {"persisted": len(created), "sent": len(payloads)}
