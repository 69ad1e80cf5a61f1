from fastapi import APIRouter, Depends, Query

from orderline.auth import Actor, require_admin
from orderline.broadcaster import Broadcaster, get_broadcaster
from orderline.db import OrderStore, get_store
from orderline.orders import create_order, get_snapshot, list_orders
from orderline.schemas import Order, OrderCreate, OrderCreated, PublicOrder, StatusUpdateBody
from orderline.transitions import transition

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", response_model=OrderCreated)
async def place_order(
    body: OrderCreate,
    store: OrderStore = Depends(get_store),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> OrderCreated:
    """
    Persist a new order in status 'received' and announce it on the admin feed
    and on the order's own topic.
    """
    order = await create_order(store, broadcaster, body)
    return OrderCreated(id=order.id, short_id=order.short_id)


@router.get("", response_model=list[Order])
async def board_snapshot(
    limit: int = Query(default=200, ge=1, le=1000),
    _: Actor = Depends(require_admin),
    store: OrderStore = Depends(get_store),
) -> list[Order]:
    """All orders, newest first. Initial load for the admin board."""
    return await list_orders(store, limit=limit)


@router.get("/{short_id}", response_model=PublicOrder)
async def order_snapshot(short_id: str, store: OrderStore = Depends(get_store)) -> PublicOrder:
    """Current state of one order; public to anyone holding the shortId."""
    return await get_snapshot(store, short_id)


@router.patch("/{short_id}", response_model=PublicOrder)
async def update_status(
    short_id: str,
    body: StatusUpdateBody,
    actor: Actor = Depends(require_admin),
    store: OrderStore = Depends(get_store),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> PublicOrder:
    """
    Move an order to a new status. Admin only.
    400 invalid status, 401/403 caller, 404 unknown order, 409 not allowed from the current
    status or stale `version`. Broadcast and notification failures never change the response.
    """
    result = await transition(store, broadcaster, short_id, body.status, actor, expected_version=body.version)
    return PublicOrder.from_order(result.order)
