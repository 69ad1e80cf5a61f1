from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from orderline.auth import Actor, require_admin
from orderline.broadcaster import Broadcaster, get_broadcaster
from orderline.config import settings
from orderline.db import OrderStore, get_store
from orderline.errors import OrderNotFoundError
from orderline.seed import seed_demo_orders

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/seed")
async def seed(
    _: Actor = Depends(require_admin),
    store: OrderStore = Depends(get_store),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> JSONResponse:
    """
    Insert the demo orders and announce each with order:new.
    Only available when ENABLE_DEV_SEED is set.
    """
    if not settings.enable_dev_seed:
        raise OrderNotFoundError()
    result = await seed_demo_orders(store, broadcaster)
    return JSONResponse(
        status_code=200,
        content={"ok": True, **result},
    )
