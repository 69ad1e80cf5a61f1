import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from orderline.broadcaster import reset_broadcaster
from orderline.config import settings
from orderline.db import close_pool, get_pool, init_schema
from orderline.errors import OrderlineError
from orderline.metrics import get_metrics_bytes, get_metrics_content_type
from orderline.redis_client import close_redis, get_redis
from orderline.routes import admin, orders, realtime
from orderline.transitions import drain_background

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = await get_pool()
    await init_schema(pool)
    await get_redis()
    logger.info("Schema ready. Forward-only transitions: %s", settings.enforce_forward_transitions)
    yield
    await drain_background()
    reset_broadcaster()
    await close_redis()
    await close_pool()


app = FastAPI(title="Order Status Pipeline", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(admin.router)
app.include_router(realtime.router)


@app.exception_handler(OrderlineError)
async def orderline_error(request: Request, exc: OrderlineError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
