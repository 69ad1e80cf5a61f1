"""
Shared fixtures: an in-memory order store with the same contract as OrderStore,
a fakeredis-backed broadcaster, admin/customer identities, and an HTTP client for the app.
"""
import uuid
from datetime import datetime, timezone

import pytest
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient

from orderline.auth import Actor, create_access_token
from orderline.broadcaster import Broadcaster, get_broadcaster
from orderline.config import settings
from orderline.db import get_store
from orderline.errors import DuplicateShortIdError, OrderNotFoundError, VersionConflictError
from orderline.main import app
from orderline.order_state import STAGE_TIMESTAMP_FIELDS, plan_transition
from orderline.orders import build_order_row
from orderline.schemas import Order, OrderCreate
from orderline.transitions import drain_background

SCENARIO_SHORT_ID = "ALP-1A2B3C"


class InMemoryOrderStore:
    def __init__(self):
        self.rows: dict[str, dict] = {}
        self.write_error: Exception | None = None

    def _find(self, key: str) -> dict | None:
        for variant in (key, key.upper(), key.lower()):
            if variant in self.rows:
                return self.rows[variant]
        return next((r for r in self.rows.values() if str(r["id"]) == key), None)

    def raw(self, short_id: str) -> dict:
        return dict(self.rows[short_id])

    async def insert(self, data: dict) -> Order:
        if self.write_error is not None:
            raise self.write_error
        if data["short_id"] in self.rows:
            raise DuplicateShortIdError(data["short_id"])
        now = datetime.now(timezone.utc)
        row = {
            "id": uuid.uuid4(),
            **data,
            "created_at": now,
            "updated_at": now,
            **{f: None for f in STAGE_TIMESTAMP_FIELDS.values() if f},
            "version": 0,
        }
        self.rows[data["short_id"]] = row
        return Order.model_validate(row)

    async def get(self, key: str) -> Order | None:
        row = self._find(key)
        return Order.model_validate(row) if row else None

    async def list(self, limit: int = 200) -> list[Order]:
        rows = sorted(self.rows.values(), key=lambda r: r["created_at"], reverse=True)
        return [Order.model_validate(r) for r in rows[:limit]]

    async def apply_transition(self, key, target, *, now=None, enforce_forward=True, expected_version=None) -> Order:
        if self.write_error is not None:
            raise self.write_error
        now = now or datetime.now(timezone.utc)
        row = self._find(key)
        if row is None:
            raise OrderNotFoundError()
        if expected_version is not None and row["version"] != expected_version:
            raise VersionConflictError(expected_version, row["version"])
        updates = plan_transition(row, target, now, enforce_forward)
        row.update(updates)
        row["version"] += 1
        row["updated_at"] = now
        return Order.model_validate(row)


def order_body(**overrides) -> OrderCreate:
    data = {
        "type": "pickup",
        "name": "Maria Lopez",
        "email": "maria@example.com",
        "phone": "+19175551212",
        "items": [
            {"productId": "p-1", "name": "Rotisserie Chicken", "price": 10.99, "quantity": 1, "category": "deli"},
            {"productId": "p-2", "name": "Sourdough Bread", "price": 3.50, "quantity": 2},
        ],
    }
    data.update(overrides)
    return OrderCreate.model_validate(data)


async def collect(sub, count: int | None = None, attempts: int = 10, timeout: float = 0.2) -> list:
    """Read events from a subscription; subscribe confirmations come back as None and are skipped."""
    events = []
    for _ in range(attempts):
        event = await sub.get(timeout=timeout)
        if event is not None:
            events.append(event)
            if count is not None and len(events) >= count:
                break
    return events


@pytest.fixture(autouse=True)
async def _drain_notifications():
    yield
    await drain_background(timeout=1)


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
async def redis_client():
    r = fake_aioredis.FakeRedis(decode_responses=True)
    yield r
    await r.aclose()


@pytest.fixture
def broadcaster(redis_client) -> Broadcaster:
    return Broadcaster(redis_client)


@pytest.fixture
async def scenario_order(store) -> Order:
    return await store.insert(build_order_row(order_body(), SCENARIO_SHORT_ID))


@pytest.fixture
def admin() -> Actor:
    return Actor(subject="user_admin", role="admin", email="owner@example.com")


@pytest.fixture
def customer() -> Actor:
    return Actor(subject="user_customer", email="maria@example.com")


@pytest.fixture
def forward_only(monkeypatch):
    monkeypatch.setattr(settings, "enforce_forward_transitions", True)


@pytest.fixture
def notifications_on(monkeypatch):
    monkeypatch.setattr(settings, "email_from", "orders@example.com")
    monkeypatch.setattr(settings, "sms_enabled", True)
    monkeypatch.setattr(settings, "app_base_url", "https://shop.example.com")


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token('user_admin', role='admin')}"}


@pytest.fixture
def customer_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token('user_customer', email='maria@example.com')}"}


@pytest.fixture
async def api(store, broadcaster):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
