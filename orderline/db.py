"""
Async Postgres order store.
Orders are inserted once (status 'received') and afterwards only changed by apply_transition,
which locks the row, validates against the current status and writes status + stage timestamp
in a single UPDATE. There is no delete.
"""
import json
from datetime import datetime, timezone

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from orderline.config import settings
from orderline.errors import DuplicateShortIdError, OrderNotFoundError, VersionConflictError
from orderline.order_state import plan_transition
from orderline.schemas import Order

_pool: asyncpg.Pool | None = None
_store: "OrderStore | None" = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
            init=_init_connection,
        )
    return _pool


async def close_pool() -> None:
    global _pool, _store
    if _pool is not None:
        await _pool.close()
        _pool = None
        _store = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                short_id VARCHAR(32) NOT NULL,
                name VARCHAR(200) NOT NULL,
                email VARCHAR(255) NOT NULL,
                phone VARCHAR(50) NOT NULL,
                type VARCHAR(20) NOT NULL,
                address TEXT,
                notes TEXT,
                status VARCHAR(30) NOT NULL DEFAULT 'received',
                items JSONB NOT NULL DEFAULT '[]'::jsonb,
                item_count INT NOT NULL,
                subtotal NUMERIC(10, 2) NOT NULL,
                total NUMERIC(10, 2) NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                confirmed_at TIMESTAMPTZ,
                prepared_at TIMESTAMPTZ,
                ready_at TIMESTAMPTZ,
                out_for_delivery_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                version INT NOT NULL DEFAULT 0,
                UNIQUE(short_id)
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_created_at
            ON orders(created_at DESC);
        """)


def _key_variants(key: str) -> list[str]:
    return list(dict.fromkeys([key, key.upper(), key.lower()]))


class OrderStore:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def insert(self, data: dict) -> Order:
        """Insert a new order row; raises DuplicateShortIdError if short_id is taken."""
        try:
            row = await self.pool.fetchrow(
                """
                INSERT INTO orders (short_id, name, email, phone, type, address, notes, status,
                                    items, item_count, subtotal, total)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, $10, $11, $12)
                RETURNING *;
                """,
                data["short_id"],
                data["name"],
                data["email"],
                data["phone"],
                data["type"],
                data.get("address"),
                data.get("notes"),
                data["status"],
                data["items"],
                data["item_count"],
                data["subtotal"],
                data["total"],
            )
        except UniqueViolationError:
            raise DuplicateShortIdError(data["short_id"])
        return Order.model_validate(dict(row))

    async def get(self, key: str) -> Order | None:
        """Look up by shortId (any letter case) or by internal id."""
        row = await self.pool.fetchrow(
            "SELECT * FROM orders WHERE short_id = ANY($1::text[]) OR id::text = $2 LIMIT 1;",
            _key_variants(key),
            key,
        )
        return Order.model_validate(dict(row)) if row else None

    async def list(self, limit: int = 200) -> list[Order]:
        rows = await self.pool.fetch(
            "SELECT * FROM orders ORDER BY created_at DESC LIMIT $1;",
            limit,
        )
        return [Order.model_validate(dict(r)) for r in rows]

    async def apply_transition(
        self,
        key: str,
        target: str,
        *,
        now: datetime | None = None,
        enforce_forward: bool = True,
        expected_version: int | None = None,
    ) -> Order:
        """
        Move one order to `target` in a single transaction.
        - SELECT ... FOR UPDATE so concurrent transitions on the same order serialise.
        - Optional compare-and-swap on `version`.
        - One UPDATE keyed by internal id writes status, the stage timestamp and version + 1.
        Raises OrderNotFoundError, VersionConflictError, InvalidStatusError, InvalidTransitionError.
        """
        now = now or datetime.now(timezone.utc)
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    SELECT * FROM orders
                    WHERE short_id = ANY($1::text[]) OR id::text = $2
                    LIMIT 1
                    FOR UPDATE;
                    """,
                    _key_variants(key),
                    key,
                )
                if row is None:
                    raise OrderNotFoundError()
                current = dict(row)
                if expected_version is not None and current["version"] != expected_version:
                    raise VersionConflictError(expected_version, current["version"])

                updates = plan_transition(current, target, now, enforce_forward)
                # column names come from order_state, never from the caller
                assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(updates, start=2))
                updated = await conn.fetchrow(
                    f"""
                    UPDATE orders SET {assignments}, version = version + 1, updated_at = NOW()
                    WHERE id = $1
                    RETURNING *;
                    """,
                    current["id"],
                    *updates.values(),
                )
        return Order.model_validate(dict(updated))


async def get_store() -> OrderStore:
    global _store
    if _store is None:
        _store = OrderStore(await get_pool())
    return _store
