from unittest.mock import patch

import pytest

from conftest import order_body
from orderline.config import settings
from orderline.errors import DuplicateShortIdError, OrderlineError, OrderNotFoundError
from orderline.orders import build_order_row, generate_short_id, get_snapshot, insert_with_short_id


def test_short_id_format():
    short_id = generate_short_id()
    assert short_id.startswith("ALP-")
    assert len(short_id) == 10
    assert short_id[4:] == short_id[4:].upper()
    assert generate_short_id(prefix="TST").startswith("TST-")


def test_build_order_row_computes_totals():
    row = build_order_row(order_body(name="  Maria Lopez "), "ALP-000001")
    assert row["name"] == "Maria Lopez"
    assert row["status"] == "received"
    assert [i["subtotal"] for i in row["items"]] == [10.99, 7.0]
    assert row["item_count"] == 3
    assert row["subtotal"] == 17.99
    assert row["total"] == 17.99


async def test_duplicate_short_id_is_regenerated(store):
    await store.insert(build_order_row(order_body(), "ALP-AAAAAA"))
    with patch("orderline.orders.generate_short_id", side_effect=["ALP-AAAAAA", "ALP-BBBBBB"]):
        order = await insert_with_short_id(store, lambda sid: build_order_row(order_body(), sid))
    assert order.short_id == "ALP-BBBBBB"


async def test_gives_up_after_repeated_collisions(store, monkeypatch):
    monkeypatch.setattr(settings, "short_id_attempts", 2)
    await store.insert(build_order_row(order_body(), "ALP-AAAAAA"))
    with patch("orderline.orders.generate_short_id", return_value="ALP-AAAAAA"):
        with pytest.raises(OrderlineError) as exc:
            await insert_with_short_id(store, lambda sid: build_order_row(order_body(), sid))
    assert not isinstance(exc.value, DuplicateShortIdError)
    assert len(store.rows) == 1


async def test_snapshot_by_internal_id(store, scenario_order):
    snapshot = await get_snapshot(store, str(scenario_order.id))
    assert snapshot.short_id == scenario_order.short_id


@pytest.mark.parametrize("key", ["", "   ", "ALP-FFFFFF"])
async def test_snapshot_not_found(store, scenario_order, key):
    with pytest.raises(OrderNotFoundError):
        await get_snapshot(store, key)
