from datetime import datetime, timedelta, timezone

import pytest

from orderline.errors import InvalidStatusError, InvalidTransitionError
from orderline.order_state import (
    STATUS_SEQUENCE,
    STATUSES,
    VALID_TRANSITIONS,
    is_valid_transition,
    plan_transition,
    progress_index,
    validate_status,
)

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def fresh(status="received", **fields) -> dict:
    order = {
        "status": status,
        "confirmed_at": None,
        "prepared_at": None,
        "ready_at": None,
        "out_for_delivery_at": None,
        "completed_at": None,
    }
    order.update(fields)
    return order


def test_status_set_is_closed():
    assert STATUSES == (
        "received", "confirmed", "preparing", "ready", "out_for_delivery", "completed", "canceled",
    )
    assert set(VALID_TRANSITIONS) == set(STATUSES)


@pytest.mark.parametrize("value", ["shipped", "", "RECEIVED", None, 3])
def test_validate_status_rejects_unknown_values(value):
    with pytest.raises(InvalidStatusError):
        validate_status(value)


@pytest.mark.parametrize("target,field", [
    ("confirmed", "confirmed_at"),
    ("preparing", "prepared_at"),
    ("ready", "ready_at"),
    ("out_for_delivery", "out_for_delivery_at"),
    ("completed", "completed_at"),
])
def test_stage_timestamp_written_for_stage(target, field):
    assert plan_transition(fresh(), target, T0) == {"status": target, field: T0}


def test_cancel_writes_no_timestamp_and_keeps_existing_ones():
    order = fresh("preparing", confirmed_at=T0, prepared_at=T0 + timedelta(minutes=2))
    updates = plan_transition(order, "canceled", T0 + timedelta(minutes=5))
    assert updates == {"status": "canceled"}


@pytest.mark.parametrize("current", [s for s in STATUSES if s not in ("completed", "canceled")])
def test_cancel_reachable_from_every_non_terminal_status(current):
    assert is_valid_transition(current, "canceled")
    assert is_valid_transition(current, "canceled", enforce_forward=False)


@pytest.mark.parametrize("enforce_forward", [True, False])
@pytest.mark.parametrize("terminal", ["completed", "canceled"])
def test_terminal_states_absorb(terminal, enforce_forward):
    for target in STATUSES:
        with pytest.raises(InvalidTransitionError) as exc:
            plan_transition(fresh(terminal), target, T0, enforce_forward)
        assert exc.value.current_state == terminal


def test_forward_only_rejects_backwards_and_repeats():
    with pytest.raises(InvalidTransitionError):
        plan_transition(fresh("ready", ready_at=T0), "received", T0, enforce_forward=True)
    with pytest.raises(InvalidTransitionError):
        plan_transition(fresh("confirmed", confirmed_at=T0), "confirmed", T0, enforce_forward=True)


def test_stages_may_be_skipped():
    assert plan_transition(fresh(), "ready", T0) == {"status": "ready", "ready_at": T0}


def test_permissive_mode_allows_backwards_without_touching_timestamps():
    order = fresh("ready", confirmed_at=T0, ready_at=T0 + timedelta(minutes=1))
    assert plan_transition(order, "received", T0 + timedelta(minutes=2), enforce_forward=False) == {"status": "received"}

    order["status"] = "received"
    later = T0 + timedelta(minutes=3)
    # reached before: first arrival time is kept
    assert plan_transition(order, "ready", later, enforce_forward=False) == {"status": "ready"}


def test_timestamps_are_monotonic_along_the_happy_path():
    order = fresh()
    now = T0
    for target in STATUS_SEQUENCE[1:]:
        now += timedelta(minutes=1)
        order.update(plan_transition(order, target, now))
    stamps = [order[f] for f in ("confirmed_at", "prepared_at", "ready_at", "out_for_delivery_at", "completed_at")]
    assert stamps == sorted(stamps)
    assert order["status"] == "completed"


def test_progress_index():
    assert [progress_index(s) for s in STATUS_SEQUENCE] == list(range(6))
    assert progress_index("canceled") is None
