"""
Order lifecycle state machine. The status set is closed; terminal states absorb.
"""
from collections.abc import Mapping
from datetime import datetime

from orderline.errors import InvalidStatusError, InvalidTransitionError

RECEIVED = "received"
CONFIRMED = "confirmed"
PREPARING = "preparing"
READY = "ready"
OUT_FOR_DELIVERY = "out_for_delivery"
COMPLETED = "completed"
CANCELED = "canceled"

# Progress order shown on the stepper; canceled is not a position on it
STATUS_SEQUENCE: tuple[str, ...] = (
    RECEIVED,
    CONFIRMED,
    PREPARING,
    READY,
    OUT_FOR_DELIVERY,
    COMPLETED,
)
STATUSES: tuple[str, ...] = STATUS_SEQUENCE + (CANCELED,)
TERMINAL_STATUSES = frozenset({COMPLETED, CANCELED})

# Status -> stage timestamp column written when the order reaches it
STAGE_TIMESTAMP_FIELDS: dict[str, str | None] = {
    RECEIVED: None,
    CONFIRMED: "confirmed_at",
    PREPARING: "prepared_at",
    READY: "ready_at",
    OUT_FOR_DELIVERY: "out_for_delivery_at",
    COMPLETED: "completed_at",
    CANCELED: None,
}

# Current status -> allowed next status (forward-only, stages may be skipped)
VALID_TRANSITIONS: dict[str, list[str]] = {
    status: ([] if status in TERMINAL_STATUSES else [*STATUS_SEQUENCE[i + 1:], CANCELED])
    for i, status in enumerate(STATUS_SEQUENCE)
}
VALID_TRANSITIONS[CANCELED] = []


def validate_status(value: object) -> str:
    """Return value if it is one of the seven statuses, else raise InvalidStatusError."""
    if not isinstance(value, str) or value not in STATUSES:
        raise InvalidStatusError()
    return value


def is_valid_transition(current_state: str, target: str, enforce_forward: bool = True) -> bool:
    """True if target is allowed after current_state."""
    if current_state in TERMINAL_STATUSES:
        return False
    if not enforce_forward:
        return target in STATUSES
    return target in VALID_TRANSITIONS.get(current_state, [])


def plan_transition(
    order: Mapping,
    target: str,
    now: datetime,
    enforce_forward: bool = True,
) -> dict:
    """
    Column updates for moving `order` to `target`.
    Stage timestamps are only written when not already present, so a stage keeps
    the time it was first reached.
    """
    validate_status(target)
    current = order["status"]
    if not is_valid_transition(current, target, enforce_forward):
        raise InvalidTransitionError(current_state=current, target=target)

    updates: dict = {"status": target}
    ts_field = STAGE_TIMESTAMP_FIELDS[target]
    if ts_field and order.get(ts_field) is None:
        updates[ts_field] = now
    return updates


def progress_index(status: str) -> int | None:
    """Position of status in STATUS_SEQUENCE; None for canceled."""
    if status == CANCELED:
        return None
    return STATUS_SEQUENCE.index(validate_status(status))
