"""Aggregate order status derived from the statuses of its line items."""

from __future__ import annotations

from typing import Iterable, Literal, Tuple

OrderStatus = Literal["pending", "in-progress", "ready", "completed"]
ItemStatus = Literal["pending", "preparing", "ready", "served"]
Priority = Literal["low", "normal", "high", "urgent"]

ORDER_STATUSES: Tuple[str, ...] = ("pending", "in-progress", "ready", "completed")
ITEM_STATUSES: Tuple[str, ...] = ("pending", "preparing", "ready", "served")
PRIORITIES: Tuple[str, ...] = ("low", "normal", "high", "urgent")

# Item statuses that ring the kitchen alert.
ALERT_ITEM_STATUSES = frozenset({"ready", "served"})

_RANK = {status: rank for rank, status in enumerate(ORDER_STATUSES)}


class InvalidStatus(ValueError):
    """Raised for a status outside the known vocabulary."""


def validate_item_status(status: str) -> ItemStatus:
    if status not in ITEM_STATUSES:
        raise InvalidStatus(f"Invalid item status: {status!r}")
    return status  # type: ignore[return-value]


def validate_order_status(status: str) -> OrderStatus:
    if status not in ORDER_STATUSES:
        raise InvalidStatus(f"Invalid order status: {status!r}")
    return status  # type: ignore[return-value]


def validate_priority(priority: str) -> Priority:
    if priority not in PRIORITIES:
        raise InvalidStatus(f"Invalid priority: {priority!r}")
    return priority  # type: ignore[return-value]


def derive_order_status(current: OrderStatus, item_statuses: Iterable[str]) -> OrderStatus:
    """Return the aggregate status for ``current`` given its items.

    The result only ever moves forward: a candidate that ranks below
    ``current`` leaves it unchanged. Orders without items keep their status.
    """
    statuses = list(item_statuses)
    if not statuses:
        return current

    if all(status == "served" for status in statuses):
        candidate: OrderStatus = "completed"
    elif all(status in ("ready", "served") for status in statuses):
        candidate = "ready"
    elif current == "pending" and any(status in ("preparing", "ready") for status in statuses):
        candidate = "in-progress"
    else:
        return current

    if _RANK[candidate] > _RANK[current]:
        return candidate
    return current
