from __future__ import annotations

import pytest

from pos_service.order_status import (
    InvalidStatus,
    derive_order_status,
    validate_item_status,
    validate_priority,
)


@pytest.mark.parametrize(
    "current, items, expected",
    [
        ("pending", ["preparing", "pending"], "in-progress"),
        ("pending", ["ready", "pending"], "in-progress"),
        ("pending", ["ready", "served"], "ready"),
        ("in-progress", ["served", "served"], "completed"),
        ("pending", ["pending"], "pending"),
        ("in-progress", ["pending"], "in-progress"),
    ],
)
def test_derive_order_status(current, items, expected):
    assert derive_order_status(current, items) == expected


def test_all_served_always_completes():
    for current in ("pending", "in-progress", "ready"):
        assert derive_order_status(current, ["served"] * 3) == "completed"


def test_derived_status_never_moves_backwards():
    assert derive_order_status("ready", ["preparing", "ready"]) == "ready"
    assert derive_order_status("completed", ["ready", "ready"]) == "completed"


def test_order_without_items_keeps_status():
    assert derive_order_status("in-progress", []) == "in-progress"


def test_unknown_values_are_rejected():
    with pytest.raises(InvalidStatus):
        validate_item_status("cooking")
    with pytest.raises(InvalidStatus):
        validate_priority("asap")
