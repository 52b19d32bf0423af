from __future__ import annotations

import asyncio

import pytest

from pos_service.database import INVENTORY_SCHEMA_SQL, apply_schema, connect_sqlite
from pos_service.inventory import (
    InventoryDeductionCoordinator,
    InventoryDeductionError,
    InventoryDeductionItem,
)


@pytest.fixture()
def connection_factory(tmp_path):
    db_path = str(tmp_path / "inventory.db")

    def factory():
        return connect_sqlite(db_path)

    conn = factory()
    apply_schema(conn, INVENTORY_SCHEMA_SQL)
    conn.executemany(
        "INSERT INTO inventory (id, name, quantity, unit) VALUES (?, ?, ?, ?);",
        [
            ("inv-x", "Flour", 100, "g"),
            ("inv-y", "Cheese", 50, "g"),
            ("inv-b", "Soda", 24, "can"),
        ],
    )
    conn.executemany(
        "INSERT INTO recipe_ingredients (menu_item_id, inventory_item_id, quantity, unit) "
        "VALUES (?, ?, ?, ?);",
        [
            ("menu-a", "inv-x", 1, "g"),
            ("menu-a", "inv-y", 2, "g"),
        ],
    )
    conn.commit()
    conn.close()
    return factory


def stock(factory):
    conn = factory()
    try:
        rows = conn.execute("SELECT id, quantity FROM inventory;").fetchall()
        return {row["id"]: row["quantity"] for row in rows}
    finally:
        conn.close()


def test_recipe_and_direct_deductions(connection_factory):
    coordinator = InventoryDeductionCoordinator(connection_factory)
    items = [
        InventoryDeductionItem(item_name="Pizza", quantity=3, menu_item_id="menu-a"),
        InventoryDeductionItem(item_name="Soda", quantity=5, menu_item_id="menu-b"),
        InventoryDeductionItem(item_name="Tap Water", quantity=2),
    ]

    applied = asyncio.run(coordinator.deduct_ingredients_for_order("order-1", items))

    assert stock(connection_factory) == {"inv-x": 97, "inv-y": 44, "inv-b": 19}
    assert [(d.inventory_item_id, d.quantity, d.source) for d in applied] == [
        ("inv-x", 3, "recipe"),
        ("inv-y", 6, "recipe"),
        ("inv-b", 5, "direct"),
    ]


def test_empty_order_is_a_no_op(connection_factory):
    coordinator = InventoryDeductionCoordinator(connection_factory)

    assert asyncio.run(coordinator.deduct_ingredients_for_order("order-2", [])) == []
    assert stock(connection_factory) == {"inv-x": 100, "inv-y": 50, "inv-b": 24}


def test_failure_rolls_back_whole_order(connection_factory):
    class BrokenCoordinator(InventoryDeductionCoordinator):
        def _decrement(self, conn, inventory_item_id, amount):
            if inventory_item_id == "inv-b":
                raise RuntimeError("disk full")
            super()._decrement(conn, inventory_item_id, amount)

    coordinator = BrokenCoordinator(connection_factory)
    items = [
        InventoryDeductionItem(item_name="Pizza", quantity=3, menu_item_id="menu-a"),
        InventoryDeductionItem(item_name="Soda", quantity=5),
    ]

    with pytest.raises(InventoryDeductionError, match="rolled back"):
        asyncio.run(coordinator.deduct_ingredients_for_order("order-3", items))
    assert stock(connection_factory) == {"inv-x": 100, "inv-y": 50, "inv-b": 24}
