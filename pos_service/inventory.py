from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Literal, Optional, Sequence

from .database import INVENTORY_SCHEMA_SQL, apply_schema, get_connection, placeholder

logger = logging.getLogger(__name__)


class InventoryDeductionError(Exception):
    """Raised when an order's deductions could not be committed."""


@dataclass(frozen=True)
class InventoryDeductionItem:
    item_name: str
    quantity: float
    menu_item_id: Optional[str] = None


@dataclass(frozen=True)
class AppliedDeduction:
    inventory_item_id: str
    quantity: float
    item_name: str
    source: Literal["recipe", "direct"]


class InventoryDeductionCoordinator:
    """Decrements stock for a completed order as one transaction.

    Recipe ingredients take precedence; items without a recipe fall back to an
    inventory row with the same name. Items matching neither are not tracked.
    """

    def __init__(self, connection_factory=get_connection):
        self._connection_factory = connection_factory

    @contextmanager
    def _connection(self):
        conn = self._connection_factory()
        try:
            yield conn
        finally:
            conn.close()

    def init_schema(self) -> None:
        with self._connection() as conn:
            apply_schema(conn, INVENTORY_SCHEMA_SQL)

    async def deduct_ingredients_for_order(
        self, order_id: str, items: Sequence[InventoryDeductionItem]
    ) -> List[AppliedDeduction]:
        if not items:
            logger.warning("No items provided for order %s", order_id)
            return []
        return await asyncio.to_thread(self._deduct, order_id, list(items))

    def _deduct(self, order_id: str, items: List[InventoryDeductionItem]) -> List[AppliedDeduction]:
        applied: List[AppliedDeduction] = []
        with self._connection() as conn:
            try:
                for item in items:
                    applied.extend(self._deduct_item(conn, item))
                conn.commit()
            except Exception as exc:
                conn.rollback()
                raise InventoryDeductionError(
                    f"Inventory deduction for order {order_id} rolled back: {exc}"
                ) from exc

        logger.info("Deducted %d inventory entries for order %s", len(applied), order_id)
        return applied

    def _deduct_item(self, conn, item: InventoryDeductionItem) -> List[AppliedDeduction]:
        ph = placeholder(conn)
        if item.menu_item_id:
            ingredients = conn.execute(
                f"""
                SELECT inventory_item_id, quantity, unit
                FROM recipe_ingredients
                WHERE menu_item_id = {ph};
                """,
                (item.menu_item_id,),
            ).fetchall()
            if ingredients:
                deductions = []
                for ingredient in ingredients:
                    amount = ingredient["quantity"] * item.quantity
                    self._decrement(conn, ingredient["inventory_item_id"], amount)
                    deductions.append(
                        AppliedDeduction(
                            inventory_item_id=ingredient["inventory_item_id"],
                            quantity=amount,
                            item_name=item.item_name,
                            source="recipe",
                        )
                    )
                return deductions

        row = conn.execute(
            f"SELECT id FROM inventory WHERE name = {ph} LIMIT 1;",
            (item.item_name,),
        ).fetchone()
        if row is None:
            logger.debug("Item %s is not stock-tracked, skipping", item.item_name)
            return []
        self._decrement(conn, row["id"], item.quantity)
        return [
            AppliedDeduction(
                inventory_item_id=row["id"],
                quantity=item.quantity,
                item_name=item.item_name,
                source="direct",
            )
        ]

    def _decrement(self, conn, inventory_item_id: str, amount: float) -> None:
        ph = placeholder(conn)
        conn.execute(
            f"""
            UPDATE inventory
            SET quantity = quantity - {ph},
                last_updated = {ph}
            WHERE id = {ph};
            """,
            (amount, datetime.now(timezone.utc).isoformat(), inventory_item_id),
        )
