from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from .backend_client import BackendError, OrderApi
from .events import ORDERS_REVERTED, ORDERS_UPDATED, EventBus, Notifier
from .models import Order, OrderDraft, utc_now_iso
from .order_status import (
    ALERT_ITEM_STATUSES,
    derive_order_status,
    validate_item_status,
    validate_order_status,
    validate_priority,
)
from .sales import RecentKeys, SaleRecord, SalesArchive

logger = logging.getLogger(__name__)

CompletionListener = Callable[[Order], Awaitable[None]]


class OrderNotFound(LookupError):
    """Raised when an order or order item is not in the local projection."""


class OrderStore:
    """Client-side projection of kitchen orders.

    Mutations are applied optimistically and confirmed against the order API,
    which stays the system of record. A failed item-status confirmation is
    rolled back by reloading the whole collection.
    """

    def __init__(
        self,
        api: OrderApi,
        events: EventBus,
        notifier: Notifier,
        sales_archive: SalesArchive,
    ):
        self._api = api
        self._events = events
        self._notifier = notifier
        self._sales = sales_archive
        self._orders: List[Order] = []
        self._completion_listeners: List[CompletionListener] = []
        self._completed = RecentKeys()

    @property
    def orders(self) -> List[Order]:
        return list(self._orders)

    def get_order_by_id(self, order_id: str) -> Optional[Order]:
        for order in self._orders:
            if order.id == order_id:
                return order
        return None

    def _require(self, order_id: str) -> Order:
        order = self.get_order_by_id(order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    def _replace(self, updated: Order, previous_id: str | None = None) -> None:
        target = previous_id or updated.id
        self._orders = [updated if order.id == target else order for order in self._orders]

    def _broadcast(self) -> None:
        self._events.publish(ORDERS_UPDATED, self.orders)

    def on_completed(self, listener: CompletionListener) -> None:
        """Register a coroutine run once per order number when it first completes."""
        self._completion_listeners.append(listener)

    async def load_orders(self) -> bool:
        try:
            rows = await self._api.list_orders()
        except BackendError as exc:
            logger.error("Failed to load orders: %s", exc)
            return False
        self._orders = [Order.from_payload(row) for row in rows]
        self._broadcast()
        return True

    async def refresh_orders(self) -> bool:
        return await self.load_orders()

    async def add_order(self, draft: OrderDraft) -> Order:
        temp_id = f"temp-{uuid.uuid4().hex[:12]}"
        order = Order.from_draft(temp_id, draft)
        self._orders.insert(0, order)
        self._broadcast()

        try:
            created = await self._api.create_order(draft.to_payload())
        except BackendError as exc:
            # The order stays visible under its temporary id.
            logger.error("Failed to create order %s: %s", draft.order_number, exc)
            return order

        current = self.get_order_by_id(temp_id)
        if current is None:
            return order
        confirmed = replace(current, id=str(created["id"]))
        self._replace(confirmed, previous_id=temp_id)
        self._broadcast()
        return confirmed

    async def update_item_status(self, order_id: str, item_id: str, status: str) -> bool:
        validate_item_status(status)
        order = self._require(order_id)
        if not any(item.id == item_id for item in order.items):
            raise OrderNotFound(f"Item {item_id} not found in order {order_id}")

        items = tuple(
            replace(item, status=status) if item.id == item_id else item for item in order.items
        )
        new_status = derive_order_status(order.status, (item.status for item in items))
        updated = replace(order, items=items, status=new_status, updated_at=utc_now_iso())
        self._replace(updated)
        self._broadcast()
        if status in ALERT_ITEM_STATUSES:
            self._notifier.play_alert()

        try:
            await self._api.update_order_item(item_id, status)
            if new_status != order.status:
                await self._api.update_order(order_id, {"status": new_status})
        except BackendError as exc:
            logger.error("Failed to update item %s status, reverting: %s", item_id, exc)
            await self.load_orders()
            self._events.publish(
                ORDERS_REVERTED,
                {"orderId": order_id, "itemId": item_id, "message": "Changes reverted"},
            )
            return False

        if new_status == "completed" and order.status != "completed":
            await self._order_completed(updated)
        return True

    async def update_order_status(self, order_id: str, status: str) -> Order:
        validate_order_status(status)
        order = self._require(order_id)
        updated = replace(
            order,
            status=status,
            updated_at=utc_now_iso(),
            estimated_time=0 if status in ("ready", "completed") else order.estimated_time,
        )
        self._replace(updated)
        self._broadcast()

        try:
            await self._api.update_order(order_id, {"status": status})
        except BackendError as exc:
            logger.error("Failed to update order %s status: %s", order_id, exc)

        if status == "completed" and order.status != "completed":
            await self._order_completed(updated)
        return updated

    async def _order_completed(self, order: Order) -> None:
        if order.order_number in self._completed:
            return
        self._completed.add(order.order_number)
        await self._archive(order)
        for listener in list(self._completion_listeners):
            try:
                await listener(order)
            except Exception:
                logger.exception("Completion listener failed for order %s", order.order_number)

    async def _archive(self, order: Order) -> None:
        sale = SaleRecord(
            id=order.id,
            order_number=order.order_number,
            items=order.items,
            total=order.total,
            order_type=order.order_type,
            payment_method=order.payment_method,
            table_number=order.table_number,
            customer_name=order.customer_name,
            customer_refused=order.customer_refused,
        )
        try:
            await self._sales.archive(sale)
        except BackendError as exc:
            logger.error("Failed to archive order %s: %s", order.order_number, exc)

    async def update_order_priority(self, order_id: str, priority: str) -> None:
        validate_priority(priority)
        order = self._require(order_id)
        self._replace(replace(order, priority=priority, updated_at=utc_now_iso()))
        self._broadcast()
        try:
            await self._api.update_order(order_id, {"priority": priority})
        except BackendError as exc:
            logger.error("Failed to update priority of order %s: %s", order_id, exc)

    async def update_order_notes(self, order_id: str, notes: str) -> None:
        order = self._require(order_id)
        self._replace(replace(order, chef_notes=notes, updated_at=utc_now_iso()))
        self._broadcast()
        try:
            await self._api.update_order(order_id, {"chefNotes": notes})
        except BackendError as exc:
            logger.error("Failed to update chef notes of order %s: %s", order_id, exc)

    def get_orders_by_client(self) -> Dict[str, List[Order]]:
        groups: Dict[str, List[Order]] = {}
        for order in self._orders:
            if order.order_type == "dine-in":
                key = f"Table {order.table_number}"
            else:
                key = order.customer_name or "Unknown Customer"
            groups.setdefault(key, []).append(order)
        return groups

    def prune_completed(
        self, max_age: timedelta = timedelta(hours=24), now: datetime | None = None
    ) -> int:
        cutoff = (now or datetime.now(timezone.utc)) - max_age
        active = [
            order
            for order in self._orders
            if order.status != "completed" or _parse_timestamp(order.updated_at) > cutoff
        ]
        removed = len(self._orders) - len(active)
        if removed:
            self._orders = active
            self._broadcast()
        return removed


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
