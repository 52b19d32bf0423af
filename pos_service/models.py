from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from .order_status import ItemStatus, OrderStatus, Priority


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def pick_field(payload: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    # The backend returns camelCase, older rows come back lower-cased.
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


@dataclass(frozen=True)
class OrderItem:
    id: str
    name: str
    quantity: int
    price: float
    category: str = ""
    status: ItemStatus = "pending"
    prep_time: Optional[int] = None
    notes: Optional[str] = None
    menu_item_id: Optional[str] = None
    order_id: Optional[str] = None
    order_number: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "OrderItem":
        return cls(
            id=str(payload["id"]),
            name=payload.get("name", ""),
            quantity=int(payload.get("quantity", 1)),
            price=float(payload.get("price", 0.0)),
            category=payload.get("category", ""),
            status=payload.get("status") or "pending",
            prep_time=pick_field(payload, "prepTime", "preptime"),
            notes=payload.get("notes"),
            menu_item_id=pick_field(payload, "menuItemId", "menu_item_id"),
            order_id=pick_field(payload, "orderId", "orderid"),
            order_number=pick_field(payload, "orderNumber", "ordernumber"),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "quantity": self.quantity,
            "price": self.price,
            "category": self.category,
            "status": self.status,
            "prepTime": self.prep_time,
            "notes": self.notes,
            "menuItemId": self.menu_item_id,
            "orderId": self.order_id,
            "orderNumber": self.order_number,
        }


@dataclass(frozen=True)
class OrderDraft:
    order_number: str
    items: Tuple[OrderItem, ...]
    total: float
    order_type: str = "dine-in"
    payment_method: str = "cash"
    table_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_refused: bool = False
    estimated_time: Optional[int] = None
    chef_notes: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "orderNumber": self.order_number,
            "items": [item.to_payload() for item in self.items],
            "total": self.total,
            "orderType": self.order_type,
            "paymentMethod": self.payment_method,
            "tableNumber": self.table_number,
            "customerName": self.customer_name,
            "customerRefused": self.customer_refused,
            "estimatedTime": self.estimated_time,
            "chefNotes": self.chef_notes,
        }


@dataclass(frozen=True)
class Order:
    id: str
    order_number: str
    items: Tuple[OrderItem, ...]
    total: float
    order_type: str
    payment_method: str
    status: OrderStatus = "pending"
    priority: Priority = "normal"
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    table_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_refused: bool = False
    estimated_time: Optional[int] = None
    chef_notes: Optional[str] = None

    @classmethod
    def from_draft(cls, order_id: str, draft: OrderDraft) -> "Order":
        return cls(
            id=order_id,
            order_number=draft.order_number,
            items=tuple(draft.items),
            total=draft.total,
            order_type=draft.order_type,
            payment_method=draft.payment_method,
            table_number=draft.table_number,
            customer_name=draft.customer_name,
            customer_refused=draft.customer_refused,
            estimated_time=draft.estimated_time,
            chef_notes=draft.chef_notes,
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Order":
        now = utc_now_iso()
        return cls(
            id=str(payload["id"]),
            order_number=str(pick_field(payload, "orderNumber", "ordernumber", default="")),
            items=tuple(OrderItem.from_payload(item) for item in payload.get("items") or ()),
            total=float(payload.get("total", 0.0)),
            order_type=pick_field(payload, "orderType", "ordertype", default="dine-in"),
            payment_method=pick_field(payload, "paymentMethod", "paymentmethod", default=""),
            status=payload.get("status") or "pending",
            priority=payload.get("priority") or "normal",
            created_at=pick_field(payload, "createdAt", "createdat", default=now),
            updated_at=pick_field(payload, "updatedAt", "updatedat", default=now),
            table_number=pick_field(payload, "tableNumber", "tablenumber"),
            customer_name=pick_field(payload, "customerName", "customername"),
            customer_refused=bool(pick_field(payload, "customerRefused", "customerrefused", default=False)),
            estimated_time=pick_field(payload, "estimatedTime", "estimatedtime"),
            chef_notes=pick_field(payload, "chefNotes", "chefnotes"),
        )
