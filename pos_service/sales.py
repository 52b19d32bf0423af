from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .backend_client import SalesApi
from .models import OrderItem, utc_now_iso

logger = logging.getLogger(__name__)

RECENT_ORDER_LIMIT = 1000


class RecentKeys:
    """Membership set that forgets its oldest keys past ``limit``."""

    def __init__(self, limit: int = RECENT_ORDER_LIMIT):
        self._limit = limit
        self._keys: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: str) -> None:
        self._keys[key] = None
        self._keys.move_to_end(key)
        while len(self._keys) > self._limit:
            self._keys.popitem(last=False)


@dataclass(frozen=True)
class SaleRecord:
    id: str
    order_number: str
    items: Sequence[OrderItem]
    total: float
    order_type: str
    payment_method: str
    order_id: Optional[str] = None
    table_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_refused: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "orderNumber": self.order_number,
            "orderId": self.order_id,
            "date": utc_now_iso(),
            "items": [item.to_payload() for item in self.items],
            "total": self.total,
            "orderType": self.order_type,
            "tableNumber": self.table_number or "",
            "customerName": "" if self.customer_refused else (self.customer_name or ""),
            "customerRefused": self.customer_refused,
            "paymentMethod": self.payment_method,
        }


class SalesArchive:
    """Appends completed orders to sales history at most once per order number."""

    def __init__(self, api: SalesApi, limit: int = RECENT_ORDER_LIMIT):
        self._api = api
        self._lock = asyncio.Lock()
        # Older order numbers fall back to the sales history lookup.
        self._archived = RecentKeys(limit)

    async def archive(self, sale: SaleRecord) -> bool:
        async with self._lock:
            if sale.order_number in self._archived:
                return False
            existing: List[dict] = await self._api.list_sales()
            if any(str(row.get("orderNumber")) == sale.order_number for row in existing):
                self._archived.add(sale.order_number)
                logger.info("Order %s already archived", sale.order_number)
                return False
            await self._api.add_sale(sale.to_payload())
            self._archived.add(sale.order_number)
            logger.info("Archived order %s to sales history", sale.order_number)
            return True
