from __future__ import annotations

import itertools
from typing import Any, Dict, List

import pytest

from pos_service.backend_client import BackendError, NetworkFailure
from pos_service.config import RefundPolicy
from pos_service.connectivity import ConnectivityMonitor
from pos_service.database import queue_connection_factory
from pos_service.events import EventBus
from pos_service.hardware import SimulatedCashDrawer
from pos_service.order_store import OrderStore
from pos_service.refunds import RefundWorkflow
from pos_service.sales import SalesArchive
from pos_service.transactions import TransactionLogger
from pos_service.write_queue import QueueRepository, ResilientWriteQueue


class FakeBackend:
    """In-memory stand-in for the order, refund, ledger and sales APIs."""

    def __init__(self):
        self.orders: List[Dict[str, Any]] = []
        self.refunds: Dict[str, Dict[str, Any]] = {}
        self.transactions: List[Dict[str, Any]] = []
        self.alerts: List[Dict[str, Any]] = []
        self.sales: List[Dict[str, Any]] = []
        self.sent: List[tuple] = []
        self.order_updates: List[tuple] = []
        self.item_updates: List[tuple] = []
        self.healthy = True
        self.fail_order_writes = False
        self.fail_item_writes = False
        self.fail_ledger = False
        self.fail_refund_updates = False
        self.send_failures = 0
        self.closed = False
        self._ids = itertools.count(1)

    async def aclose(self):
        self.closed = True

    async def health(self) -> bool:
        return self.healthy

    def _order(self, order_id: str) -> Dict[str, Any]:
        for order in self.orders:
            if str(order["id"]) == order_id:
                return order
        raise BackendError(f"Order {order_id} not found", status_code=404)

    async def list_orders(self):
        return [dict(order, items=[dict(item) for item in order["items"]]) for order in self.orders]

    async def create_order(self, payload):
        if self.fail_order_writes:
            raise NetworkFailure("backend offline")
        order = dict(payload, id=f"ord-{next(self._ids)}", status="pending", priority="normal")
        order["items"] = [dict(item) for item in payload["items"]]
        self.orders.insert(0, order)
        return order

    async def update_order(self, order_id, fields):
        if self.fail_order_writes:
            raise NetworkFailure("backend offline")
        self.order_updates.append((order_id, dict(fields)))
        order = self._order(order_id)
        order.update(fields)
        return order

    async def update_order_item(self, item_id, status):
        if self.fail_item_writes:
            raise NetworkFailure("backend offline")
        self.item_updates.append((item_id, status))
        for order in self.orders:
            for item in order["items"]:
                if str(item["id"]) == item_id:
                    item["status"] = status
                    return item
        raise BackendError(f"Item {item_id} not found", status_code=404)

    async def create_refund(self, payload):
        refund_id = f"ref-{next(self._ids)}"
        refund = dict(payload, id=refund_id, status="pending", requestedAt="2024-01-01T00:00:00+00:00")
        self.refunds[refund_id] = refund
        return dict(refund)

    async def update_refund(self, refund_id, fields):
        if self.fail_refund_updates:
            raise NetworkFailure("backend offline")
        if refund_id not in self.refunds:
            raise BackendError(f"Refund {refund_id} not found", status_code=404)
        self.refunds[refund_id].update(fields)
        return dict(self.refunds[refund_id])

    async def list_refunds(self, refund_id=None, order_id=None, status=None):
        rows = list(self.refunds.values())
        if refund_id:
            rows = [row for row in rows if row["id"] == refund_id]
        if order_id:
            rows = [row for row in rows if row.get("orderId") == order_id]
        if status:
            rows = [row for row in rows if row.get("status") == status]
        return [dict(row) for row in rows]

    async def append_transaction(self, payload):
        if self.fail_ledger:
            raise NetworkFailure("ledger offline")
        self.transactions.append(dict(payload))
        return {}

    async def send_alert(self, payload):
        if self.fail_ledger:
            raise NetworkFailure("ledger offline")
        self.alerts.append(dict(payload))
        return {}

    async def list_sales(self):
        return [dict(sale) for sale in self.sales]

    async def add_sale(self, payload):
        self.sales.append(dict(payload))
        return dict(payload)

    async def send(self, target, method, body):
        if self.send_failures:
            self.send_failures -= 1
            raise NetworkFailure("still unreachable")
        self.sent.append((target, method, body))
        return {}


class RecordingNotifier:
    def __init__(self):
        self.alerts = 0

    def play_alert(self):
        self.alerts += 1


def order_payload(order_id, number, item_statuses=("pending",), order_type="dine-in", **extra):
    payload = {
        "id": order_id,
        "orderNumber": number,
        "items": [
            {
                "id": f"{order_id}-item-{index}",
                "name": f"Dish {index}",
                "quantity": 1,
                "price": 10.0,
                "status": status,
            }
            for index, status in enumerate(item_statuses)
        ],
        "total": 10.0 * len(item_statuses),
        "orderType": order_type,
        "paymentMethod": "cash",
        "status": "pending",
        "priority": "normal",
    }
    payload.update(extra)
    return payload


@pytest.fixture()
def backend():
    return FakeBackend()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def events():
    return EventBus()


@pytest.fixture()
def connectivity():
    return ConnectivityMonitor(online=True)


@pytest.fixture()
def queue_factory(tmp_path):
    return queue_connection_factory(str(tmp_path / "queue.db"))


@pytest.fixture()
def write_queue(backend, connectivity, queue_factory):
    return ResilientWriteQueue(backend, QueueRepository(queue_factory), connectivity)


@pytest.fixture()
def transactions(backend, write_queue):
    return TransactionLogger(backend, write_queue)


@pytest.fixture()
def sales(backend):
    return SalesArchive(backend)


@pytest.fixture()
def store(backend, events, notifier, sales):
    return OrderStore(backend, events, notifier, sales)


@pytest.fixture()
def drawer():
    return SimulatedCashDrawer()


@pytest.fixture()
def workflow(backend, drawer, transactions):
    return RefundWorkflow(backend, RefundPolicy(), drawer, transactions)


@pytest.fixture()
def make_order():
    return order_payload
