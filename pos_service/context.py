from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .backend_client import BackendClient
from .config import Settings, load_settings
from .connectivity import ConnectivityMonitor
from .database import get_connection, queue_connection_factory
from .events import EventBus, Notifier, TerminalBell
from .hardware import SimulatedBarcodeScanner, SimulatedCashDrawer, SimulatedReceiptPrinter
from .integration import IntegrationFacade
from .inventory import InventoryDeductionCoordinator
from .order_store import OrderStore
from .refunds import RefundWorkflow
from .sales import SalesArchive
from .transactions import TransactionLogger
from .write_queue import QueueRepository, ResilientWriteQueue

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Owns every service object of one POS terminal process."""

    settings: Settings
    backend: BackendClient
    connectivity: ConnectivityMonitor
    events: EventBus
    write_queue: ResilientWriteQueue
    transactions: TransactionLogger
    sales: SalesArchive
    orders: OrderStore
    refunds: RefundWorkflow
    inventory: InventoryDeductionCoordinator
    integration: IntegrationFacade

    async def start(self) -> None:
        await asyncio.to_thread(self.inventory.init_schema)
        await self.connectivity.check()
        await self.integration.initialize()
        await self.orders.load_orders()
        self.write_queue.start()
        self.integration.start_health_monitoring()
        logger.info("POS service context started")

    async def close(self) -> None:
        await self.integration.stop_health_monitoring()
        await self.write_queue.stop()
        await self.backend.aclose()
        logger.info("POS service context closed")


def build_context(
    settings: Optional[Settings] = None,
    backend: Optional[BackendClient] = None,
    inventory_connection_factory=get_connection,
    notifier: Optional[Notifier] = None,
) -> AppContext:
    settings = settings or load_settings()
    backend = backend or BackendClient(settings.backend_url, write_timeout=settings.request_timeout)
    connectivity = ConnectivityMonitor(probe=backend.health)
    events = EventBus()
    notifier = notifier or TerminalBell()

    write_queue = ResilientWriteQueue(
        backend,
        QueueRepository(queue_connection_factory(settings.queue_db_path)),
        connectivity,
        max_retries=settings.queue_max_retries,
        drain_interval=settings.queue_drain_interval,
    )
    transactions = TransactionLogger(backend, write_queue)
    sales = SalesArchive(backend)
    orders = OrderStore(backend, events, notifier, sales)
    cash_drawer = SimulatedCashDrawer()
    refunds = RefundWorkflow(backend, settings.refund_policy, cash_drawer, transactions)
    inventory = InventoryDeductionCoordinator(inventory_connection_factory)
    integration = IntegrationFacade(
        settings=settings.integration,
        cash_drawer=cash_drawer,
        printer=SimulatedReceiptPrinter(),
        scanner=SimulatedBarcodeScanner(),
        orders=orders,
        refunds=refunds,
        inventory=inventory,
        sales=sales,
        transactions=transactions,
        events=events,
        notifier=notifier,
    )
    return AppContext(
        settings=settings,
        backend=backend,
        connectivity=connectivity,
        events=events,
        write_queue=write_queue,
        transactions=transactions,
        sales=sales,
        orders=orders,
        refunds=refunds,
        inventory=inventory,
        integration=integration,
    )
