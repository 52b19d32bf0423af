from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .backend_client import BackendError
from .config import IntegrationSettings
from .events import INTEGRATION, EventBus, EventSource, EventType, IntegrationEvent, Notifier
from .hardware import (
    BarcodeScanner,
    CashDrawer,
    DeviceStatus,
    HardwareError,
    Receipt,
    ReceiptLine,
    ReceiptPrinter,
)
from .inventory import InventoryDeductionCoordinator, InventoryDeductionError, InventoryDeductionItem
from .models import Order, OrderItem
from .order_store import OrderStore
from .refunds import RefundDraft, RefundWorkflow, UnsupportedMethod, ValidationError
from .sales import SaleRecord, SalesArchive
from .transactions import TransactionLog, TransactionLogger

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "card", "mobile")


@dataclass(frozen=True)
class PaymentDetails:
    amount: float
    method: str
    order_number: str
    items: Sequence[OrderItem]
    order_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_refused: bool = False
    order_type: str = "dine-in"
    table_number: Optional[str] = None


def validate_payment(payment: PaymentDetails) -> None:
    if payment.amount <= 0:
        raise ValidationError("Payment amount must be greater than zero.")
    if payment.method not in PAYMENT_METHODS:
        raise UnsupportedMethod(f"Unsupported payment method: {payment.method}")


@dataclass
class SideEffectReport:
    """Outcome of a primary operation and the side effects it triggered.

    ``recorded`` reports the primary operation; ``failures`` names the side
    effects that did not complete. A failed side effect never clears
    ``recorded``.
    """

    recorded: bool = False
    failures: List[str] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.recorded and not self.failures


@dataclass(frozen=True)
class SystemStatus:
    cash_drawer: DeviceStatus = field(default_factory=DeviceStatus)
    thermal_printer: DeviceStatus = field(default_factory=DeviceStatus)
    barcode_scanner: DeviceStatus = field(default_factory=DeviceStatus)
    refunds_enabled: bool = False
    pending_refunds: int = 0
    is_healthy: bool = False
    last_health_check: Optional[datetime] = None
    errors: Tuple[str, ...] = ()


StatusListener = Callable[[SystemStatus], None]


class IntegrationFacade:
    def __init__(
        self,
        settings: IntegrationSettings,
        cash_drawer: CashDrawer,
        printer: ReceiptPrinter,
        scanner: BarcodeScanner,
        orders: OrderStore,
        refunds: RefundWorkflow,
        inventory: InventoryDeductionCoordinator,
        sales: SalesArchive,
        transactions: TransactionLogger,
        events: EventBus,
        notifier: Notifier,
        menu_catalog: Optional[Mapping[str, Dict[str, Any]]] = None,
    ):
        self._settings = settings
        self._drawer = cash_drawer
        self._printer = printer
        self._scanner = scanner
        self._orders = orders
        self._refunds = refunds
        self._inventory = inventory
        self._sales = sales
        self._transactions = transactions
        self._events = events
        self._notifier = notifier
        self._menu_catalog = dict(menu_catalog or {})
        self._status = SystemStatus(refunds_enabled=refunds.policy.enabled)
        self._status_listeners: List[StatusListener] = []
        self._health_task: Optional[asyncio.Task] = None
        self._initialized = False
        orders.on_completed(self._order_completed)

    @property
    def status(self) -> SystemStatus:
        return self._status

    def on_event(self, listener: Callable[[IntegrationEvent], None]) -> Callable[[], None]:
        return self._events.subscribe(INTEGRATION, listener)

    def on_status_change(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def _emit(self, type_: EventType, source: EventSource, data: Any) -> None:
        self._events.publish(INTEGRATION, IntegrationEvent(type=type_, source=source, data=data))

    def _set_status(self, **changes) -> None:
        self._status = replace(self._status, **changes)
        for listener in list(self._status_listeners):
            listener(self._status)

    async def initialize(self) -> bool:
        if self._initialized:
            return True

        devices = (
            ("cash_drawer", self._settings.cash_drawer_enabled, self._drawer),
            ("thermal_printer", self._settings.printer_enabled, self._printer),
            ("barcode_scanner", self._settings.scanner_enabled, self._scanner),
        )
        for name, enabled, device in devices:
            if not enabled:
                continue
            device.on_status_change(self._device_listener(name))
            try:
                connected = await device.connect()
            except HardwareError as exc:
                logger.error("Failed to initialize %s: %s", name, exc)
                self._set_status(**{name: replace(getattr(self._status, name), error=str(exc))})
                continue
            if connected:
                self._emit("hardware_connected", name, {"device": name})

        if self._settings.scanner_enabled:
            self._scanner.on_barcode(
                lambda barcode: self._emit("barcode_scanned", "barcode_scanner", {"barcode": barcode})
            )

        self._initialized = True
        self._emit("hardware_connected", "system", {"message": "All hardware services initialized"})
        return True

    def _device_listener(self, name: str) -> Callable[[DeviceStatus], None]:
        def listener(status: DeviceStatus) -> None:
            self._set_status(**{name: status})

        return listener

    async def process_payment(self, payment: PaymentDetails) -> SideEffectReport:
        validate_payment(payment)
        report = SideEffectReport()
        await self._transactions.log_transaction(
            TransactionLog(
                id=f"PAY-{payment.order_number}",
                type="payment",
                order_id=payment.order_id or payment.order_number,
                amount=payment.amount,
                status="success",
                metadata={"provider": payment.method},
                payment_method=payment.method,
                customer_id=payment.customer_name,
            )
        )
        report.recorded = True

        steps: List[Tuple[str, Callable[[], Awaitable[None]]]] = []
        if payment.method == "cash" and self._settings.cash_drawer_enabled:
            steps.append(("cash_drawer", self._drawer.open))
        if self._settings.printer_enabled:
            steps.append(("receipt", lambda: self._print_receipt(payment)))
        if self._settings.sound_enabled:
            steps.append(("sound", self._play_sound))
        steps.append(("payment_event", lambda: self._announce_payment(payment)))
        steps.append(("sales_archive", lambda: self._archive_payment(payment)))

        for name, step in steps:
            try:
                await step()
            except Exception as exc:
                report.failures.append(name)
                await self._side_effect_failed(payment, name, exc)
        return report

    async def _print_receipt(self, payment: PaymentDetails) -> None:
        tax = round(payment.amount * (self._settings.tax_rate / 100), 2)
        receipt = Receipt(
            order_number=payment.order_number,
            order_id=payment.order_id,
            lines=[ReceiptLine(item.name, item.quantity, item.price) for item in payment.items],
            subtotal=payment.amount,
            tax=tax,
            total=payment.amount,
            payment_method=payment.method,
            customer_name="" if payment.customer_refused else (payment.customer_name or ""),
            business_name=self._settings.business_name,
            business_address=self._settings.business_address,
            business_phone=self._settings.business_phone,
        )
        await self._printer.print_receipt(receipt)
        self._emit("receipt_printed", "thermal_printer", {"orderNumber": payment.order_number})

    async def _play_sound(self) -> None:
        self._notifier.play_alert()

    async def _announce_payment(self, payment: PaymentDetails) -> None:
        self._emit("payment_processed", "system", payment)

    async def _archive_payment(self, payment: PaymentDetails) -> None:
        await self._sales.archive(
            SaleRecord(
                id=f"sale-{payment.order_number}",
                order_number=payment.order_number,
                order_id=payment.order_id,
                items=payment.items,
                total=payment.amount,
                order_type=payment.order_type or "dine-in",
                payment_method=payment.method,
                table_number=payment.table_number,
                customer_name=payment.customer_name,
                customer_refused=payment.customer_refused,
            )
        )

    async def _side_effect_failed(self, payment: PaymentDetails, step: str, exc: Exception) -> None:
        logger.warning("Payment side effect %s failed for order %s: %s", step, payment.order_number, exc)
        await self._transactions.log_transaction(
            TransactionLog(
                id=f"FAIL-{payment.order_number}-{int(time.time() * 1000)}",
                type="payment",
                order_id=payment.order_number,
                amount=payment.amount,
                status="failed",
                metadata={"error": str(exc), "step": step, "provider": payment.method},
                payment_method=payment.method,
                customer_id=payment.customer_name,
            )
        )
        self._emit("error", "system", {"error": str(exc), "context": "payment_processing", "step": step})

    async def complete_order(self, order_id: str) -> SideEffectReport:
        failed: List[IntegrationEvent] = []

        def collect(event: IntegrationEvent) -> None:
            if event.type != "error":
                return
            if event.data.get("context") == "inventory_deduction" and event.data.get("orderId") == order_id:
                failed.append(event)

        unsubscribe = self.on_event(collect)
        try:
            await self._orders.update_order_status(order_id, "completed")
        finally:
            unsubscribe()

        report = SideEffectReport(recorded=True)
        if failed:
            report.failures.append("inventory")
        return report

    async def _order_completed(self, order: Order) -> None:
        items = [
            InventoryDeductionItem(item_name=item.name, quantity=item.quantity, menu_item_id=item.menu_item_id)
            for item in order.items
        ]
        try:
            await self._inventory.deduct_ingredients_for_order(order.id, items)
        except InventoryDeductionError as exc:
            logger.error("Inventory deduction failed for order %s: %s", order.order_number, exc)
            self._emit(
                "error",
                "system",
                {"error": str(exc), "context": "inventory_deduction", "orderId": order.id},
            )

    async def process_refund(
        self,
        order_number: str,
        amount: float,
        reason: str,
        payment_method: str,
        requested_by: str,
        customer_name: str = "Customer",
        original_amount: float | None = None,
    ) -> bool:
        draft = RefundDraft(
            order_id=f"order_{order_number}",
            order_number=order_number,
            customer_name=customer_name,
            original_amount=original_amount if original_amount is not None else amount,
            refund_amount=amount,
            payment_method=payment_method,
            reason=reason,
            authorized_by=requested_by,
            requested_by=requested_by,
        )
        try:
            refund = await self._refunds.create_refund_request(draft)
        except Exception as exc:
            logger.error("Failed to process refund for order %s: %s", order_number, exc)
            self._emit("error", "refund_service", {"error": str(exc), "orderNumber": order_number})
            raise

        if refund.status in ("approved", "completed"):
            self._emit("refund_requested", "refund_service", refund)
            return True
        self._emit("refund_pending", "refund_service", refund)
        return False

    def process_barcode_scan(self, barcode: str) -> Optional[Dict[str, Any]]:
        menu_item = self._menu_catalog.get(barcode)
        if menu_item is None:
            logger.warning("Barcode not found: %s", barcode)
            return None
        self._emit("barcode_scanned", "barcode_scanner", {"barcode": barcode, "menuItem": menu_item})
        return menu_item

    async def perform_health_check(self) -> SystemStatus:
        errors: List[str] = []
        checks = (
            ("Cash drawer", self._settings.cash_drawer_enabled, self._status.cash_drawer),
            ("Thermal printer", self._settings.printer_enabled, self._status.thermal_printer),
            ("Barcode scanner", self._settings.scanner_enabled, self._status.barcode_scanner),
        )
        for label, enabled, device in checks:
            if enabled and device.error:
                errors.append(f"{label}: {device.error}")

        pending = self._status.pending_refunds
        if self._refunds.policy.enabled:
            try:
                pending = len(await self._refunds.get_refunds_by_status("pending"))
            except BackendError as exc:
                logger.warning("Could not count pending refunds: %s", exc)

        self._set_status(
            pending_refunds=pending,
            refunds_enabled=self._refunds.policy.enabled,
            errors=tuple(errors),
            is_healthy=not errors,
            last_health_check=datetime.now(timezone.utc),
        )
        return self._status

    def start_health_monitoring(self) -> None:
        if self._health_task is None or self._health_task.done():
            self._health_task = asyncio.create_task(self._health_loop())

    async def stop_health_monitoring(self) -> None:
        if self._health_task is None:
            return
        self._health_task.cancel()
        try:
            await self._health_task
        except asyncio.CancelledError:
            pass
        self._health_task = None

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.health_check_interval)
            try:
                await self.perform_health_check()
            except Exception:
                logger.exception("Health check failed")
