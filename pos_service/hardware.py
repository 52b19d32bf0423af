from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


class HardwareError(Exception):
    """Raised when a device cannot perform its primary action."""


@dataclass(frozen=True)
class DeviceStatus:
    is_connected: bool = False
    is_busy: bool = False
    error: Optional[str] = None
    detail: str = "unknown"
    last_action: Optional[datetime] = None


StatusListener = Callable[[DeviceStatus], None]


@dataclass(frozen=True)
class ReceiptLine:
    name: str
    quantity: int
    price: float

    @property
    def total(self) -> float:
        return round(self.price * self.quantity, 2)


@dataclass(frozen=True)
class Receipt:
    order_number: str
    lines: Sequence[ReceiptLine]
    subtotal: float
    tax: float
    total: float
    payment_method: str
    business_name: str
    order_id: Optional[str] = None
    customer_name: str = ""
    business_address: str = ""
    business_phone: str = ""
    printed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class CashDrawer(Protocol):
    async def connect(self) -> bool: ...

    async def test(self) -> bool: ...

    async def open(self) -> None: ...

    def on_status_change(self, listener: StatusListener) -> None: ...


class ReceiptPrinter(Protocol):
    async def connect(self) -> bool: ...

    async def test(self) -> bool: ...

    async def print_receipt(self, receipt: Receipt) -> None: ...

    def on_status_change(self, listener: StatusListener) -> None: ...


class BarcodeScanner(Protocol):
    async def connect(self) -> bool: ...

    async def test(self) -> bool: ...

    async def scan(self) -> Optional[str]: ...

    def on_status_change(self, listener: StatusListener) -> None: ...

    def on_barcode(self, listener: Callable[[str], None]) -> None: ...


class _SimulatedDevice:
    """Shared status bookkeeping for the in-process device stand-ins."""

    name = "device"

    def __init__(self) -> None:
        self.status = DeviceStatus()
        self._listeners: List[StatusListener] = []

    def on_status_change(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def _set_status(self, **changes) -> None:
        self.status = replace(self.status, **changes)
        for listener in list(self._listeners):
            listener(self.status)

    async def connect(self) -> bool:
        logger.info("Connecting %s", self.name)
        self._set_status(is_connected=True, error=None, detail="ready")
        return True

    async def disconnect(self) -> None:
        self._set_status(is_connected=False, detail="disconnected")

    async def test(self) -> bool:
        return self.status.is_connected

    def _require_connected(self) -> None:
        if not self.status.is_connected:
            message = f"{self.name} not connected"
            self._set_status(error=message)
            raise HardwareError(message)


class SimulatedCashDrawer(_SimulatedDevice):
    name = "cash drawer"

    def __init__(self) -> None:
        super().__init__()
        self.open_count = 0

    async def open(self) -> None:
        self._require_connected()
        self.open_count += 1
        self._set_status(detail="open", error=None, last_action=datetime.now(timezone.utc))
        logger.info("Cash drawer opened")


class SimulatedReceiptPrinter(_SimulatedDevice):
    name = "thermal printer"

    def __init__(self) -> None:
        super().__init__()
        self.printed: List[Receipt] = []

    async def print_receipt(self, receipt: Receipt) -> None:
        self._require_connected()
        self._set_status(is_busy=True)
        self.printed.append(receipt)
        self._set_status(is_busy=False, error=None, last_action=datetime.now(timezone.utc))
        logger.info("Printed receipt for order %s", receipt.order_number)


class SimulatedBarcodeScanner(_SimulatedDevice):
    name = "barcode scanner"

    def __init__(self, pending: Sequence[str] = ()) -> None:
        super().__init__()
        self._pending = list(pending)
        self._barcode_listeners: List[Callable[[str], None]] = []

    def on_barcode(self, listener: Callable[[str], None]) -> None:
        self._barcode_listeners.append(listener)

    async def scan(self) -> Optional[str]:
        self._require_connected()
        if not self._pending:
            return None
        barcode = self._pending.pop(0)
        for listener in list(self._barcode_listeners):
            listener(barcode)
        return barcode
