from __future__ import annotations

import logging
import sys
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, DefaultDict, List, Literal, Protocol, TextIO

logger = logging.getLogger(__name__)

ORDERS_UPDATED = "orders_updated"
ORDERS_REVERTED = "orders_reverted"
INTEGRATION = "integration"

EventType = Literal[
    "hardware_connected",
    "hardware_disconnected",
    "payment_processed",
    "barcode_scanned",
    "receipt_printed",
    "refund_requested",
    "refund_pending",
    "error",
]
EventSource = Literal[
    "cash_drawer",
    "barcode_scanner",
    "thermal_printer",
    "refund_service",
    "system",
]


@dataclass(frozen=True)
class IntegrationEvent:
    type: EventType
    source: EventSource
    data: Any
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[Any], None]


class EventBus:
    """In-process publish/subscribe used so other surfaces can refresh."""

    def __init__(self) -> None:
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)

    def subscribe(self, topic: str, listener: Listener) -> Callable[[], None]:
        self._listeners[topic].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[topic]:
                self._listeners[topic].remove(listener)

        return unsubscribe

    def publish(self, topic: str, payload: Any) -> None:
        for listener in list(self._listeners[topic]):
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for %s failed", topic)


class Notifier(Protocol):
    def play_alert(self) -> None: ...


class TerminalBell:
    """Rings the terminal bell; the kitchen display's audible alert."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream or sys.stdout

    def play_alert(self) -> None:
        self._stream.write("\a")
        self._stream.flush()
