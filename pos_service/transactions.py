from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Literal, Optional

from .backend_client import (
    MONITORING_ALERT_PATH,
    TRANSACTION_LOG_PATH,
    BackendError,
    LedgerApi,
)
from .models import utc_now_iso
from .write_queue import ResilientWriteQueue

logger = logging.getLogger(__name__)

TransactionType = Literal["payment", "refund", "void"]

RECENT_LOG_LIMIT = 100


@dataclass(frozen=True)
class TransactionLog:
    id: str
    type: TransactionType
    order_id: str
    amount: float
    status: str
    timestamp: str = field(default_factory=utc_now_iso)
    metadata: Dict[str, Any] = field(default_factory=dict)
    payment_method: Optional[str] = None
    customer_id: Optional[str] = None

    @property
    def is_failure(self) -> bool:
        return self.status in ("failed", "error")

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "orderId": self.order_id,
            "amount": self.amount,
            "status": self.status,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
            "paymentMethod": self.payment_method,
            "customerId": self.customer_id,
        }


class TransactionLogger:
    """Append-only transaction log with monitoring alerts for failures.

    Writes that cannot reach the backend are handed to the write queue.
    """

    def __init__(self, api: LedgerApi, queue: ResilientWriteQueue):
        self._api = api
        self._queue = queue
        self._recent: Deque[TransactionLog] = deque(maxlen=RECENT_LOG_LIMIT)

    @property
    def recent(self) -> List[TransactionLog]:
        return list(self._recent)

    async def log_transaction(self, log: TransactionLog) -> None:
        logger.info(
            "[TransactionLog] %s order=%s amount=%.2f status=%s",
            log.type.upper(),
            log.order_id,
            log.amount,
            log.status,
        )
        self._recent.appendleft(log)

        payload = log.to_payload()
        try:
            await self._api.append_transaction(payload)
        except BackendError as exc:
            logger.warning("Failed to persist transaction %s, queuing for retry: %s", log.id, exc)
            await self._queue.enqueue(TRANSACTION_LOG_PATH, "POST", payload)

        if log.is_failure:
            await self._alert_monitoring(log)

    async def _alert_monitoring(self, log: TransactionLog) -> None:
        alert = {
            "level": "error" if log.status == "error" else "warning",
            "message": f"Transaction {log.status}: {log.type} - Order {log.order_id}",
            "context": {
                "orderId": log.order_id,
                "amount": log.amount,
                "timestamp": log.timestamp,
                "metadata": log.metadata,
            },
        }
        try:
            await self._api.send_alert(alert)
        except BackendError as exc:
            logger.warning("Failed to send monitoring alert, queuing for retry: %s", exc)
            await self._queue.enqueue(MONITORING_ALERT_PATH, "POST", alert)
