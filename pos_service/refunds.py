from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Literal, Mapping, Optional

from .backend_client import BackendError, RefundApi
from .config import RefundPolicy
from .hardware import CashDrawer
from .models import pick_field
from .transactions import TransactionLog, TransactionLogger

logger = logging.getLogger(__name__)

RefundStatus = Literal["pending", "approved", "rejected", "completed"]

REQUIRED_FIELDS = ("order_id", "refund_amount", "reason", "authorized_by")
TERMINAL_STATUSES = frozenset({"rejected", "completed"})
MANAGER_ROLES = frozenset({"manager", "restaurant manager"})
ESCALATING_AUTHORIZER = "Restaurant Manager"
AUTO_APPROVER = "System (Auto-Approve)"
SMALL_AMOUNT_NOTE = "Auto-approved (Small Amount)"
BELOW_THRESHOLD_NOTE = "Auto-approved (Below Threshold)"


class ValidationError(ValueError):
    """A refund request violates the refund policy."""


class InvalidTransition(Exception):
    """A refund transition was attempted from the wrong state."""


class UnsupportedMethod(Exception):
    """The requested refund method is not implemented."""


class RefundNotFound(LookupError):
    """Raised when the refund API has no record of a refund id."""


@dataclass(frozen=True)
class RefundDraft:
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    customer_name: Optional[str] = None
    original_amount: Optional[float] = None
    refund_amount: Optional[float] = None
    payment_method: Optional[str] = None
    reason: Optional[str] = None
    authorized_by: Optional[str] = None
    requested_by: Optional[str] = None
    additional_notes: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "orderNumber": self.order_number,
            "customerName": self.customer_name,
            "originalAmount": self.original_amount,
            "refundAmount": self.refund_amount,
            "paymentMethod": self.payment_method,
            "reason": self.reason,
            "authorizedBy": self.authorized_by,
            "requestedBy": self.requested_by,
            "additionalNotes": self.additional_notes,
        }


@dataclass(frozen=True)
class RefundRequest:
    id: str
    order_id: str
    order_number: str
    customer_name: str
    original_amount: float
    refund_amount: float
    payment_method: str
    reason: str
    authorized_by: str
    requested_by: str
    status: RefundStatus
    requested_at: str
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    completed_at: Optional[str] = None
    refund_method: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    additional_notes: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RefundRequest":
        return cls(
            id=str(payload["id"]),
            order_id=str(pick_field(payload, "orderId", "orderid", default="")),
            order_number=str(pick_field(payload, "orderNumber", "ordernumber", default="")),
            customer_name=pick_field(payload, "customerName", "customername", default=""),
            original_amount=float(pick_field(payload, "originalAmount", "originalamount", default=0)),
            refund_amount=float(pick_field(payload, "refundAmount", "refundamount", default=0)),
            payment_method=pick_field(payload, "paymentMethod", "paymentmethod", default=""),
            reason=payload.get("reason") or "",
            authorized_by=pick_field(payload, "authorizedBy", "authorizedby", default=""),
            requested_by=pick_field(payload, "requestedBy", "requestedby", default=""),
            status=payload.get("status") or "pending",
            requested_at=str(pick_field(payload, "requestedAt", "requestedat", default="")),
            approved_by=pick_field(payload, "approvedBy", "approvedby"),
            approved_at=pick_field(payload, "approvedAt", "approvedat"),
            completed_at=pick_field(payload, "completedAt", "completedat"),
            refund_method=pick_field(payload, "refundMethod", "refundmethod"),
            transaction_id=pick_field(payload, "transactionId", "transactionid"),
            notes=payload.get("notes"),
            additional_notes=pick_field(payload, "additionalNotes", "additionalnotes"),
        )


@dataclass(frozen=True)
class RefundStats:
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    completed: int = 0
    total_amount: float = 0.0


def validate_refund_request(data: RefundDraft, policy: RefundPolicy) -> None:
    if not policy.enabled:
        raise ValidationError("Refunds are not enabled")
    for name in REQUIRED_FIELDS:
        value = getattr(data, name)
        if value is None or value == "":
            raise ValidationError(f"{name} is required")
    if data.refund_amount <= 0:
        raise ValidationError("Refund amount must be greater than 0")
    if data.original_amount is None or data.refund_amount > data.original_amount:
        raise ValidationError("Refund amount cannot exceed original amount")
    if data.payment_method not in policy.allowed_payment_methods:
        raise ValidationError("Payment method not allowed for refunds")


class RefundWorkflow:
    """Refund request state machine: pending -> approved/rejected -> completed."""

    def __init__(
        self,
        api: RefundApi,
        policy: RefundPolicy,
        cash_drawer: CashDrawer,
        transaction_logger: TransactionLogger,
    ):
        self._api = api
        self._policy = policy
        self._drawer = cash_drawer
        self._transactions = transaction_logger

    @property
    def policy(self) -> RefundPolicy:
        return self._policy

    def update_policy(self, policy: RefundPolicy) -> None:
        self._policy = policy

    def validate_refund_request(self, data: RefundDraft) -> None:
        validate_refund_request(data, self._policy)

    async def create_refund_request(self, data: RefundDraft) -> RefundRequest:
        policy = self._policy
        validate_refund_request(data, policy)

        created = RefundRequest.from_payload(await self._api.create_refund(data.to_payload()))
        if created.status != "pending":
            return created

        amount = data.refund_amount
        if policy.auto_approve_small_amounts and amount <= policy.small_amount_threshold:
            note = SMALL_AMOUNT_NOTE
        elif data.authorized_by == ESCALATING_AUTHORIZER and amount > policy.max_manager_refund:
            logger.info("Refund %s exceeds manager limit, escalation required", created.id)
            return created
        elif not policy.require_approval or amount <= policy.approval_threshold:
            note = BELOW_THRESHOLD_NOTE
        else:
            logger.info("Refund %s awaits manual approval", created.id)
            return created

        try:
            return await self._decide(created, "approved", AUTO_APPROVER, note)
        except BackendError:
            logger.exception("Auto-approval of refund %s failed", created.id)
            return created

    async def approve_refund(
        self, refund_id: str, approved_by: str, notes: str | None = None
    ) -> RefundRequest:
        current = await self.get_refund_by_id(refund_id)
        return await self._decide(current, "approved", approved_by, notes)

    async def reject_refund(self, refund_id: str, rejected_by: str, reason: str) -> RefundRequest:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        current = await self.get_refund_by_id(refund_id)
        return await self._decide(current, "rejected", rejected_by, reason)

    async def _decide(
        self, current: RefundRequest, status: RefundStatus, actor: str, notes: str | None
    ) -> RefundRequest:
        if current.status != "pending":
            raise InvalidTransition(
                f"Refund {current.id} is {current.status}; only pending refunds can be {status}"
            )
        updated = await self._api.update_refund(
            current.id, {"status": status, "approvedBy": actor, "notes": notes}
        )
        logger.info("Refund %s %s by %s", current.id, status, actor)
        return RefundRequest.from_payload(updated)

    async def process_refund(
        self, refund_id: str, refund_method: str, transaction_id: str | None = None
    ) -> RefundRequest:
        current = await self.get_refund_by_id(refund_id)
        if current.status != "approved":
            raise InvalidTransition(
                f"Refund {refund_id} is {current.status}; it must be approved first"
            )
        if refund_method != "cash":
            raise UnsupportedMethod(f"Refund method {refund_method!r} is not supported")

        target_transaction_id = transaction_id or current.transaction_id
        try:
            await self._drawer.open()
            updated = RefundRequest.from_payload(
                await self._api.update_refund(
                    refund_id,
                    {
                        "status": "completed",
                        "refundMethod": refund_method,
                        "transactionId": target_transaction_id,
                    },
                )
            )
        except Exception as exc:
            logger.error("Refund %s processing failed: %s", refund_id, exc)
            await self._transactions.log_transaction(
                TransactionLog(
                    id=f"FAIL-REF-{refund_id}",
                    type="refund",
                    order_id=current.order_id,
                    amount=current.refund_amount,
                    status="failed",
                    metadata={"error": str(exc) or "Refund failed"},
                    payment_method=refund_method,
                )
            )
            raise

        await self._transactions.log_transaction(
            TransactionLog(
                id=f"REF-{updated.id}",
                type="refund",
                order_id=updated.order_id,
                amount=updated.refund_amount,
                status="success",
                metadata={
                    "refundMethod": refund_method,
                    "originalTransactionId": target_transaction_id,
                },
                payment_method=refund_method,
            )
        )
        return updated

    def can_approve_refunds(self, role: str, amount: float) -> bool:
        normalized = (role or "").strip().lower()
        if normalized == "admin":
            return True
        if normalized in MANAGER_ROLES:
            return amount <= self._policy.max_manager_refund
        return False

    async def get_refunds(
        self,
        refund_id: str | None = None,
        order_id: str | None = None,
        status: str | None = None,
    ) -> List[RefundRequest]:
        rows = await self._api.list_refunds(refund_id=refund_id, order_id=order_id, status=status)
        return [RefundRequest.from_payload(row) for row in rows]

    async def get_refund_by_id(self, refund_id: str) -> RefundRequest:
        for refund in await self.get_refunds(refund_id=refund_id):
            if refund.id == refund_id:
                return refund
        raise RefundNotFound(f"Refund {refund_id} not found")

    async def get_refunds_by_status(self, status: RefundStatus) -> List[RefundRequest]:
        return await self.get_refunds(status=status)

    async def get_refunds_by_order_id(self, order_id: str) -> List[RefundRequest]:
        return await self.get_refunds(order_id=order_id)

    async def get_refund_stats(self) -> RefundStats:
        refunds = await self.get_refunds()
        counts = {f.name: 0 for f in fields(RefundStats) if f.name not in ("total", "total_amount")}
        total_amount = 0.0
        for refund in refunds:
            if refund.status in counts:
                counts[refund.status] += 1
            if refund.status == "completed":
                total_amount += refund.refund_amount
        return RefundStats(total=len(refunds), total_amount=round(total_amount, 2), **counts)
