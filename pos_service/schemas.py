from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: Literal["ok"]


class OrderItemPayload(BaseModel):
    id: str
    name: str
    quantity: int = Field(..., gt=0)
    price: float = Field(..., ge=0)
    category: str = ""
    status: Literal["pending", "preparing", "ready", "served"] = "pending"
    prep_time: Optional[int] = None
    notes: Optional[str] = None
    menu_item_id: Optional[str] = None
    order_id: Optional[str] = None
    order_number: Optional[str] = None


class CreateOrderRequest(BaseModel):
    order_number: str
    items: List[OrderItemPayload]
    total: float = Field(..., ge=0)
    order_type: Literal["dine-in", "takeout", "delivery"] = "dine-in"
    payment_method: str = "cash"
    table_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_refused: bool = False
    estimated_time: Optional[int] = None
    chef_notes: Optional[str] = None


class OrderSummary(BaseModel):
    id: str
    order_number: str
    items: List[OrderItemPayload]
    total: float
    order_type: str
    payment_method: str
    status: str
    priority: str
    created_at: str
    updated_at: str
    table_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_refused: bool = False
    estimated_time: Optional[int] = None
    chef_notes: Optional[str] = None


class UpdateOrderRequest(BaseModel):
    status: Optional[str] = None
    priority: Optional[str] = None
    chef_notes: Optional[str] = None


class UpdateItemStatusRequest(BaseModel):
    status: str


class ItemStatusResponse(BaseModel):
    synced: bool
    order: Optional[OrderSummary] = None
    message: Optional[str] = None


class CompletionResponse(BaseModel):
    recorded: bool
    completed: bool
    failures: List[str]


class CreateRefundRequest(BaseModel):
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


class RefundDecisionRequest(BaseModel):
    actor: str
    notes: Optional[str] = None


class ProcessRefundRequest(BaseModel):
    refund_method: str
    transaction_id: Optional[str] = None


class RefundSummary(BaseModel):
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
    status: str
    requested_at: str
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    completed_at: Optional[str] = None
    refund_method: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    additional_notes: Optional[str] = None


class PaymentRequest(BaseModel):
    amount: float = Field(..., gt=0)
    method: str
    order_number: str
    items: List[OrderItemPayload] = Field(default_factory=list)
    order_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_refused: bool = False
    order_type: str = "dine-in"
    table_number: Optional[str] = None


class QueueEntry(BaseModel):
    id: str
    target: str
    method: str
    timestamp: float
    retry_count: int


class QueueStatus(BaseModel):
    online: bool
    draining: bool
    length: int
    entries: List[QueueEntry]


class DeviceSummary(BaseModel):
    is_connected: bool
    is_busy: bool
    error: Optional[str] = None
    detail: str


class SystemStatusResponse(BaseModel):
    devices: Dict[str, DeviceSummary]
    refunds_enabled: bool
    pending_refunds: int
    is_healthy: bool
    errors: List[str]
