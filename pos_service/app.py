from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .backend_client import BackendError
from .context import AppContext, build_context
from .integration import PaymentDetails, SideEffectReport
from .models import Order, OrderDraft, OrderItem
from .order_status import InvalidStatus
from .order_store import OrderNotFound
from .refunds import (
    InvalidTransition,
    RefundDraft,
    RefundNotFound,
    RefundRequest,
    UnsupportedMethod,
    ValidationError,
)
from . import schemas


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def _order_summary(order: Order) -> schemas.OrderSummary:
    return schemas.OrderSummary(**asdict(order))


def _refund_summary(refund: RefundRequest) -> schemas.RefundSummary:
    return schemas.RefundSummary(**asdict(refund))


def _report(report: SideEffectReport) -> schemas.CompletionResponse:
    return schemas.CompletionResponse(
        recorded=report.recorded, completed=report.completed, failures=report.failures
    )


def _items(payloads: List[schemas.OrderItemPayload]) -> tuple:
    return tuple(OrderItem(**item.model_dump()) for item in payloads)


def _error(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    ctx = context or build_context()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await ctx.start()
        try:
            yield
        finally:
            await ctx.close()

    app = FastAPI(
        title="POS Service",
        version="0.1.0",
        description="Kitchen orders, refunds and payment side effects for a POS terminal.",
        lifespan=lifespan,
    )
    app.state.context = ctx
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ctx.settings.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ValidationError, _error(status.HTTP_400_BAD_REQUEST))
    app.add_exception_handler(InvalidStatus, _error(status.HTTP_400_BAD_REQUEST))
    app.add_exception_handler(OrderNotFound, _error(status.HTTP_404_NOT_FOUND))
    app.add_exception_handler(RefundNotFound, _error(status.HTTP_404_NOT_FOUND))
    app.add_exception_handler(InvalidTransition, _error(status.HTTP_409_CONFLICT))
    app.add_exception_handler(UnsupportedMethod, _error(status.HTTP_422_UNPROCESSABLE_ENTITY))
    app.add_exception_handler(BackendError, _error(status.HTTP_502_BAD_GATEWAY))

    @app.get("/healthz", response_model=schemas.HealthResponse)
    async def healthz() -> schemas.HealthResponse:
        return schemas.HealthResponse(status="ok")

    @app.get("/orders", response_model=list[schemas.OrderSummary])
    async def list_orders(ctx: AppContext = Depends(get_context)) -> list[schemas.OrderSummary]:
        return [_order_summary(order) for order in ctx.orders.orders]

    @app.get("/orders/by-client", response_model=Dict[str, List[schemas.OrderSummary]])
    async def orders_by_client(
        ctx: AppContext = Depends(get_context),
    ) -> Dict[str, List[schemas.OrderSummary]]:
        return {
            client: [_order_summary(order) for order in orders]
            for client, orders in ctx.orders.get_orders_by_client().items()
        }

    @app.post(
        "/orders",
        response_model=schemas.OrderSummary,
        status_code=status.HTTP_201_CREATED,
    )
    async def create_order(
        payload: schemas.CreateOrderRequest,
        ctx: AppContext = Depends(get_context),
    ) -> schemas.OrderSummary:
        if not payload.items:
            raise HTTPException(status_code=400, detail="At least one item is required.")
        draft = OrderDraft(**{**payload.model_dump(), "items": _items(payload.items)})
        order = await ctx.orders.add_order(draft)
        return _order_summary(order)

    @app.patch("/orders/{order_id}", response_model=schemas.OrderSummary)
    async def update_order(
        order_id: str,
        payload: schemas.UpdateOrderRequest,
        ctx: AppContext = Depends(get_context),
    ) -> schemas.OrderSummary:
        if payload.status is not None:
            await ctx.orders.update_order_status(order_id, payload.status)
        if payload.priority is not None:
            await ctx.orders.update_order_priority(order_id, payload.priority)
        if payload.chef_notes is not None:
            await ctx.orders.update_order_notes(order_id, payload.chef_notes)
        order = ctx.orders.get_order_by_id(order_id)
        if order is None:
            raise HTTPException(status_code=404, detail="Order not found")
        return _order_summary(order)

    @app.patch("/orders/{order_id}/items/{item_id}", response_model=schemas.ItemStatusResponse)
    async def update_item_status(
        order_id: str,
        item_id: str,
        payload: schemas.UpdateItemStatusRequest,
        ctx: AppContext = Depends(get_context),
    ) -> schemas.ItemStatusResponse:
        synced = await ctx.orders.update_item_status(order_id, item_id, payload.status)
        order = ctx.orders.get_order_by_id(order_id)
        return schemas.ItemStatusResponse(
            synced=synced,
            order=_order_summary(order) if order else None,
            message=None if synced else "Changes reverted",
        )

    @app.post("/orders/{order_id}/complete", response_model=schemas.CompletionResponse)
    async def complete_order(
        order_id: str,
        ctx: AppContext = Depends(get_context),
    ) -> schemas.CompletionResponse:
        return _report(await ctx.integration.complete_order(order_id))

    @app.post(
        "/refunds",
        response_model=schemas.RefundSummary,
        status_code=status.HTTP_201_CREATED,
    )
    async def create_refund(
        payload: schemas.CreateRefundRequest,
        ctx: AppContext = Depends(get_context),
    ) -> schemas.RefundSummary:
        refund = await ctx.refunds.create_refund_request(RefundDraft(**payload.model_dump()))
        return _refund_summary(refund)

    @app.get("/refunds", response_model=list[schemas.RefundSummary])
    async def list_refunds(
        order_id: Optional[str] = None,
        refund_status: Optional[str] = Query(None, alias="status"),
        ctx: AppContext = Depends(get_context),
    ) -> list[schemas.RefundSummary]:
        refunds = await ctx.refunds.get_refunds(order_id=order_id, status=refund_status)
        return [_refund_summary(refund) for refund in refunds]

    @app.post("/refunds/{refund_id}/approve", response_model=schemas.RefundSummary)
    async def approve_refund(
        refund_id: str,
        payload: schemas.RefundDecisionRequest,
        ctx: AppContext = Depends(get_context),
    ) -> schemas.RefundSummary:
        refund = await ctx.refunds.approve_refund(refund_id, payload.actor, payload.notes)
        return _refund_summary(refund)

    @app.post("/refunds/{refund_id}/reject", response_model=schemas.RefundSummary)
    async def reject_refund(
        refund_id: str,
        payload: schemas.RefundDecisionRequest,
        ctx: AppContext = Depends(get_context),
    ) -> schemas.RefundSummary:
        refund = await ctx.refunds.reject_refund(refund_id, payload.actor, payload.notes or "")
        return _refund_summary(refund)

    @app.post("/refunds/{refund_id}/process", response_model=schemas.RefundSummary)
    async def process_refund(
        refund_id: str,
        payload: schemas.ProcessRefundRequest,
        ctx: AppContext = Depends(get_context),
    ) -> schemas.RefundSummary:
        refund = await ctx.refunds.process_refund(
            refund_id, payload.refund_method, payload.transaction_id
        )
        return _refund_summary(refund)

    @app.post("/payments", response_model=schemas.CompletionResponse)
    async def process_payment(
        payload: schemas.PaymentRequest,
        ctx: AppContext = Depends(get_context),
    ) -> schemas.CompletionResponse:
        details = PaymentDetails(**{**payload.model_dump(), "items": _items(payload.items)})
        return _report(await ctx.integration.process_payment(details))

    @app.get("/queue", response_model=schemas.QueueStatus)
    async def queue_status(ctx: AppContext = Depends(get_context)) -> schemas.QueueStatus:
        queue = ctx.write_queue
        return schemas.QueueStatus(
            online=ctx.connectivity.online,
            draining=queue.is_draining,
            length=len(queue),
            entries=[
                schemas.QueueEntry(
                    id=entry.id,
                    target=entry.target,
                    method=entry.method,
                    timestamp=entry.timestamp,
                    retry_count=entry.retry_count,
                )
                for entry in queue.entries
            ],
        )

    @app.post("/queue/drain", response_model=schemas.QueueStatus)
    async def drain_queue(ctx: AppContext = Depends(get_context)) -> schemas.QueueStatus:
        await ctx.connectivity.check()
        await ctx.write_queue.flush()
        return await queue_status(ctx)

    @app.get("/status", response_model=schemas.SystemStatusResponse)
    async def system_status(
        ctx: AppContext = Depends(get_context),
    ) -> schemas.SystemStatusResponse:
        current = await ctx.integration.perform_health_check()
        devices = {
            name: schemas.DeviceSummary(
                is_connected=device.is_connected,
                is_busy=device.is_busy,
                error=device.error,
                detail=device.detail,
            )
            for name, device in (
                ("cash_drawer", current.cash_drawer),
                ("thermal_printer", current.thermal_printer),
                ("barcode_scanner", current.barcode_scanner),
            )
        }
        return schemas.SystemStatusResponse(
            devices=devices,
            refunds_enabled=current.refunds_enabled,
            pending_refunds=current.pending_refunds,
            is_healthy=current.is_healthy,
            errors=list(current.errors),
        )

    return app
