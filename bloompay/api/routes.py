"""
API routes for orders, payments and transactions.

Services come from the container on ``app.state``. The acting account is
taken from the ``X-Account-ID`` header set by the upstream auth layer.
"""
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Body, Depends, Header, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from bloompay.api import redirects
from bloompay.api.schemas import (
    AddOrderItemRequest,
    CancelPaymentRequest,
    CreateOrderRequest,
    CreatePaymentLinkRequest,
    CreatePaymentLinkResponse,
    HealthCheckResponse,
    OrderEnvelope,
    OrderListEnvelope,
    OrderResponse,
    TransactionResponse,
    TransactionStatsResponse,
    UpdateOrderItemRequest,
    UpdateOrderStatusRequest,
    WebhookResponse,
)
from bloompay.container import Container
from bloompay.core.exceptions import BloomPayError
from bloompay.core.orders import OrderLine
from bloompay.core.reconciliation import GatewayReport
from bloompay.integrations.webhook_handler import WebhookError

logger = structlog.get_logger(__name__)

order_router = APIRouter(prefix="/orders", tags=["orders"])
order_item_router = APIRouter(prefix="/order-items", tags=["orders"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
transaction_router = APIRouter(prefix="/transactions", tags=["transactions"])
monitoring_router = APIRouter(tags=["monitoring"])


def get_container(request: Request) -> Container:
    """Container built by ``create_app``."""
    return request.app.state.container


def acting_account(x_account_id: UUID = Header(..., alias="X-Account-ID")) -> UUID:
    """Account the request acts for."""
    return x_account_id


# Orders


@order_router.post(
    "",
    response_model=OrderEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    description="Reserve stock for every line and create a pending order",
)
async def create_order(
    request: CreateOrderRequest,
    account_id: UUID = Depends(acting_account),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    """Create a new order for the acting account."""
    order = await container.orders.create_order(
        account_id=account_id,
        items=[OrderLine(flower_id=line.flower_id, quantity=line.quantity) for line in request.items],
        shipping_address=request.shipping_address,
        shipping_fee=request.shipping_fee,
    )
    return {
        "success": True,
        "message": "Order created successfully",
        "data": OrderResponse.from_order(order),
    }


@order_router.get("", response_model=OrderListEnvelope, summary="List orders")
async def list_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    account_id: Optional[UUID] = Query(default=None, alias="accountId"),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    orders = await container.orders.list_orders(
        status=status_filter, start_date=start_date, end_date=end_date, account_id=account_id
    )
    return {
        "success": True,
        "message": "Orders retrieved successfully",
        "data": [OrderResponse.from_order(order) for order in orders],
    }


@order_router.get("/{order_id}", response_model=OrderEnvelope, summary="Get an order")
async def get_order(
    order_id: UUID, container: Container = Depends(get_container)
) -> Dict[str, Any]:
    order = await container.orders.get_order(order_id)
    return {
        "success": True,
        "message": "Order retrieved successfully",
        "data": OrderResponse.from_order(order),
    }


@order_router.patch(
    "/{order_id}/status",
    response_model=OrderEnvelope,
    summary="Change an order's status",
    description="Allowed for the owner, admins and sellers, along the order transition table",
)
async def update_order_status(
    order_id: UUID,
    request: UpdateOrderStatusRequest,
    account_id: UUID = Depends(acting_account),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    order = await container.orders.update_order_status(order_id, request.status, account_id)
    return {
        "success": True,
        "message": "Order status updated successfully",
        "data": OrderResponse.from_order(order),
    }


@order_router.post(
    "/{order_id}/items",
    response_model=OrderEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Add a line to a pending order",
)
async def add_order_item(
    order_id: UUID,
    request: AddOrderItemRequest,
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    order = await container.orders.add_order_item(order_id, request.flower_id, request.quantity)
    return {
        "success": True,
        "message": "Order item added successfully",
        "data": OrderResponse.from_order(order),
    }


@order_item_router.patch("/{item_id}", response_model=OrderEnvelope, summary="Change a line")
async def update_order_item(
    item_id: UUID,
    request: UpdateOrderItemRequest,
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    order = await container.orders.update_order_item(item_id, request.quantity)
    return {
        "success": True,
        "message": "Order item updated successfully",
        "data": OrderResponse.from_order(order),
    }


@order_item_router.delete("/{item_id}", response_model=OrderEnvelope, summary="Remove a line")
async def delete_order_item(
    item_id: UUID, container: Container = Depends(get_container)
) -> Dict[str, Any]:
    order = await container.orders.delete_order_item(item_id)
    return {
        "success": True,
        "message": "Order item deleted successfully",
        "data": OrderResponse.from_order(order),
    }


# Payments


@payment_router.post(
    "/create-payment-link",
    summary="Create a payment link",
    description="Create a gateway checkout link for a pending order",
)
async def create_payment_link(
    request: CreatePaymentLinkRequest,
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    logger.info("api_create_payment_link_request", order_id=str(request.order_id))
    link = await container.payments.create_payment_link(
        request.order_id, return_url=request.return_url, cancel_url=request.cancel_url
    )
    return {
        "success": True,
        "message": "Payment link created successfully",
        "data": CreatePaymentLinkResponse(**link).model_dump(by_alias=True, mode="json"),
    }


@payment_router.get(
    "/payment/success",
    status_code=status.HTTP_302_FOUND,
    summary="Gateway success redirect",
)
async def payment_success(
    request: Request, container: Container = Depends(get_container)
) -> RedirectResponse:
    """Reconcile the browser's success redirect and hand off to the app."""
    params = request.query_params
    order_code = params.get("orderCode")
    base = container.settings.payment_deep_link_base

    try:
        if not order_code:
            raise BloomPayError("Order code is missing from payment return")
        result = await container.reconciliation.reconcile(
            order_code, GatewayReport.from_redirect(params), channel="redirect"
        )
    except BloomPayError as e:
        logger.warning("payment_return_rejected", order_code=order_code, error=e.message)
        return RedirectResponse(redirects.error_link(base, e.message, order_code), status_code=302)
    except Exception:
        logger.exception("payment_return_error", order_code=order_code)
        return RedirectResponse(
            redirects.error_link(base, "Payment processing failed", order_code), status_code=302
        )

    return RedirectResponse(redirects.success_link(base, result), status_code=302)


@payment_router.get(
    "/payment/cancel",
    status_code=status.HTTP_302_FOUND,
    summary="Gateway cancel redirect",
)
async def payment_cancel(
    request: Request, container: Container = Depends(get_container)
) -> RedirectResponse:
    """Reconcile the browser's cancel redirect and hand off to the app."""
    params = request.query_params
    order_code = params.get("orderCode")
    base = container.settings.payment_deep_link_base

    try:
        if not order_code:
            raise BloomPayError("Order code is missing from payment return")
        result = await container.reconciliation.reconcile(
            order_code, GatewayReport.from_redirect(params), channel="redirect"
        )
    except BloomPayError as e:
        logger.warning("payment_cancel_rejected", order_code=order_code, error=e.message)
        return RedirectResponse(
            redirects.error_link(base, e.message, order_code, cancelled=True), status_code=302
        )
    except Exception:
        logger.exception("payment_cancel_error", order_code=order_code)
        return RedirectResponse(
            redirects.error_link(base, "Payment processing failed", order_code, cancelled=True),
            status_code=302,
        )

    return RedirectResponse(redirects.cancel_link(base, result), status_code=302)


@payment_router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Gateway webhook",
    description="Signed server-to-server payment notification",
)
async def payment_webhook(
    payload: Dict[str, Any] = Body(...),
    container: Container = Depends(get_container),
) -> Any:
    try:
        return await container.webhooks.process(payload)
    except WebhookError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "message": e.message, "error": e.error_code},
        )


@payment_router.get("/payment-info/{payment_code}", summary="Gateway view of a payment link")
async def payment_info(
    payment_code: str, container: Container = Depends(get_container)
) -> Dict[str, Any]:
    info = await container.payments.get_payment_link_info(payment_code)
    return {
        "success": True,
        "message": "Payment information retrieved successfully",
        "data": info,
    }


@payment_router.post("/cancel-payment/{payment_code}", summary="Cancel a payment link")
async def cancel_payment(
    payment_code: str,
    request: Optional[CancelPaymentRequest] = Body(default=None),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    reason = request.reason if request is not None else "Customer request"
    result = await container.payments.cancel_payment_link(payment_code, reason)
    return {
        "success": True,
        "message": "Payment cancelled successfully",
        "data": result,
    }


# Transactions


@transaction_router.get("", summary="List transactions")
async def list_transactions(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    account_id: Optional[UUID] = Query(default=None, alias="accountId"),
    direction: Optional[str] = Query(default=None),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    transactions = await container.transactions.list_transactions(
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        account_id=account_id,
        direction=direction,
    )
    return {
        "success": True,
        "message": "Transactions retrieved successfully",
        "data": [
            TransactionResponse.from_transaction(t).model_dump(by_alias=True, mode="json")
            for t in transactions
        ],
    }


@transaction_router.get("/stats", summary="Transaction statistics")
async def transaction_stats(
    account_id: Optional[UUID] = Query(default=None, alias="accountId"),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    stats = await container.transactions.stats(account_id)
    return {
        "success": True,
        "message": "Transaction statistics retrieved successfully",
        "data": TransactionStatsResponse(**stats).model_dump(by_alias=True, mode="json"),
    }


@transaction_router.get("/recent", summary="Recent transactions of an account")
async def recent_transactions(
    account_id: UUID = Query(..., alias="accountId"),
    limit: int = Query(default=10, ge=1, le=100),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    transactions = await container.transactions.recent(account_id, limit)
    return {
        "success": True,
        "message": "Recent transactions retrieved successfully",
        "data": [
            TransactionResponse.from_transaction(t).model_dump(by_alias=True, mode="json")
            for t in transactions
        ],
    }


@transaction_router.get("/{transaction_id}", summary="Get a transaction")
async def get_transaction(
    transaction_id: UUID, container: Container = Depends(get_container)
) -> Dict[str, Any]:
    transaction = await container.transactions.get_transaction(transaction_id)
    return {
        "success": True,
        "message": "Transaction retrieved successfully",
        "data": TransactionResponse.from_transaction(transaction).model_dump(
            by_alias=True, mode="json"
        ),
    }


# Monitoring


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(container: Container = Depends(get_container)) -> Dict[str, Any]:
    return await container.health.check_all()


@monitoring_router.get("/health/live", response_model=HealthCheckResponse, summary="Liveness check")
async def liveness(container: Container = Depends(get_container)) -> Dict[str, Any]:
    return await container.health.liveness()


@monitoring_router.get("/health/ready", summary="Readiness check")
async def readiness(container: Container = Depends(get_container)) -> JSONResponse:
    result = await container.health.readiness()
    status_code = (
        status.HTTP_200_OK if result["status"] == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    return JSONResponse(status_code=status_code, content=result)


@monitoring_router.get("/metrics", summary="Prometheus metrics")
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
