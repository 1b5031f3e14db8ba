"""
Pydantic schemas for API request/response models.

Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from bloompay.database.models import Order, OrderItem, Transaction


class CamelModel(BaseModel):
    """Base model that speaks camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _validate_http_url(v: Optional[str]) -> Optional[str]:
    if v is not None and not v.startswith(("http://", "https://")):
        raise ValueError("URL must start with http:// or https://")
    return v


class OrderLineRequest(CamelModel):
    """One requested order line."""

    flower_id: UUID = Field(..., description="Flower to order")
    quantity: int = Field(..., description="Units to order (at least 1)")


class CreateOrderRequest(CamelModel):
    """Request schema for creating an order."""

    items: List[OrderLineRequest] = Field(..., description="Order lines")
    shipping_address: str = Field(..., description="Delivery address")
    shipping_fee: int = Field(default=0, description="Flat shipping fee")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "items": [
                        {"flowerId": "123e4567-e89b-12d3-a456-426614174000", "quantity": 2}
                    ],
                    "shippingAddress": "12 Nguyen Hue, District 1, Ho Chi Minh City",
                    "shippingFee": 30000,
                }
            ]
        },
    )


class UpdateOrderStatusRequest(CamelModel):
    """Request schema for a manual order status change."""

    status: str = Field(..., description="Target order status")


class AddOrderItemRequest(CamelModel):
    """Request schema for adding a line to a pending order."""

    flower_id: UUID
    quantity: int


class UpdateOrderItemRequest(CamelModel):
    """Request schema for changing a line's quantity."""

    quantity: int


class OrderItemResponse(CamelModel):
    """One order line with its price snapshot."""

    id: UUID
    flower_id: UUID
    flower_name: Optional[str] = None
    quantity: int
    unit_price: int
    line_total: int

    @classmethod
    def from_item(cls, item: OrderItem) -> "OrderItemResponse":
        return cls(
            id=item.id,
            flower_id=item.flower_id,
            flower_name=item.flower.name if item.flower is not None else None,
            quantity=item.quantity,
            unit_price=item.unit_price,
            line_total=item.line_total,
        )


class OrderResponse(CamelModel):
    """Response schema for an order."""

    id: UUID
    account_id: UUID
    status: str
    total_amount: int
    shipping_fee: int
    shipping_address: str
    payment_code: Optional[str] = None
    transaction_id: Optional[UUID] = None
    order_at: datetime
    paid_at: Optional[datetime] = None
    items: List[OrderItemResponse] = Field(default_factory=list)

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            account_id=order.account_id,
            status=order.status,
            total_amount=order.total_amount,
            shipping_fee=order.shipping_fee,
            shipping_address=order.shipping_address,
            payment_code=order.payment_code,
            transaction_id=order.transaction_id,
            order_at=order.order_at,
            paid_at=order.paid_at,
            items=[OrderItemResponse.from_item(item) for item in order.items],
        )


class OrderEnvelope(CamelModel):
    """``{success, message, data}`` wrapper for one order."""

    success: bool = True
    message: str
    data: OrderResponse


class OrderListEnvelope(CamelModel):
    """``{success, message, data}`` wrapper for a list of orders."""

    success: bool = True
    message: str
    data: List[OrderResponse]


class CreatePaymentLinkRequest(CamelModel):
    """Request schema for creating a payment link."""

    order_id: UUID = Field(..., description="Order to pay")
    return_url: Optional[str] = Field(default=None, description="Success redirect URL")
    cancel_url: Optional[str] = Field(default=None, description="Cancel redirect URL")

    @field_validator("return_url", "cancel_url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate redirect URLs."""
        return _validate_http_url(v)


class CreatePaymentLinkResponse(CamelModel):
    """Response schema for payment link creation."""

    checkout_url: str
    payment_code: str
    transaction_id: UUID
    order_id: UUID
    amount: int
    qr_code: Optional[str] = None
    payment_link_id: Optional[str] = None


class CancelPaymentRequest(CamelModel):
    """Request schema for cancelling a payment link."""

    reason: str = Field(default="Customer request", max_length=255)


class TransactionResponse(CamelModel):
    """Response schema for a transaction."""

    id: UUID
    from_account: UUID
    to_account: UUID
    amount: int
    status: str
    payment_code: Optional[str] = None
    transaction_date: datetime
    updated_at: datetime

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionResponse":
        return cls(
            id=transaction.id,
            from_account=transaction.from_account,
            to_account=transaction.to_account,
            amount=transaction.amount,
            status=transaction.status,
            payment_code=transaction.payment_code,
            transaction_date=transaction.transaction_date,
            updated_at=transaction.updated_at,
        )


class TransactionStatusStats(CamelModel):
    count: int
    total_amount: int


class TransactionStatsResponse(CamelModel):
    """Per-status transaction counts and sums."""

    total: int
    by_status: Dict[str, TransactionStatusStats]


class WebhookResponse(CamelModel):
    """Response schema for webhook processing."""

    success: bool
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
    message: Optional[str] = Field(default=None, description="Status message")
