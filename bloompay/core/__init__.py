"""
Core order, stock and payment reconciliation logic.

Service modules (stock, orders, transactions, payments, reconciliation) are
imported directly; this package only re-exports the dependency-free status
types and errors so that the database models can use them.
"""
from .exceptions import (
    BloomPayError,
    DuplicatePaymentLink,
    FlowerNotFound,
    GatewayError,
    InsufficientStock,
    InvalidOrderRequest,
    InvalidSignature,
    InvalidWebhookPayload,
    InvalidStatus,
    InvalidStatusTransition,
    OrderItemNotFound,
    OrderNotFound,
    PermissionDenied,
    TransactionNotFound,
)
from .status import OrderStatus, PaymentOutcome, TransactionStatus

__all__ = [
    "BloomPayError",
    "DuplicatePaymentLink",
    "FlowerNotFound",
    "GatewayError",
    "InsufficientStock",
    "InvalidOrderRequest",
    "InvalidSignature",
    "InvalidWebhookPayload",
    "InvalidStatus",
    "InvalidStatusTransition",
    "OrderItemNotFound",
    "OrderNotFound",
    "OrderStatus",
    "PaymentOutcome",
    "PermissionDenied",
    "TransactionNotFound",
    "TransactionStatus",
]
