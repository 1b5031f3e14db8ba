"""
Typed error taxonomy for the order and payment core.

Every error carries a stable ``error_code`` for clients. The HTTP status for
each error kind lives in ``bloompay.api.errors``; nothing in the core knows
about transport codes.
"""
from typing import Any, Dict, Optional


class BloomPayError(Exception):
    """Base exception for all order/payment core errors."""

    error_code = "bloompay_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "success": False,
            "message": self.message,
            "error": self.error_code,
        }


class InsufficientStock(BloomPayError):
    """Requested quantity exceeds the flower's available stock."""

    error_code = "insufficient_stock"

    def __init__(self, flower_id: Any, available: int, requested: int, name: Optional[str] = None):
        label = name or str(flower_id)
        super().__init__(
            f"Not enough stock for flower {label}. "
            f"Available: {available}, Requested: {requested}",
            flower_id=str(flower_id),
            available=available,
            requested=requested,
        )
        self.flower_id = flower_id
        self.available = available
        self.requested = requested


class FlowerNotFound(BloomPayError):
    """Flower does not exist or is no longer for sale."""

    error_code = "flower_not_found"

    def __init__(self, flower_id: Any):
        super().__init__(f"Flower with ID {flower_id} not found", flower_id=str(flower_id))
        self.flower_id = flower_id


class OrderNotFound(BloomPayError):
    """No order matches the given id or payment code."""

    error_code = "order_not_found"


class OrderItemNotFound(BloomPayError):
    """No order item matches the given id."""

    error_code = "order_item_not_found"


class TransactionNotFound(BloomPayError):
    """Order has no linked transaction, or the transaction row is gone."""

    error_code = "transaction_not_found"


class PermissionDenied(BloomPayError):
    """Acting account may not perform the operation."""

    error_code = "permission_denied"


class DuplicatePaymentLink(BloomPayError):
    """Order already has a payment code."""

    error_code = "duplicate_payment_link"


class InvalidSignature(BloomPayError):
    """Webhook payload failed gateway signature verification."""

    error_code = "invalid_signature"


class InvalidWebhookPayload(BloomPayError):
    """Webhook body does not have the gateway's webhook shape."""

    error_code = "invalid_payload"


class GatewayError(BloomPayError):
    """Payment gateway call failed."""

    error_code = "gateway_error"

    def __init__(
        self,
        message: str,
        transient: bool = False,
        original_error: Optional[Exception] = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.transient = transient
        self.original_error = original_error


class InvalidStatus(BloomPayError):
    """Status value is not a member of the status enum."""

    error_code = "invalid_status"


class InvalidStatusTransition(BloomPayError):
    """Status change is not allowed from the current state."""

    error_code = "invalid_status_transition"


class InvalidOrderRequest(BloomPayError):
    """Order input failed validation (empty items, bad quantity, ...)."""

    error_code = "invalid_order_request"
