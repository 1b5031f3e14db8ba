"""
Payment gateway boundary.

The core only talks to the gateway through ``PaymentGateway``. The concrete
PayOS adapter lives in ``payos_client`` and wraps the payOS SDK; tests plug
in fakes.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class PaymentLinkItem:
    """One line shown on the gateway's checkout page."""

    name: str
    quantity: int
    price: int


@dataclass(frozen=True)
class PaymentLinkRequest:
    """Everything the gateway needs to create a checkout link."""

    order_code: int
    amount: int
    description: str
    return_url: str
    cancel_url: str
    items: List[PaymentLinkItem] = field(default_factory=list)
    buyer_name: Optional[str] = None
    buyer_email: Optional[str] = None
    buyer_phone: Optional[str] = None


@dataclass(frozen=True)
class PaymentLink:
    """Checkout link returned by the gateway."""

    checkout_url: str
    qr_code: Optional[str] = None
    payment_link_id: Optional[str] = None


@runtime_checkable
class PaymentGateway(Protocol):
    """
    Operations the order core needs from a payment gateway.

    Implementations raise ``GatewayError`` for every failure, with
    ``transient`` set when the call may succeed if repeated later.
    """

    async def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        ...

    async def verify_webhook(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Return the signed payment fields, or raise InvalidSignature."""
        ...

    async def get_payment_link(self, order_code: str) -> Dict[str, Any]:
        ...

    async def cancel_payment_link(self, order_code: str, reason: str) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        ...
