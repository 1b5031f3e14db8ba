"""External integrations for payment processing."""
from .gateway import PaymentGateway, PaymentLink, PaymentLinkItem, PaymentLinkRequest
from .payos_client import CircuitBreaker, PayOSClient
from .webhook_handler import WebhookError, WebhookHandler

__all__ = [
    "CircuitBreaker",
    "PayOSClient",
    "PaymentGateway",
    "PaymentLink",
    "PaymentLinkItem",
    "PaymentLinkRequest",
    "WebhookError",
    "WebhookHandler",
]
