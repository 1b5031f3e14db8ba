"""Background workers for async processing."""
from .payment_timeout import PaymentTimeoutReaper, start_payment_timeout_worker

__all__ = ["PaymentTimeoutReaper", "start_payment_timeout_worker"]
