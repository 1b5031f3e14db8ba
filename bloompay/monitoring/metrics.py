"""
Prometheus metrics for order and payment monitoring.

Tracks:
- Orders created and stock reservation failures
- Payment links created
- Payment gateway calls, errors and circuit breaker state
- Webhook events
- Reconciliation outcomes per channel
- Payment timeout cancellations
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total number of orders created",
)

order_amount = Histogram(
    "order_amount",
    "Order total amounts in the settlement currency",
    buckets=(10_000, 50_000, 100_000, 200_000, 500_000, 1_000_000, 2_000_000, 5_000_000),
)

order_status_changes_total = Counter(
    "order_status_changes_total",
    "Total order status changes",
    ["status", "source"],  # source: manual, reconciliation, timeout, cancellation
)

# Stock metrics
stock_reservation_failures_total = Counter(
    "stock_reservation_failures_total",
    "Total failed stock reservations",
    ["reason"],  # insufficient_stock, flower_not_found
)

# Payment link metrics
payment_links_created_total = Counter(
    "payment_links_created_total",
    "Total payment link creation attempts",
    ["status"],  # created, gateway_error
)

# Gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway requests",
    ["operation", "status"],
)

gateway_errors_total = Counter(
    "gateway_errors_total",
    "Total payment gateway errors",
    ["error_type"],  # transient, permanent
)

gateway_duration_seconds = Histogram(
    "gateway_duration_seconds",
    "Payment gateway call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

gateway_circuit_breaker_state = Gauge(
    "gateway_circuit_breaker_state",
    "Gateway circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Webhook metrics
webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["status"],  # success, invalid_signature, failed
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Reconciliation metrics
reconciliation_outcomes_total = Counter(
    "reconciliation_outcomes_total",
    "Total reconciliation results",
    ["channel", "outcome", "result"],  # channel: redirect, webhook
)

# Payment timeout metrics
payment_timeout_cancellations_total = Counter(
    "payment_timeout_cancellations_total",
    "Total orders cancelled because payment timed out",
)

payment_timeout_sweep_duration_seconds = Histogram(
    "payment_timeout_sweep_duration_seconds",
    "Payment timeout sweep duration in seconds",
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0),
)

payment_timeout_last_run_timestamp = Gauge(
    "payment_timeout_last_run_timestamp",
    "Timestamp of last payment timeout sweep",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order_created(total_amount: int) -> None:
        """Record an order creation."""
        orders_created_total.inc()
        order_amount.observe(total_amount)

    @staticmethod
    def record_order_status_change(status: str, source: str) -> None:
        """Record an order status change."""
        order_status_changes_total.labels(status=status, source=source).inc()

    @staticmethod
    def record_stock_reservation_failure(reason: str) -> None:
        """Record a failed stock reservation."""
        stock_reservation_failures_total.labels(reason=reason).inc()

    @staticmethod
    def record_payment_link(status: str) -> None:
        """Record a payment link creation attempt."""
        payment_links_created_total.labels(status=status).inc()

    @staticmethod
    def record_gateway_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a payment gateway call."""
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_gateway_error(error_type: str) -> None:
        """Record a payment gateway error."""
        gateway_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        gateway_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_webhook_event(status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_processed_total.labels(status=status).inc()
        webhook_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_reconciliation(channel: str, outcome: str, result: str) -> None:
        """Record a reconciliation result."""
        reconciliation_outcomes_total.labels(
            channel=channel, outcome=outcome, result=result
        ).inc()

    @staticmethod
    def record_timeout_sweep(cancelled: int, duration_seconds: float) -> None:
        """Record a payment timeout sweep."""
        payment_timeout_cancellations_total.inc(cancelled)
        payment_timeout_sweep_duration_seconds.observe(duration_seconds)
        payment_timeout_last_run_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
