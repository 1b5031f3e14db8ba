"""
Reconciliation of gateway payment outcomes into local order state.

Both inbound channels (the browser redirect and the gateway webhook) funnel
into ``ReconciliationEngine.reconcile``. They may arrive in either order, any
number of times, or not at all. The merge is idempotent because every write
is a compare-and-swap on the transaction status:

- ``completed`` is sticky: repeated PAID reports short-circuit.
- ``cancelled`` is sticky: a PAID report after cancellation is not applied
  and is surfaced for manual review.
- ``failed`` only replaces ``pending``.

Lock order is the transaction row first, then the order row. The timeout
reaper takes the same order, so the two never deadlock.
"""
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bloompay.core.exceptions import TransactionNotFound
from bloompay.core.orders import OrderService
from bloompay.core.status import OrderStatus, PaymentOutcome, TransactionStatus
from bloompay.core.transactions import TransactionLedger
from bloompay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

SUCCESS_CODE = "00"


def _parse_amount(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").lower() == "true"


@dataclass(frozen=True)
class GatewayReport:
    """Raw outcome fields reported by the gateway on either channel."""

    code: Optional[str] = None
    status: Optional[str] = None
    cancel: bool = False
    amount: Optional[int] = None

    def classify(self) -> PaymentOutcome:
        """
        Map raw gateway fields onto a payment outcome.

        PAID needs both the success code and a PAID status. An explicit
        cancel flag or a CANCELLED status means CANCELLED. Anything else is
        FAILED.
        """
        status = (self.status or "").upper()
        if self.code == SUCCESS_CODE and status == PaymentOutcome.PAID.value:
            return PaymentOutcome.PAID
        if self.cancel or status == PaymentOutcome.CANCELLED.value:
            return PaymentOutcome.CANCELLED
        return PaymentOutcome.FAILED

    @classmethod
    def from_redirect(cls, params: Mapping[str, Any]) -> "GatewayReport":
        """Build a report from redirect query parameters."""
        return cls(
            code=params.get("code"),
            status=params.get("status"),
            cancel=_parse_flag(params.get("cancel")),
            amount=_parse_amount(params.get("amount")),
        )

    @classmethod
    def from_webhook(cls, fields: Mapping[str, Any]) -> "GatewayReport":
        """
        Build a report from verified webhook fields.

        A missing result code means the gateway's success sentinel; the
        webhook only carries an explicit code when something went wrong.
        """
        code = fields.get("code")
        return cls(
            code=SUCCESS_CODE if code is None else str(code),
            status=fields.get("status"),
            cancel=_parse_flag(fields.get("cancel")),
            amount=_parse_amount(fields.get("amount")),
        )


@dataclass(frozen=True)
class ReconciliationResult:
    """Structured outcome handed back to the redirect or webhook caller."""

    success: bool
    message: str
    order_id: uuid.UUID
    order_code: str
    status: str
    transaction_id: Optional[uuid.UUID] = None
    transaction_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "order_id": str(self.order_id),
            "order_code": self.order_code,
            "status": self.status,
            "transaction_id": str(self.transaction_id) if self.transaction_id else None,
            "transaction_status": self.transaction_status,
        }


class ReconciliationEngine:
    """Idempotent merge of gateway outcomes into transactions and orders."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orders: OrderService,
        transactions: TransactionLedger,
    ):
        """
        Initialize reconciliation engine.

        Args:
            session_factory: Session factory for the primary database
            orders: Order aggregate (sole path into ``paid``)
            transactions: Transaction ledger
        """
        self.session_factory = session_factory
        self.orders = orders
        self.transactions = transactions

    async def reconcile(
        self, order_code: str, report: GatewayReport, channel: str = "redirect"
    ) -> ReconciliationResult:
        """
        Merge one gateway report into local state.

        Args:
            order_code: Gateway order code (the order's payment code)
            report: Raw gateway fields
            channel: ``redirect`` or ``webhook``, for logs and metrics

        Returns:
            ReconciliationResult: What is now true about the payment

        Raises:
            OrderNotFound: If no order carries the code
            TransactionNotFound: If the order has no linked transaction
        """
        order_code = str(order_code)
        order = await self.orders.get_order_by_payment_code(order_code)
        outcome = report.classify()

        log = logger.bind(
            order_code=order_code,
            order_id=str(order.id),
            channel=channel,
            outcome=outcome.value,
        )

        if order.transaction_id is None:
            log.error("reconciliation_missing_transaction")
            raise TransactionNotFound(f"Order {order.id} has no payment transaction")
        transaction = await self.transactions.get_transaction(order.transaction_id)

        if report.amount is not None and report.amount != transaction.amount:
            log.warning(
                "reconciliation_amount_mismatch",
                reported_amount=report.amount,
                expected_amount=transaction.amount,
            )

        def result(
            success: bool, message: str, status: PaymentOutcome, txn_status: str, label: str
        ) -> ReconciliationResult:
            metrics.record_reconciliation(channel, outcome.value, label)
            return ReconciliationResult(
                success=success,
                message=message,
                order_id=order.id,
                order_code=order_code,
                status=status.value,
                transaction_id=transaction.id,
                transaction_status=txn_status,
            )

        if transaction.status == TransactionStatus.COMPLETED.value:
            log.info("reconciliation_already_completed")
            return result(
                True,
                "Payment already completed",
                PaymentOutcome.PAID,
                TransactionStatus.COMPLETED.value,
                "duplicate",
            )

        if outcome == PaymentOutcome.PAID:
            return await self._apply_paid(order.id, transaction.id, log, result)
        if outcome == PaymentOutcome.CANCELLED:
            return await self._apply_cancelled(transaction.id, log, result)
        return await self._apply_failed(transaction.id, report, log, result)

    async def _apply_paid(self, order_id, transaction_id, log, result) -> ReconciliationResult:
        async with self.session_factory() as session:
            async with session.begin():
                moved = await self.transactions.transition(
                    session, transaction_id, TransactionStatus.COMPLETED
                )
                if not moved:
                    current = await self.transactions.current_status(session, transaction_id)
                    if current == TransactionStatus.COMPLETED:
                        log.info("reconciliation_already_completed")
                        return result(
                            True,
                            "Payment already completed",
                            PaymentOutcome.PAID,
                            current.value,
                            "duplicate",
                        )
                    log.error(
                        "payment_received_after_cancellation",
                        transaction_id=str(transaction_id),
                        transaction_status=current.value,
                    )
                    return result(
                        False,
                        "Payment was reported after the payment was cancelled; "
                        "manual review required",
                        PaymentOutcome.CANCELLED,
                        current.value,
                        "late_after_cancel",
                    )

                order_paid = await self.orders.update_payment_status(
                    session, order_id, transaction_id
                )

        log.info("payment_completed", transaction_id=str(transaction_id), order_paid=order_paid)
        if not order_paid:
            order = await self.orders.get_order(order_id)
            log.error(
                "payment_completed_for_non_pending_order",
                transaction_id=str(transaction_id),
                order_status=order.status,
            )
            return result(
                False,
                f"Payment was received but the order is {order.status}; "
                "manual review required",
                PaymentOutcome.PAID,
                TransactionStatus.COMPLETED.value,
                "needs_review",
            )

        metrics.record_order_status_change(OrderStatus.PAID.value, "reconciliation")
        return result(
            True,
            "Payment completed successfully",
            PaymentOutcome.PAID,
            TransactionStatus.COMPLETED.value,
            "applied",
        )

    async def _apply_cancelled(self, transaction_id, log, result) -> ReconciliationResult:
        async with self.session_factory() as session:
            async with session.begin():
                moved = await self.transactions.transition(
                    session, transaction_id, TransactionStatus.CANCELLED
                )
                current = (
                    TransactionStatus.CANCELLED
                    if moved
                    else await self.transactions.current_status(session, transaction_id)
                )

        if current == TransactionStatus.COMPLETED:
            log.info("reconciliation_already_completed")
            return result(
                True,
                "Payment already completed",
                PaymentOutcome.PAID,
                current.value,
                "duplicate",
            )

        log.info("payment_cancelled", transaction_id=str(transaction_id), applied=moved)
        return result(
            False,
            "Payment was cancelled by user",
            PaymentOutcome.CANCELLED,
            current.value,
            "applied" if moved else "noop",
        )

    async def _apply_failed(self, transaction_id, report, log, result) -> ReconciliationResult:
        async with self.session_factory() as session:
            async with session.begin():
                moved = await self.transactions.transition(
                    session, transaction_id, TransactionStatus.FAILED
                )
                current = (
                    TransactionStatus.FAILED
                    if moved
                    else await self.transactions.current_status(session, transaction_id)
                )

        if current == TransactionStatus.COMPLETED:
            return result(
                True,
                "Payment already completed",
                PaymentOutcome.PAID,
                current.value,
                "duplicate",
            )

        log.info(
            "payment_failed",
            transaction_id=str(transaction_id),
            code=report.code,
            gateway_status=report.status,
            applied=moved,
        )
        return result(
            False,
            f"Payment failed with code: {report.code}",
            PaymentOutcome.FAILED,
            current.value,
            "applied" if moved else "noop",
        )
