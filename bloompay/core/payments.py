"""
Payment link service.

Creates the pending transaction and assigns the gateway correlation code in
one database transaction, then calls the gateway. If the gateway call fails
the attempt is compensated: the transaction is marked failed and the code is
cleared so that a new link can be requested. Stock stays reserved.
"""
import random
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bloompay.config import Settings
from bloompay.core.exceptions import (
    DuplicatePaymentLink,
    GatewayError,
    InvalidOrderRequest,
    InvalidStatusTransition,
    OrderNotFound,
)
from bloompay.core.orders import OrderService
from bloompay.core.status import OrderStatus, TransactionStatus
from bloompay.core.transactions import TransactionLedger
from bloompay.database.models import Account, Flower, Order, OrderItem, utcnow
from bloompay.integrations.gateway import (
    PaymentGateway,
    PaymentLinkItem,
    PaymentLinkRequest,
)
from bloompay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MAX_CODE_ATTEMPTS = 3


def generate_payment_code() -> str:
    """
    Numeric gateway order code: last 6 digits of the millisecond clock
    followed by 3 random digits.
    """
    millis = str(int(time.time() * 1000))
    return f"{millis[-6:]}{random.randint(0, 999):03d}"


@dataclass(frozen=True)
class LinkAssignment:
    """Code, transaction and the order contents the code was issued against."""

    payment_code: str
    transaction_id: uuid.UUID
    amount: int
    items: List[PaymentLinkItem]


class PaymentService:
    """Payment link creation, lookup and cancellation."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orders: OrderService,
        transactions: TransactionLedger,
        gateway: PaymentGateway,
        settings: Settings,
    ):
        """
        Initialize payment service.

        Args:
            session_factory: Session factory for the primary database
            orders: Order aggregate
            transactions: Transaction ledger
            gateway: Payment gateway adapter
            settings: Application settings
        """
        self.session_factory = session_factory
        self.orders = orders
        self.transactions = transactions
        self.gateway = gateway
        self.settings = settings

    @property
    def system_account_id(self) -> uuid.UUID:
        return uuid.UUID(self.settings.system_account_id)

    def default_return_url(self) -> str:
        return f"{self.settings.public_base_url}/payments/payment/success"

    def default_cancel_url(self) -> str:
        return f"{self.settings.public_base_url}/payments/payment/cancel"

    @staticmethod
    def _ensure_linkable(order: Order) -> None:
        if order.status != OrderStatus.PENDING.value:
            raise InvalidStatusTransition(
                f"Order is not in pending status. Current status: {order.status}"
            )
        if order.payment_code:
            raise DuplicatePaymentLink("Payment link already exists for this order")

    @staticmethod
    async def _link_items(session: AsyncSession, order_id: uuid.UUID) -> List[PaymentLinkItem]:
        rows = (
            await session.execute(
                select(OrderItem.flower_id, OrderItem.quantity, OrderItem.unit_price, Flower.name)
                .outerjoin(Flower, Flower.id == OrderItem.flower_id)
                .where(OrderItem.order_id == order_id)
                .order_by(OrderItem.created_at)
            )
        ).all()
        return [
            PaymentLinkItem(
                name=row.name or str(row.flower_id),
                quantity=row.quantity,
                price=row.unit_price,
            )
            for row in rows
        ]

    async def _assign_payment_code(self, order: Order) -> LinkAssignment:
        """
        Open a pending transaction and stamp the order with a fresh code.

        The order update is conditional on the order still being pending
        without a code, so two concurrent link requests cannot both win.
        Item edits take the same row lock under the same condition, so the
        total and items read here are the ones the code freezes.

        Raises:
            InvalidOrderRequest: If the order has no items
        """
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            payment_code = generate_payment_code()
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        result = await session.execute(
                            update(Order)
                            .where(
                                Order.id == order.id,
                                Order.status == OrderStatus.PENDING.value,
                                Order.payment_code.is_(None),
                            )
                            .values(payment_code=payment_code, updated_at=utcnow())
                            .returning(Order.total_amount)
                            .execution_options(synchronize_session=False)
                        )
                        amount = result.scalar_one_or_none()
                        if amount is None:
                            self._ensure_linkable(await self.orders.get_order(order.id))
                            raise DuplicatePaymentLink(
                                "Payment link already exists for this order"
                            )

                        items = await self._link_items(session, order.id)
                        if not items:
                            raise InvalidOrderRequest("No order items found")

                        transaction = await self.transactions.open(
                            session,
                            from_account=order.account_id,
                            to_account=self.system_account_id,
                            amount=amount,
                            payment_code=payment_code,
                        )
                        await session.execute(
                            update(Order)
                            .where(Order.id == order.id)
                            .values(transaction_id=transaction.id)
                            .execution_options(synchronize_session=False)
                        )
                        return LinkAssignment(
                            payment_code=payment_code,
                            transaction_id=transaction.id,
                            amount=amount,
                            items=items,
                        )
            except IntegrityError:
                logger.warning(
                    "payment_code_collision",
                    order_id=str(order.id),
                    payment_code=payment_code,
                    attempt=attempt,
                )

        raise GatewayError(
            "Could not allocate a unique payment code, please retry", transient=True
        )

    async def _compensate(
        self, order_id: uuid.UUID, transaction_id: uuid.UUID, payment_code: str
    ) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await self.transactions.transition(
                    session, transaction_id, TransactionStatus.FAILED
                )
                await session.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.payment_code == payment_code)
                    .values(payment_code=None, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
        logger.info(
            "payment_link_compensated",
            order_id=str(order_id),
            transaction_id=str(transaction_id),
        )

    async def create_payment_link(
        self,
        order_id: uuid.UUID,
        return_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a gateway checkout link for a pending order.

        Args:
            order_id: Order to pay
            return_url: Where the gateway sends the browser after payment
            cancel_url: Where the gateway sends the browser on cancellation

        Returns:
            Dict[str, Any]: checkout_url, payment_code, transaction_id,
            order_id, amount, qr_code, payment_link_id

        Raises:
            OrderNotFound: If the order does not exist
            InvalidStatusTransition: If the order is not pending
            DuplicatePaymentLink: If the order already has a payment code
            InvalidOrderRequest: If the order has no items
            GatewayError: If the gateway rejects or fails the request
        """
        order = await self.orders.get_order(order_id)
        self._ensure_linkable(order)

        async with self.session_factory() as session:
            buyer = await session.get(Account, order.account_id)

        assignment = await self._assign_payment_code(order)
        payment_code = assignment.payment_code
        transaction_id = assignment.transaction_id
        request = PaymentLinkRequest(
            order_code=int(payment_code),
            amount=assignment.amount,
            description=f"Order {payment_code}",
            return_url=return_url or self.default_return_url(),
            cancel_url=cancel_url or self.default_cancel_url(),
            items=assignment.items,
            buyer_name=buyer.full_name if buyer else None,
            buyer_email=buyer.email if buyer else None,
            buyer_phone=buyer.phone if buyer else None,
        )

        try:
            link = await self.gateway.create_payment_link(request)
        except GatewayError as e:
            metrics.record_payment_link("gateway_error")
            logger.error(
                "payment_link_creation_failed",
                order_id=str(order_id),
                payment_code=payment_code,
                error=e.message,
            )
            await self._compensate(order_id, transaction_id, payment_code)
            raise

        metrics.record_payment_link("created")
        logger.info(
            "payment_link_ready",
            order_id=str(order_id),
            payment_code=payment_code,
            transaction_id=str(transaction_id),
            amount=assignment.amount,
        )
        return {
            "checkout_url": link.checkout_url,
            "payment_code": payment_code,
            "transaction_id": transaction_id,
            "order_id": order_id,
            "amount": assignment.amount,
            "qr_code": link.qr_code,
            "payment_link_id": link.payment_link_id,
        }

    async def get_payment_link_info(self, payment_code: str) -> Dict[str, Any]:
        """Gateway's view of a payment link."""
        return await self.gateway.get_payment_link(payment_code)

    async def cancel_payment_link(
        self, payment_code: str, reason: str = "Customer request"
    ) -> Dict[str, Any]:
        """
        Cancel a payment link at the gateway and mirror it locally.

        The transaction moves to cancelled unless it already completed. The
        order is cancelled only if it is still pending.

        Raises:
            GatewayError: If the gateway cancellation fails
        """
        result = await self.gateway.cancel_payment_link(payment_code, reason)

        try:
            order = await self.orders.get_order_by_payment_code(payment_code)
        except OrderNotFound:
            logger.warning("cancelled_link_without_order", payment_code=payment_code)
            return result

        order_cancelled = False
        async with self.session_factory() as session:
            async with session.begin():
                if order.transaction_id is not None:
                    await self.transactions.transition(
                        session, order.transaction_id, TransactionStatus.CANCELLED
                    )
                moved = await session.execute(
                    update(Order)
                    .where(Order.id == order.id, Order.status == OrderStatus.PENDING.value)
                    .values(status=OrderStatus.CANCELLED.value, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                order_cancelled = moved.rowcount == 1
                if order_cancelled and self.settings.release_stock_on_cancel:
                    await self.orders.release_reserved_stock(session, order.id)

        if order_cancelled:
            metrics.record_order_status_change(OrderStatus.CANCELLED.value, "cancellation")
        logger.info(
            "payment_link_cancelled",
            payment_code=payment_code,
            order_id=str(order.id),
            order_cancelled=order_cancelled,
            reason=reason,
        )
        return result
