"""
Order aggregate: creation with stock reservation, status changes and
line item maintenance.

Every write runs inside a single database transaction. Stock reservations
made through the StockLedger join that transaction, so a failure on any line
rolls back the reservations already made for the earlier lines.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bloompay.config import Settings
from bloompay.core.exceptions import (
    InvalidOrderRequest,
    InvalidStatusTransition,
    OrderItemNotFound,
    OrderNotFound,
    PermissionDenied,
)
from bloompay.core.status import (
    MANUAL_ORDER_TARGETS,
    OrderStatus,
    ensure_order_transition,
    parse_order_status,
)
from bloompay.core.stock import StockLedger
from bloompay.database.models import Account, Order, OrderItem, utcnow
from bloompay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# Roles allowed to change the status of orders they do not own.
STAFF_ROLES = frozenset({"admin", "seller"})


@dataclass(frozen=True)
class OrderLine:
    """One requested line of a new order."""

    flower_id: uuid.UUID
    quantity: int


class OrderService:
    """
    Order aggregate operations.

    Features:
    - All-or-nothing order creation (stock reserved per line, same transaction)
    - Price snapshot per line item
    - Authorized manual status changes along the transition table
    - Conditional ``pending → paid`` for the reconciliation engine
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        stock: StockLedger,
        settings: Settings,
    ):
        """
        Initialize order service.

        Args:
            session_factory: Session factory for the primary database
            stock: Stock ledger used for reservations
            settings: Application settings
        """
        self.session_factory = session_factory
        self.stock = stock
        self.settings = settings

    @staticmethod
    def _validate_new_order(
        items: Sequence[OrderLine], shipping_address: str, shipping_fee: int
    ) -> None:
        if not items:
            raise InvalidOrderRequest("Order must contain at least one item")
        for line in items:
            if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity < 1:
                raise InvalidOrderRequest(
                    f"Quantity must be a positive integer, got {line.quantity!r}"
                )
        if isinstance(shipping_fee, bool) or not isinstance(shipping_fee, int) or shipping_fee < 0:
            raise InvalidOrderRequest("Shipping fee must be a non-negative integer")
        if not shipping_address or not shipping_address.strip():
            raise InvalidOrderRequest("Shipping address is required")

    async def create_order(
        self,
        account_id: uuid.UUID,
        items: Sequence[OrderLine],
        shipping_address: str,
        shipping_fee: int = 0,
    ) -> Order:
        """
        Create a pending order, reserving stock for every line.

        Args:
            account_id: Ordering account
            items: Requested lines
            shipping_address: Delivery address
            shipping_fee: Flat shipping fee

        Returns:
            Order: The committed order with items and flowers loaded

        Raises:
            InvalidOrderRequest: If the input is malformed
            FlowerNotFound: If a flower is missing or inactive
            InsufficientStock: If any line cannot be reserved
        """
        self._validate_new_order(items, shipping_address, shipping_fee)

        async with self.session_factory() as session:
            async with session.begin():
                order_items: List[OrderItem] = []
                for line in items:
                    unit_price = await self.stock.reserve(session, line.flower_id, line.quantity)
                    order_items.append(
                        OrderItem(
                            flower_id=line.flower_id,
                            quantity=line.quantity,
                            unit_price=unit_price,
                        )
                    )

                subtotal = sum(item.line_total for item in order_items)
                now = utcnow()
                order = Order(
                    account_id=account_id,
                    shipping_address=shipping_address.strip(),
                    shipping_fee=shipping_fee,
                    total_amount=subtotal + shipping_fee,
                    status=OrderStatus.PENDING.value,
                    order_at=now,
                    created_at=now,
                    updated_at=now,
                    items=order_items,
                )
                session.add(order)
                await session.flush()
                order_id = order.id
                total_amount = order.total_amount

        metrics.record_order_created(total_amount)
        logger.info(
            "order_created",
            order_id=str(order_id),
            account_id=str(account_id),
            total_amount=total_amount,
            line_count=len(items),
        )
        return await self.get_order(order_id)

    async def get_order(self, order_id: uuid.UUID) -> Order:
        """
        Get an order with its items, flowers and transaction loaded.

        Raises:
            OrderNotFound: If the order does not exist
        """
        async with self.session_factory() as session:
            order = await session.get(Order, order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    async def get_order_by_payment_code(self, payment_code: str) -> Order:
        """
        Get the order correlated with a gateway payment code.

        Raises:
            OrderNotFound: If no order carries the code
        """
        async with self.session_factory() as session:
            order = (
                await session.execute(select(Order).where(Order.payment_code == payment_code))
            ).scalar_one_or_none()
        if order is None:
            raise OrderNotFound(f"Order with payment code {payment_code} not found")
        return order

    async def list_orders(
        self,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        account_id: Optional[uuid.UUID] = None,
    ) -> List[Order]:
        """
        List orders, newest first.

        Raises:
            InvalidStatus: If ``status`` is not an order status
        """
        stmt = select(Order).order_by(Order.order_at.desc())
        if status is not None:
            stmt = stmt.where(Order.status == parse_order_status(status).value)
        if start_date is not None:
            stmt = stmt.where(Order.order_at >= start_date)
        if end_date is not None:
            stmt = stmt.where(Order.order_at <= end_date)
        if account_id is not None:
            stmt = stmt.where(Order.account_id == account_id)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_order_status(
        self,
        order_id: uuid.UUID,
        new_status: str,
        acting_account_id: uuid.UUID,
    ) -> Order:
        """
        Change an order's status on behalf of an account.

        The owner, admins and sellers may change an order's status. ``paid``
        is never a manual target. Requesting the current status is a no-op.

        Raises:
            InvalidStatus: If ``new_status`` is not an order status
            OrderNotFound: If the order does not exist
            PermissionDenied: If the account may not change this order
            InvalidStatusTransition: If the edge is not allowed, or the order
                changed status while this request was in flight
        """
        target = parse_order_status(new_status)

        async with self.session_factory() as session:
            async with session.begin():
                order = await session.get(Order, order_id)
                if order is None:
                    raise OrderNotFound(f"Order {order_id} not found")

                account = await session.get(Account, acting_account_id)
                if account is None or (
                    account.id != order.account_id and account.role not in STAFF_ROLES
                ):
                    logger.warning(
                        "order_status_update_denied",
                        order_id=str(order_id),
                        acting_account_id=str(acting_account_id),
                    )
                    raise PermissionDenied(
                        "You don't have permission to update this order's status"
                    )

                current = OrderStatus(order.status)
                if current == target:
                    return order

                if target not in MANUAL_ORDER_TARGETS:
                    raise InvalidStatusTransition(
                        "Orders become paid only through payment confirmation"
                    )
                ensure_order_transition(current, target)

                result = await session.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.status == current.value)
                    .values(status=target.value, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise InvalidStatusTransition(
                        f"Order {order_id} changed status concurrently, please retry"
                    )

                if target == OrderStatus.CANCELLED and self.settings.release_stock_on_cancel:
                    await self.release_reserved_stock(session, order_id)

        metrics.record_order_status_change(target.value, "manual")
        logger.info(
            "order_status_updated",
            order_id=str(order_id),
            from_status=current.value,
            to_status=target.value,
            acting_account_id=str(acting_account_id),
        )
        return await self.get_order(order_id)

    async def update_payment_status(
        self, session: AsyncSession, order_id: uuid.UUID, transaction_id: uuid.UUID
    ) -> bool:
        """
        Mark a pending order as paid by the given transaction.

        Only the reconciliation engine calls this, inside its own database
        transaction.

        Returns:
            bool: True if the order moved to paid, False if it was no longer pending
        """
        now = utcnow()
        result = await session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
            .values(
                status=OrderStatus.PAID.value,
                paid_at=now,
                transaction_id=transaction_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_reserved_stock(self, session: AsyncSession, order_id: uuid.UUID) -> None:
        """Return every line of an order to stock, inside the caller's transaction."""
        rows = (
            await session.execute(
                select(OrderItem.flower_id, OrderItem.quantity).where(
                    OrderItem.order_id == order_id
                )
            )
        ).all()
        for row in rows:
            await self.stock.release(session, row.flower_id, row.quantity)
        logger.info("order_stock_released", order_id=str(order_id), line_count=len(rows))

    # Line item maintenance

    async def _lock_editable_order(
        self, session: AsyncSession, order_id_clause, not_found: Exception
    ) -> uuid.UUID:
        """
        Touch the order row if its items may still change.

        The conditional update is the first statement of the transaction so
        that it takes the row's write lock before any stock moves. Items are
        editable only while the order is pending and has no payment link.
        """
        result = await session.execute(
            update(Order)
            .where(
                Order.id == order_id_clause,
                Order.status == OrderStatus.PENDING.value,
                Order.payment_code.is_(None),
            )
            .values(updated_at=utcnow())
            .returning(Order.id)
            .execution_options(synchronize_session=False)
        )
        order_id = result.scalar_one_or_none()
        if order_id is not None:
            return order_id

        order = (
            await session.execute(select(Order.id).where(Order.id == order_id_clause))
        ).scalar_one_or_none()
        if order is None:
            raise not_found
        raise InvalidStatusTransition(
            "Order items can only be changed while the order is pending and unpaid"
        )

    async def _recompute_total(self, session: AsyncSession, order_id: uuid.UUID) -> None:
        subtotal = (
            await session.execute(
                select(
                    func.coalesce(func.sum(OrderItem.unit_price * OrderItem.quantity), 0)
                ).where(OrderItem.order_id == order_id)
            )
        ).scalar_one()
        await session.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(total_amount=int(subtotal) + Order.shipping_fee)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _item_order_id(item_id: uuid.UUID):
        return select(OrderItem.order_id).where(OrderItem.id == item_id).scalar_subquery()

    async def add_order_item(
        self, order_id: uuid.UUID, flower_id: uuid.UUID, quantity: int
    ) -> Order:
        """
        Add a line to a pending order.

        Raises:
            OrderNotFound: If the order does not exist
            InvalidStatusTransition: If the order's items can no longer change
            FlowerNotFound: If the flower is missing or inactive
            InsufficientStock: If the quantity cannot be reserved
        """
        async with self.session_factory() as session:
            async with session.begin():
                await self._lock_editable_order(
                    session, order_id, OrderNotFound(f"Order {order_id} not found")
                )
                unit_price = await self.stock.reserve(session, flower_id, quantity)
                session.add(
                    OrderItem(
                        order_id=order_id,
                        flower_id=flower_id,
                        quantity=quantity,
                        unit_price=unit_price,
                    )
                )
                await session.flush()
                await self._recompute_total(session, order_id)

        logger.info(
            "order_item_added",
            order_id=str(order_id),
            flower_id=str(flower_id),
            quantity=quantity,
        )
        return await self.get_order(order_id)

    async def update_order_item(self, item_id: uuid.UUID, quantity: int) -> Order:
        """
        Change the quantity of a line on a pending order.

        An increase reserves the difference; a decrease releases it. The line
        keeps its original price snapshot.

        Raises:
            OrderItemNotFound: If the line does not exist
            InvalidStatusTransition: If the order's items can no longer change
            InsufficientStock: If an increase cannot be reserved
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidOrderRequest(f"Quantity must be a positive integer, got {quantity!r}")

        async with self.session_factory() as session:
            async with session.begin():
                order_id = await self._lock_editable_order(
                    session,
                    self._item_order_id(item_id),
                    OrderItemNotFound(f"Order item {item_id} not found"),
                )
                item = await session.get(OrderItem, item_id)
                if item is None:
                    raise OrderItemNotFound(f"Order item {item_id} not found")

                delta = quantity - item.quantity
                if delta > 0:
                    await self.stock.reserve(session, item.flower_id, delta)
                elif delta < 0:
                    await self.stock.release(session, item.flower_id, -delta)

                item.quantity = quantity
                await session.flush()
                await self._recompute_total(session, order_id)

        logger.info(
            "order_item_updated",
            order_id=str(order_id),
            item_id=str(item_id),
            quantity=quantity,
            delta=delta,
        )
        return await self.get_order(order_id)

    async def delete_order_item(self, item_id: uuid.UUID) -> Order:
        """
        Remove a line from a pending order and return its units to stock.

        Raises:
            OrderItemNotFound: If the line does not exist
            InvalidStatusTransition: If the order's items can no longer change
        """
        async with self.session_factory() as session:
            async with session.begin():
                order_id = await self._lock_editable_order(
                    session,
                    self._item_order_id(item_id),
                    OrderItemNotFound(f"Order item {item_id} not found"),
                )
                item = await session.get(OrderItem, item_id)
                if item is None:
                    raise OrderItemNotFound(f"Order item {item_id} not found")

                await self.stock.release(session, item.flower_id, item.quantity)
                await session.delete(item)
                await session.flush()
                await self._recompute_total(session, order_id)

        logger.info("order_item_deleted", order_id=str(order_id), item_id=str(item_id))
        return await self.get_order(order_id)
