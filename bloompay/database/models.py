"""SQLAlchemy database models for the flower order and payment core."""
import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from bloompay.core.status import OrderStatus, TransactionStatus


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def _status_check(column: str, statuses: type, name: str) -> CheckConstraint:
    values = ", ".join(f"'{status.value}'" for status in statuses)
    return CheckConstraint(f"{column} IN ({values})", name=name)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Account(Base):
    """
    Customer and staff accounts.

    Only the fields the order core needs: identity, contact details for the
    payment page and the role used to authorize order status changes.
    """

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'user', 'seller', 'shipper')", name="valid_account_role"
        ),
    )

    def __repr__(self) -> str:
        """String representation of Account."""
        return f"<Account(id={self.id}, role={self.role})>"


class Flower(Base):
    """
    Flowers for sale and their available stock.

    ``stock`` is the stock ledger counter. It is only ever changed through a
    single conditional UPDATE, and the CHECK constraint is the last line of
    defence against it going negative.
    """

    __tablename__ = "flowers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("price >= 0", name="non_negative_price"),
        CheckConstraint("stock >= 0", name="non_negative_stock"),
    )

    def __repr__(self) -> str:
        """String representation of Flower."""
        return f"<Flower(id={self.id}, name={self.name}, stock={self.stock})>"


class Transaction(Base):
    """
    Payment attempt ledger.

    One row per payment attempt. Referenced by an order through
    ``orders.transaction_id`` but not owned by it, so it outlives order
    changes and feeds statistics.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    from_account: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    to_account: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.PENDING.value, index=True
    )
    payment_code: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="non_negative_transaction_amount"),
        _status_check("status", TransactionStatus, "valid_transaction_status"),
    )

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(id={self.id}, amount={self.amount}, status={self.status})>"
        )


class Order(Base):
    """
    Customer orders.

    ``payment_code`` is the gateway correlation key: unique, sparse, and set
    at most once per payment attempt.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False, index=True
    )
    shipping_address: Mapped[str] = mapped_column(Text, nullable=False)
    shipping_fee: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.PENDING.value, index=True
    )
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=True
    )
    payment_code: Mapped[str | None] = mapped_column(String(20), nullable=True, unique=True)
    order_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
        lazy="selectin",
    )
    transaction: Mapped[Transaction | None] = relationship(lazy="selectin")

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="non_negative_total"),
        CheckConstraint("shipping_fee >= 0", name="non_negative_shipping_fee"),
        _status_check("status", OrderStatus, "valid_order_status"),
        Index("idx_orders_status_order_at", "status", "order_at"),
    )

    def __repr__(self) -> str:
        """String representation of Order."""
        return (
            f"<Order(id={self.id}, total={self.total_amount}, status={self.status}, "
            f"payment_code={self.payment_code})>"
        )


class OrderItem(Base):
    """
    Order line items.

    ``unit_price`` is the flower price at the time of purchase; later price
    changes on the flower never reach historical orders.
    """

    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    flower_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("flowers.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    order: Mapped[Order] = relationship(back_populates="items")
    flower: Mapped[Flower] = relationship(lazy="selectin")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="positive_quantity"),
        CheckConstraint("unit_price >= 0", name="non_negative_unit_price"),
    )

    @property
    def line_total(self) -> int:
        """Snapshot price times quantity."""
        return self.unit_price * self.quantity

    def __repr__(self) -> str:
        """String representation of OrderItem."""
        return (
            f"<OrderItem(id={self.id}, flower_id={self.flower_id}, "
            f"quantity={self.quantity}, unit_price={self.unit_price})>"
        )
