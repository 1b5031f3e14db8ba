"""
Order and transaction status types with their transition tables.

Order state machine:
    PENDING → PAID → CONFIRMED → SHIPPED → DELIVERED
       │  └──────────↗    │
       └──→ CANCELLED ←───┘ (from pending, paid or confirmed)

Transaction state machine:
    PENDING → COMPLETED
       │  ↘      ↑
       │   FAILED
       ↓     ↓
      CANCELLED

Every status write in the system is a conditional update whose WHERE clause
is built from ``sources_for``, so an illegal edge can never be written even
when two writers race.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Mapping, TypeVar

from bloompay.core.exceptions import InvalidStatus, InvalidStatusTransition


class OrderStatus(str, Enum):
    """Order lifecycle states."""

    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class TransactionStatus(str, Enum):
    """Payment attempt states."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentOutcome(str, Enum):
    """Outcome reported by the payment gateway, as seen by reconciliation."""

    PAID = "PAID"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.PAID, OrderStatus.CONFIRMED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PAID: frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.CANCELLED}
    ),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TRANSACTION_TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELLED}
    ),
    TransactionStatus.FAILED: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.CANCELLED}
    ),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
}

# Only the payment reconciliation path may move an order into PAID.
MANUAL_ORDER_TARGETS: FrozenSet[OrderStatus] = frozenset(OrderStatus) - {OrderStatus.PAID}

S = TypeVar("S", OrderStatus, TransactionStatus)


def parse_order_status(value: str | OrderStatus) -> OrderStatus:
    """Parse an order status, raising InvalidStatus for unknown values."""
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatus(
            f"Invalid order status: {value!r}. "
            f"Must be one of: {[s.value for s in OrderStatus]}"
        )


def parse_transaction_status(value: str | TransactionStatus) -> TransactionStatus:
    """Parse a transaction status, raising InvalidStatus for unknown values."""
    try:
        return TransactionStatus(value)
    except ValueError:
        raise InvalidStatus(
            f"Invalid transaction status: {value!r}. "
            f"Must be one of: {[s.value for s in TransactionStatus]}"
        )


def can_transition(current: S, target: S) -> bool:
    """Check whether ``current → target`` is an edge of the transition table."""
    table: Mapping = ORDER_TRANSITIONS if isinstance(current, OrderStatus) else TRANSACTION_TRANSITIONS
    return target in table[current]


def ensure_order_transition(current: str | OrderStatus, target: str | OrderStatus) -> None:
    """Raise InvalidStatusTransition unless the order may move to ``target``."""
    current_status = parse_order_status(current)
    target_status = parse_order_status(target)
    if not can_transition(current_status, target_status):
        raise InvalidStatusTransition(
            f"Cannot change order status from {current_status.value} to {target_status.value}"
        )


def sources_for(target: S) -> FrozenSet[S]:
    """Statuses from which a row may legally move into ``target``."""
    table: Mapping = ORDER_TRANSITIONS if isinstance(target, OrderStatus) else TRANSACTION_TRANSITIONS
    return frozenset(source for source, targets in table.items() if target in targets)
