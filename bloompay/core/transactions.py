"""
Transaction ledger: one row per payment attempt.

Status writes are compare-and-swap updates guarded by the transition table,
so a ``completed`` transaction can never move again no matter which writer
(redirect, webhook, timeout sweep, explicit cancellation) arrives last.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bloompay.core.exceptions import InvalidStatus, TransactionNotFound
from bloompay.core.status import TransactionStatus, parse_transaction_status, sources_for
from bloompay.database.models import Transaction, utcnow

logger = structlog.get_logger(__name__)


class TransactionLedger:
    """Creates, transitions and queries payment transactions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize transaction ledger.

        Args:
            session_factory: Session factory for read queries
        """
        self.session_factory = session_factory

    async def open(
        self,
        session: AsyncSession,
        from_account: uuid.UUID,
        to_account: uuid.UUID,
        amount: int,
        payment_code: Optional[str] = None,
    ) -> Transaction:
        """
        Record a new pending payment attempt.

        Args:
            session: Session whose transaction the insert joins
            from_account: Paying account
            to_account: Settlement account
            amount: Amount to collect
            payment_code: Gateway correlation code

        Returns:
            Transaction: The flushed transaction row
        """
        transaction = Transaction(
            from_account=from_account,
            to_account=to_account,
            amount=amount,
            status=TransactionStatus.PENDING.value,
            payment_code=payment_code,
            transaction_date=utcnow(),
        )
        session.add(transaction)
        await session.flush()

        logger.info(
            "transaction_opened",
            transaction_id=str(transaction.id),
            amount=amount,
            payment_code=payment_code,
        )
        return transaction

    async def transition(
        self,
        session: AsyncSession,
        transaction_id: uuid.UUID,
        target: TransactionStatus,
    ) -> bool:
        """
        Move a transaction into ``target`` if the transition table allows it.

        Args:
            session: Session whose transaction the update joins
            transaction_id: Transaction to move
            target: Desired status

        Returns:
            bool: True if this call moved the row, False if it was already
            elsewhere (another writer won, or the edge is not allowed)
        """
        allowed = [status.value for status in sources_for(target)]
        stmt = (
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.status.in_(allowed))
            .values(status=target.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        moved = result.rowcount == 1

        logger.info(
            "transaction_transition",
            transaction_id=str(transaction_id),
            target=target.value,
            applied=moved,
        )
        return moved

    async def current_status(
        self, session: AsyncSession, transaction_id: uuid.UUID
    ) -> TransactionStatus:
        """
        Read the committed status of a transaction.

        Raises:
            TransactionNotFound: If the row does not exist
        """
        status = (
            await session.execute(
                select(Transaction.status).where(Transaction.id == transaction_id)
            )
        ).scalar_one_or_none()
        if status is None:
            raise TransactionNotFound(f"Transaction {transaction_id} not found")
        return TransactionStatus(status)

    async def get_transaction(self, transaction_id: uuid.UUID) -> Transaction:
        """
        Get a transaction by ID.

        Raises:
            TransactionNotFound: If the row does not exist
        """
        async with self.session_factory() as session:
            transaction = await session.get(Transaction, transaction_id)
        if transaction is None:
            raise TransactionNotFound(f"Transaction {transaction_id} not found")
        return transaction

    @staticmethod
    def _account_filter(account_id: uuid.UUID, direction: Optional[str]) -> Any:
        if direction == "incoming":
            return Transaction.to_account == account_id
        if direction == "outgoing":
            return Transaction.from_account == account_id
        return or_(Transaction.from_account == account_id, Transaction.to_account == account_id)

    async def list_transactions(
        self,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        account_id: Optional[uuid.UUID] = None,
        direction: Optional[str] = None,
    ) -> List[Transaction]:
        """
        List transactions, newest first.

        Args:
            status: Only this status
            start_date: Only on or after this date
            end_date: Only on or before this date
            account_id: Only transactions involving this account
            direction: ``incoming`` or ``outgoing`` relative to ``account_id``

        Raises:
            InvalidStatus: If ``status`` or ``direction`` is not recognized
        """
        if direction is not None and direction not in ("incoming", "outgoing"):
            raise InvalidStatus(f"Invalid transaction direction: {direction!r}")

        stmt = select(Transaction).order_by(Transaction.transaction_date.desc())
        if status is not None:
            stmt = stmt.where(Transaction.status == parse_transaction_status(status).value)
        if start_date is not None:
            stmt = stmt.where(Transaction.transaction_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(Transaction.transaction_date <= end_date)
        if account_id is not None:
            stmt = stmt.where(self._account_filter(account_id, direction))

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def recent(self, account_id: uuid.UUID, limit: int = 10) -> List[Transaction]:
        """Most recent transactions involving an account."""
        stmt = (
            select(Transaction)
            .where(self._account_filter(account_id, None))
            .order_by(Transaction.transaction_date.desc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def stats(self, account_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
        """
        Count and sum transactions per status.

        Returns:
            Dict[str, Any]: ``{"total": n, "by_status": {status: {count, total_amount}}}``
        """
        stmt = select(
            Transaction.status,
            func.count(Transaction.id).label("count"),
            func.sum(Transaction.amount).label("total_amount"),
        ).group_by(Transaction.status)
        if account_id is not None:
            stmt = stmt.where(self._account_filter(account_id, None))

        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()

        by_status = {
            row.status: {"count": row.count, "total_amount": int(row.total_amount or 0)}
            for row in rows
        }
        return {
            "total": sum(entry["count"] for entry in by_status.values()),
            "by_status": by_status,
        }
