"""
Stock ledger for flower inventory.

Reservation is a single conditional UPDATE:

    UPDATE flowers SET stock = stock - :q
    WHERE id = :id AND is_active AND stock >= :q

so the availability check and the decrement can never be split by another
writer. Callers pass in their own session so that reservations join the
surrounding order transaction and roll back with it.
"""
import uuid
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bloompay.core.exceptions import FlowerNotFound, InsufficientStock, InvalidOrderRequest
from bloompay.database.models import Flower
from bloompay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class StockLedger:
    """Atomic reserve/release operations on ``Flower.stock``."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        """
        Initialize stock ledger.

        Args:
            session_factory: Session factory for standalone reads
        """
        self.session_factory = session_factory

    @staticmethod
    def _validate_quantity(quantity: int) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidOrderRequest(f"Quantity must be a positive integer, got {quantity!r}")

    async def reserve(
        self, session: AsyncSession, flower_id: uuid.UUID, quantity: int
    ) -> int:
        """
        Reserve stock for one order line.

        Args:
            session: Session whose transaction the reservation joins
            flower_id: Flower to reserve
            quantity: Units to reserve

        Returns:
            int: Unit price at reservation time (the price snapshot)

        Raises:
            InvalidOrderRequest: If quantity is not a positive integer
            FlowerNotFound: If the flower does not exist or is inactive
            InsufficientStock: If fewer than ``quantity`` units are available
        """
        self._validate_quantity(quantity)

        stmt = (
            update(Flower)
            .where(
                Flower.id == flower_id,
                Flower.is_active.is_(True),
                Flower.stock >= quantity,
            )
            .values(stock=Flower.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)

        row = (
            await session.execute(
                select(Flower.name, Flower.price, Flower.stock, Flower.is_active).where(
                    Flower.id == flower_id
                )
            )
        ).first()

        if result.rowcount == 1 and row is not None:
            logger.info(
                "stock_reserved",
                flower_id=str(flower_id),
                quantity=quantity,
                remaining=row.stock,
            )
            return row.price

        if row is None or not row.is_active:
            metrics.record_stock_reservation_failure("flower_not_found")
            logger.warning("stock_reservation_flower_missing", flower_id=str(flower_id))
            raise FlowerNotFound(flower_id)

        metrics.record_stock_reservation_failure("insufficient_stock")
        logger.warning(
            "stock_reservation_insufficient",
            flower_id=str(flower_id),
            available=row.stock,
            requested=quantity,
        )
        raise InsufficientStock(flower_id, available=row.stock, requested=quantity, name=row.name)

    async def release(
        self, session: AsyncSession, flower_id: uuid.UUID, quantity: int
    ) -> None:
        """
        Return previously reserved units to stock.

        Args:
            session: Session whose transaction the release joins
            flower_id: Flower to restock
            quantity: Units to return

        Raises:
            FlowerNotFound: If the flower does not exist
        """
        self._validate_quantity(quantity)

        stmt = (
            update(Flower)
            .where(Flower.id == flower_id)
            .values(stock=Flower.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            raise FlowerNotFound(flower_id)

        logger.info("stock_released", flower_id=str(flower_id), quantity=quantity)

    async def available(self, flower_id: uuid.UUID) -> int:
        """
        Read the current stock of a flower.

        Raises:
            FlowerNotFound: If the flower does not exist
        """
        if self.session_factory is None:
            raise RuntimeError("StockLedger needs a session factory for standalone reads")

        async with self.session_factory() as session:
            stock = (
                await session.execute(select(Flower.stock).where(Flower.id == flower_id))
            ).scalar_one_or_none()

        if stock is None:
            raise FlowerNotFound(flower_id)
        return stock
