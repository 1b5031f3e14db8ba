"""
Payment timeout worker.

Cancels pending orders whose payment link was issued but never paid within
the configured timeout. Runs inside the API process (started from the
FastAPI lifespan) or standalone:

    python -m bloompay.workers.payment_timeout --interval 60
"""
import argparse
import asyncio
import signal
import time
import uuid
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bloompay.config import Settings, get_settings
from bloompay.core.orders import OrderService
from bloompay.core.status import OrderStatus, TransactionStatus
from bloompay.core.stock import StockLedger
from bloompay.core.transactions import TransactionLedger
from bloompay.database.models import Order, utcnow
from bloompay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class PaymentTimeoutReaper:
    """
    Periodic sweep that reclaims abandoned payment attempts.

    Each expired order is cancelled in its own database transaction with the
    same lock order as reconciliation (transaction row, then order row). The
    order update is conditional on ``pending``, so overlapping sweeps and a
    concurrent successful payment can never be overwritten.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        transactions: Optional[TransactionLedger] = None,
        orders: Optional[OrderService] = None,
    ):
        """
        Initialize payment timeout reaper.

        Args:
            session_factory: Session factory for the primary database
            settings: Application settings (timeout, interval, restock policy)
            transactions: Transaction ledger
            orders: Order aggregate, used to release stock when enabled
        """
        self.session_factory = session_factory
        self.settings = settings
        self.transactions = transactions or TransactionLedger(session_factory)
        self.orders = orders or OrderService(
            session_factory, StockLedger(session_factory), settings
        )
        self.timeout = timedelta(minutes=settings.payment_timeout_minutes)
        self.interval = settings.payment_timeout_check_interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Cancel every expired pending order once.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            int: Number of orders cancelled
        """
        start = time.perf_counter()
        threshold = (now or utcnow()) - self.timeout

        async with self.session_factory() as session:
            expired = (
                await session.execute(
                    select(Order.id, Order.transaction_id).where(
                        Order.status == OrderStatus.PENDING.value,
                        Order.payment_code.is_not(None),
                        Order.order_at < threshold,
                    )
                )
            ).all()

        cancelled = 0
        for row in expired:
            try:
                if await self._cancel_expired(row.id, row.transaction_id):
                    cancelled += 1
            except Exception:
                logger.exception("payment_timeout_cancel_failed", order_id=str(row.id))

        metrics.record_timeout_sweep(cancelled, time.perf_counter() - start)
        if expired:
            logger.info(
                "payment_timeout_sweep_completed",
                candidates=len(expired),
                cancelled=cancelled,
            )
        return cancelled

    async def _cancel_expired(
        self, order_id: uuid.UUID, transaction_id: Optional[uuid.UUID]
    ) -> bool:
        async with self.session_factory() as session:
            try:
                if transaction_id is not None:
                    moved = await self.transactions.transition(
                        session, transaction_id, TransactionStatus.CANCELLED
                    )
                    if not moved:
                        current = await self.transactions.current_status(session, transaction_id)
                        if current == TransactionStatus.COMPLETED:
                            # Paid while the sweep was running; reconciliation owns the order.
                            await session.rollback()
                            return False

                result = await session.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
                    .values(status=OrderStatus.CANCELLED.value, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    await session.rollback()
                    return False

                if self.settings.release_stock_on_cancel:
                    await self.orders.release_reserved_stock(session, order_id)

                await session.commit()
            except Exception:
                await session.rollback()
                raise

        metrics.record_order_status_change(OrderStatus.CANCELLED.value, "timeout")
        logger.info(
            "order_cancelled_payment_timeout",
            order_id=str(order_id),
            transaction_id=str(transaction_id) if transaction_id else None,
        )
        return True

    async def _run(self) -> None:
        assert self._stop_event is not None
        logger.info(
            "payment_timeout_reaper_started",
            interval_seconds=self.interval,
            timeout_minutes=self.settings.payment_timeout_minutes,
        )
        while not self._stop_event.is_set():
            try:
                await self.sweep()
            except Exception:
                logger.exception("payment_timeout_sweep_failed")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("payment_timeout_reaper_stopped")

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self.running:
            logger.info("payment_timeout_reaper_already_running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the periodic sweep and wait for the current tick to finish."""
        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None


async def start_payment_timeout_worker(interval: Optional[float] = None) -> None:
    """
    Run the reaper as a standalone worker process until SIGINT/SIGTERM.

    Args:
        interval: Seconds between sweeps (defaults to the configured interval)
    """
    from bloompay.database.connection import close_db, create_engine, create_session_factory
    from bloompay.monitoring.logging import setup_logging

    settings = get_settings()
    if interval is not None:
        settings = settings.model_copy(
            update={"payment_timeout_check_interval_seconds": interval}
        )
    setup_logging(settings, component="payment_timeout")

    engine = create_engine(settings)
    reaper = PaymentTimeoutReaper(create_session_factory(engine), settings)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    logger.info("payment_timeout_worker_starting", interval_seconds=reaper.interval)
    reaper.start()
    try:
        await shutdown.wait()
        logger.info("payment_timeout_worker_shutdown_signal_received")
    finally:
        await reaper.stop()
        await close_db(engine)
        logger.info("payment_timeout_worker_stopped")


def main() -> None:
    """Command line entry point for the standalone worker."""
    parser = argparse.ArgumentParser(description="Payment timeout worker")
    parser.add_argument(
        "--interval", type=float, default=None, help="Seconds between sweeps"
    )
    args = parser.parse_args()

    asyncio.run(start_payment_timeout_worker(interval=args.interval))


if __name__ == "__main__":
    main()
