"""
Service container.

Every service is constructed once at process start and handed to the HTTP
layer and workers by reference. Nothing in the core reaches for a module
level singleton.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from bloompay.config import Settings
from bloompay.core.orders import OrderService
from bloompay.core.payments import PaymentService
from bloompay.core.reconciliation import ReconciliationEngine
from bloompay.core.stock import StockLedger
from bloompay.core.transactions import TransactionLedger
from bloompay.database.connection import create_engine, create_session_factory
from bloompay.integrations.gateway import PaymentGateway
from bloompay.integrations.payos_client import PayOSClient
from bloompay.integrations.webhook_handler import WebhookHandler
from bloompay.monitoring.health import HealthCheck
from bloompay.workers.payment_timeout import PaymentTimeoutReaper


@dataclass
class Container:
    """Wired services for one process."""

    settings: Settings
    engine: Optional[AsyncEngine]
    session_factory: async_sessionmaker[AsyncSession]
    gateway: PaymentGateway
    stock: StockLedger
    orders: OrderService
    transactions: TransactionLedger
    payments: PaymentService
    reconciliation: ReconciliationEngine
    webhooks: WebhookHandler
    reaper: PaymentTimeoutReaper
    health: HealthCheck


def build_container(
    settings: Settings,
    gateway: Optional[PaymentGateway] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> Container:
    """
    Wire every service.

    Args:
        settings: Application settings
        gateway: Gateway adapter (defaults to the PayOS client)
        session_factory: Session factory (defaults to one on a new engine)

    Returns:
        Container: The wired services
    """
    engine: Optional[AsyncEngine] = None
    if session_factory is None:
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)
    gateway = gateway or PayOSClient(settings)

    stock = StockLedger(session_factory)
    orders = OrderService(session_factory, stock, settings)
    transactions = TransactionLedger(session_factory)
    payments = PaymentService(session_factory, orders, transactions, gateway, settings)
    reconciliation = ReconciliationEngine(session_factory, orders, transactions)
    webhooks = WebhookHandler(gateway, reconciliation)
    reaper = PaymentTimeoutReaper(session_factory, settings, transactions, orders)
    health = HealthCheck(session_factory, settings, reaper)

    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        gateway=gateway,
        stock=stock,
        orders=orders,
        transactions=transactions,
        payments=payments,
        reconciliation=reconciliation,
        webhooks=webhooks,
        reaper=reaper,
        health=health,
    )
