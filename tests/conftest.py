"""
Pytest configuration and fixtures.

Every test gets its own SQLite file database so that concurrent sessions
really are separate connections competing for the same rows.
"""
import uuid
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from bloompay.api.main import create_app
from bloompay.config import Settings
from bloompay.container import Container, build_container
from bloompay.core.orders import OrderLine
from bloompay.database.connection import create_engine, create_session_factory
from bloompay.database.models import Account, Base, Flower

from tests.fakes import CHECKSUM_KEY, FakeGateway

SYSTEM_ACCOUNT_ID = "00000000-0000-0000-0000-000000000001"


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'bloompay_test.db'}",
        payos_client_id="test-client-id",
        payos_api_key="test-api-key",
        payos_checksum_key=CHECKSUM_KEY,
        app_name="bloompay-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
        public_base_url="http://testserver",
        system_account_id=SYSTEM_ACCOUNT_ID,
        payment_timeout_enabled=False,
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create test database engine with all tables."""
    engine = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create test session factory."""
    return create_session_factory(engine)


@pytest.fixture
def gateway() -> FakeGateway:
    """Fake payment gateway."""
    return FakeGateway()


@pytest.fixture
def container(
    test_settings: Settings,
    gateway: FakeGateway,
    session_factory: async_sessionmaker[AsyncSession],
) -> Container:
    """Services wired against the test database and fake gateway."""
    return build_container(test_settings, gateway=gateway, session_factory=session_factory)


@pytest_asyncio.fixture
async def seed(session_factory: async_sessionmaker[AsyncSession]) -> SimpleNamespace:
    """Accounts and flowers every test starts from."""
    customer = Account(id=uuid.uuid4(), full_name="Lan Nguyen", email="lan@example.com", phone="0901234567")
    other = Account(id=uuid.uuid4(), full_name="Minh Tran", email="minh@example.com")
    admin = Account(id=uuid.uuid4(), full_name="Admin", role="admin")
    seller = Account(id=uuid.uuid4(), full_name="Seller", role="seller")
    shipper = Account(id=uuid.uuid4(), full_name="Shipper", role="shipper")
    system = Account(id=uuid.UUID(SYSTEM_ACCOUNT_ID), full_name="BloomPay", role="admin")

    rose = Flower(id=uuid.uuid4(), name="Red Rose", price=60_000, stock=5)
    tulip = Flower(id=uuid.uuid4(), name="Tulip", price=25_000, stock=10)
    lily = Flower(id=uuid.uuid4(), name="White Lily", price=40_000, stock=1)
    orchid = Flower(id=uuid.uuid4(), name="Orchid", price=90_000, stock=3, is_active=False)

    async with session_factory() as session:
        async with session.begin():
            session.add_all([customer, other, admin, seller, shipper, system, rose, tulip, lily, orchid])

    return SimpleNamespace(
        customer=customer,
        other=other,
        admin=admin,
        seller=seller,
        shipper=shipper,
        system=system,
        rose=rose,
        tulip=tulip,
        lily=lily,
        orchid=orchid,
    )


@pytest_asyncio.fixture
async def pending_order(container: Container, seed: SimpleNamespace) -> Any:
    """Pending order for 2 roses plus shipping (150000 total)."""
    return await container.orders.create_order(
        account_id=seed.customer.id,
        items=[OrderLine(flower_id=seed.rose.id, quantity=2)],
        shipping_address="12 Nguyen Hue, District 1",
        shipping_fee=30_000,
    )


@pytest_asyncio.fixture
async def linked_order(container: Container, pending_order: Any) -> Dict[str, Any]:
    """Pending order with a payment link issued."""
    return await container.payments.create_payment_link(pending_order.id)


@pytest_asyncio.fixture
async def client(
    test_settings: Settings,
    gateway: FakeGateway,
    session_factory: async_sessionmaker[AsyncSession],
    seed: SimpleNamespace,
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    app = create_app(test_settings, gateway=gateway, session_factory=session_factory)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
