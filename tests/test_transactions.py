"""
Tests for the transaction ledger queries.
"""
import uuid
from datetime import timedelta
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio

from bloompay.container import Container
from bloompay.core.exceptions import InvalidStatus, TransactionNotFound
from bloompay.core.orders import OrderLine
from bloompay.core.reconciliation import GatewayReport
from bloompay.database.models import utcnow


@pytest_asyncio.fixture
async def two_payments(
    container: Container, pending_order: Any, linked_order: Any, seed: SimpleNamespace
) -> SimpleNamespace:
    """One completed payment of 150000 and one pending payment of 50000."""
    await container.reconciliation.reconcile(
        linked_order["payment_code"], GatewayReport(code="00", status="PAID")
    )
    order = await container.orders.create_order(
        seed.customer.id, [OrderLine(seed.tulip.id, 2)], "12 Nguyen Hue"
    )
    second = await container.payments.create_payment_link(order.id)
    return SimpleNamespace(paid=linked_order, pending=second)


class TestTransactionQueries:
    """Test suite for TransactionLedger read operations."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_by_status(self, container: Container, two_payments: Any) -> None:
        completed = await container.transactions.list_transactions(status="completed")
        pending = await container.transactions.list_transactions(status="pending")

        assert [t.id for t in completed] == [two_payments.paid["transaction_id"]]
        assert [t.id for t in pending] == [two_payments.pending["transaction_id"]]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_newest_first(self, container: Container, two_payments: Any) -> None:
        transactions = await container.transactions.list_transactions()
        assert [t.id for t in transactions] == [
            two_payments.pending["transaction_id"],
            two_payments.paid["transaction_id"],
        ]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_by_account_direction(
        self, container: Container, two_payments: Any, seed: SimpleNamespace
    ) -> None:
        outgoing = await container.transactions.list_transactions(
            account_id=seed.customer.id, direction="outgoing"
        )
        incoming = await container.transactions.list_transactions(
            account_id=seed.customer.id, direction="incoming"
        )
        received = await container.transactions.list_transactions(
            account_id=seed.system.id, direction="incoming"
        )

        assert len(outgoing) == 2
        assert incoming == []
        assert len(received) == 2
        assert await container.transactions.list_transactions(account_id=seed.other.id) == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_by_date_range(self, container: Container, two_payments: Any) -> None:
        future = utcnow() + timedelta(days=1)
        past = utcnow() - timedelta(days=1)

        assert await container.transactions.list_transactions(start_date=future) == []
        assert len(await container.transactions.list_transactions(start_date=past)) == 2
        assert await container.transactions.list_transactions(end_date=past) == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_rejects_bad_filters(self, container: Container, seed: SimpleNamespace) -> None:
        with pytest.raises(InvalidStatus):
            await container.transactions.list_transactions(status="refunded")
        with pytest.raises(InvalidStatus):
            await container.transactions.list_transactions(
                account_id=seed.customer.id, direction="sideways"
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stats(self, container: Container, two_payments: Any) -> None:
        stats = await container.transactions.stats()

        assert stats["total"] == 2
        assert stats["by_status"]["completed"] == {"count": 1, "total_amount": 150_000}
        assert stats["by_status"]["pending"] == {"count": 1, "total_amount": 50_000}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stats_for_uninvolved_account(
        self, container: Container, two_payments: Any, seed: SimpleNamespace
    ) -> None:
        assert await container.transactions.stats(seed.other.id) == {"total": 0, "by_status": {}}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_recent_limit(
        self, container: Container, two_payments: Any, seed: SimpleNamespace
    ) -> None:
        recent = await container.transactions.recent(seed.customer.id, limit=1)
        assert [t.id for t in recent] == [two_payments.pending["transaction_id"]]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_missing_transaction(self, container: Container, seed: SimpleNamespace) -> None:
        with pytest.raises(TransactionNotFound):
            await container.transactions.get_transaction(uuid.uuid4())
