"""
Tests for atomic stock reservation.
"""
import asyncio
from types import SimpleNamespace
from typing import Any

import pytest

from bloompay.container import Container
from bloompay.core.exceptions import FlowerNotFound, InsufficientStock, InvalidOrderRequest
from bloompay.core.orders import OrderLine


class TestStockLedger:
    """Test suite for StockLedger."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_reserve_decrements_and_returns_price(
        self, container: Container, seed: SimpleNamespace, session_factory: Any
    ) -> None:
        async with session_factory() as session:
            async with session.begin():
                price = await container.stock.reserve(session, seed.tulip.id, 4)

        assert price == 25_000
        assert await container.stock.available(seed.tulip.id) == 6

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_reserve_more_than_available_fails(
        self, container: Container, seed: SimpleNamespace, session_factory: Any
    ) -> None:
        async with session_factory() as session:
            with pytest.raises(InsufficientStock) as exc_info:
                async with session.begin():
                    await container.stock.reserve(session, seed.lily.id, 2)

        error = exc_info.value
        assert error.available == 1
        assert error.requested == 2
        assert "Available: 1, Requested: 2" in error.message
        assert await container.stock.available(seed.lily.id) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_inactive_flower_cannot_be_reserved(
        self, container: Container, seed: SimpleNamespace, session_factory: Any
    ) -> None:
        async with session_factory() as session:
            with pytest.raises(FlowerNotFound):
                async with session.begin():
                    await container.stock.reserve(session, seed.orchid.id, 1)

        assert await container.stock.available(seed.orchid.id) == 3

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_zero_quantity_rejected(
        self, container: Container, seed: SimpleNamespace, session_factory: Any
    ) -> None:
        async with session_factory() as session:
            with pytest.raises(InvalidOrderRequest):
                await container.stock.reserve(session, seed.rose.id, 0)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_release_restores_stock(
        self, container: Container, seed: SimpleNamespace, session_factory: Any
    ) -> None:
        async with session_factory() as session:
            async with session.begin():
                await container.stock.release(session, seed.lily.id, 2)

        assert await container.stock.available(seed.lily.id) == 3


class TestConcurrentReservations:
    """Race condition tests for concurrent reservations."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_orders_never_oversell(
        self, container: Container, seed: SimpleNamespace
    ) -> None:
        """
        With stock N, N+1 concurrent single-unit orders.

        Exactly N succeed and the last one fails with InsufficientStock.
        """
        stock = 5
        tasks = [
            container.orders.create_order(
                account_id=seed.customer.id,
                items=[OrderLine(flower_id=seed.rose.id, quantity=1)],
                shipping_address="12 Nguyen Hue",
            )
            for _ in range(stock + 1)
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        created = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]

        assert len(created) == stock
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientStock)
        assert await container.stock.available(seed.rose.id) == 0

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_large_orders_split_stock(
        self, container: Container, seed: SimpleNamespace
    ) -> None:
        """Two orders for 3 of 5 roses: only one can win."""
        results = await asyncio.gather(
            *[
                container.orders.create_order(
                    account_id=seed.customer.id,
                    items=[OrderLine(flower_id=seed.rose.id, quantity=3)],
                    shipping_address="12 Nguyen Hue",
                )
                for _ in range(2)
            ],
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, InsufficientStock)) == 1
        assert await container.stock.available(seed.rose.id) == 2
