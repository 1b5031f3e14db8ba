"""
Tests for the order aggregate.
"""
import uuid
from types import SimpleNamespace
from typing import Any

import pytest
from sqlalchemy import update

from bloompay.container import Container
from bloompay.core.exceptions import (
    FlowerNotFound,
    InsufficientStock,
    InvalidOrderRequest,
    InvalidStatus,
    InvalidStatusTransition,
    OrderItemNotFound,
    OrderNotFound,
    PermissionDenied,
)
from bloompay.core.orders import OrderLine
from bloompay.database.models import Flower


class TestCreateOrder:
    """Test suite for order creation."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_order_reserves_stock(
        self, container: Container, seed: SimpleNamespace
    ) -> None:
        """2 roses at 60000 plus 30000 shipping: total 150000, stock 5 -> 3."""
        order = await container.orders.create_order(
            account_id=seed.customer.id,
            items=[OrderLine(flower_id=seed.rose.id, quantity=2)],
            shipping_address="12 Nguyen Hue, District 1",
            shipping_fee=30_000,
        )

        assert order.status == "pending"
        assert order.total_amount == 150_000
        assert order.payment_code is None
        assert order.transaction_id is None
        assert len(order.items) == 1
        assert order.items[0].unit_price == 60_000
        assert order.items[0].flower.name == "Red Rose"
        assert await container.stock.available(seed.rose.id) == 3

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_order_is_all_or_nothing(
        self, container: Container, seed: SimpleNamespace
    ) -> None:
        """Second line fails: the first line's reservation is rolled back."""
        with pytest.raises(InsufficientStock):
            await container.orders.create_order(
                account_id=seed.customer.id,
                items=[
                    OrderLine(flower_id=seed.rose.id, quantity=2),
                    OrderLine(flower_id=seed.lily.id, quantity=5),
                ],
                shipping_address="12 Nguyen Hue",
            )

        assert await container.stock.available(seed.rose.id) == 5
        assert await container.stock.available(seed.lily.id) == 1
        assert await container.orders.list_orders() == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_flower_rolls_back(
        self, container: Container, seed: SimpleNamespace
    ) -> None:
        with pytest.raises(FlowerNotFound):
            await container.orders.create_order(
                account_id=seed.customer.id,
                items=[
                    OrderLine(flower_id=seed.tulip.id, quantity=1),
                    OrderLine(flower_id=uuid.uuid4(), quantity=1),
                ],
                shipping_address="12 Nguyen Hue",
            )

        assert await container.stock.available(seed.tulip.id) == 10

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "items,address,fee",
        [
            ([], "12 Nguyen Hue", 0),
            ([("rose", 0)], "12 Nguyen Hue", 0),
            ([("rose", 1)], "   ", 0),
            ([("rose", 1)], "12 Nguyen Hue", -1),
        ],
    )
    async def test_invalid_input_rejected(
        self, container: Container, seed: SimpleNamespace, items: Any, address: str, fee: int
    ) -> None:
        lines = [OrderLine(flower_id=getattr(seed, name).id, quantity=q) for name, q in items]
        with pytest.raises(InvalidOrderRequest):
            await container.orders.create_order(seed.customer.id, lines, address, fee)

        assert await container.stock.available(seed.rose.id) == 5

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_price_snapshot_survives_price_change(
        self, container: Container, pending_order: Any, seed: SimpleNamespace, session_factory: Any
    ) -> None:
        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(Flower).where(Flower.id == seed.rose.id).values(price=99_000)
                )

        order = await container.orders.get_order(pending_order.id)
        assert order.items[0].unit_price == 60_000
        assert order.total_amount == 150_000


class TestOrderQueries:
    """Test suite for order lookups."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_missing_order(self, container: Container, seed: SimpleNamespace) -> None:
        with pytest.raises(OrderNotFound):
            await container.orders.get_order(uuid.uuid4())

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_orders_filters(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        assert [o.id for o in await container.orders.list_orders(status="pending")] == [
            pending_order.id
        ]
        assert await container.orders.list_orders(status="paid") == []
        assert await container.orders.list_orders(account_id=seed.other.id) == []

        with pytest.raises(InvalidStatus):
            await container.orders.list_orders(status="lost")


class TestUpdateOrderStatus:
    """Test suite for manual status changes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_owner_can_cancel(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        order = await container.orders.update_order_status(
            pending_order.id, "cancelled", seed.customer.id
        )
        assert order.status == "cancelled"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_staff_walk_order_forward(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        await container.orders.update_order_status(pending_order.id, "confirmed", seed.seller.id)
        await container.orders.update_order_status(pending_order.id, "shipped", seed.admin.id)
        order = await container.orders.update_order_status(
            pending_order.id, "delivered", seed.admin.id
        )
        assert order.status == "delivered"

        with pytest.raises(InvalidStatusTransition):
            await container.orders.update_order_status(pending_order.id, "cancelled", seed.admin.id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize("actor", ["other", "shipper"])
    async def test_other_accounts_denied(
        self, container: Container, pending_order: Any, seed: SimpleNamespace, actor: str
    ) -> None:
        with pytest.raises(PermissionDenied):
            await container.orders.update_order_status(
                pending_order.id, "confirmed", getattr(seed, actor).id
            )

        order = await container.orders.get_order(pending_order.id)
        assert order.status == "pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_account_denied(
        self, container: Container, pending_order: Any
    ) -> None:
        with pytest.raises(PermissionDenied):
            await container.orders.update_order_status(pending_order.id, "confirmed", uuid.uuid4())

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_paid_is_not_a_manual_target(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        with pytest.raises(InvalidStatusTransition):
            await container.orders.update_order_status(pending_order.id, "paid", seed.admin.id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_status_value(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        with pytest.raises(InvalidStatus):
            await container.orders.update_order_status(pending_order.id, "teleported", seed.admin.id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_same_status_is_noop(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        order = await container.orders.update_order_status(
            pending_order.id, "pending", seed.customer.id
        )
        assert order.status == "pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_manual_cancel_keeps_stock_by_default(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        await container.orders.update_order_status(pending_order.id, "cancelled", seed.admin.id)
        assert await container.stock.available(seed.rose.id) == 3


class TestOrderItems:
    """Test suite for line item maintenance."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_add_item_reserves_and_updates_total(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        order = await container.orders.add_order_item(pending_order.id, seed.tulip.id, 2)

        assert len(order.items) == 2
        assert order.total_amount == 150_000 + 50_000
        assert await container.stock.available(seed.tulip.id) == 8

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_item_quantity_moves_stock(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        item_id = pending_order.items[0].id

        order = await container.orders.update_order_item(item_id, 4)
        assert order.total_amount == 4 * 60_000 + 30_000
        assert await container.stock.available(seed.rose.id) == 1

        order = await container.orders.update_order_item(item_id, 1)
        assert order.total_amount == 60_000 + 30_000
        assert await container.stock.available(seed.rose.id) == 4

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_item_beyond_stock_fails(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        with pytest.raises(InsufficientStock):
            await container.orders.update_order_item(pending_order.items[0].id, 10)

        order = await container.orders.get_order(pending_order.id)
        assert order.items[0].quantity == 2
        assert await container.stock.available(seed.rose.id) == 3

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_delete_item_releases_stock(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        order = await container.orders.delete_order_item(pending_order.items[0].id)

        assert order.items == []
        assert order.total_amount == 30_000
        assert await container.stock.available(seed.rose.id) == 5

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_item(self, container: Container, pending_order: Any) -> None:
        with pytest.raises(OrderItemNotFound):
            await container.orders.update_order_item(uuid.uuid4(), 1)
        with pytest.raises(OrderItemNotFound):
            await container.orders.delete_order_item(uuid.uuid4())

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_items_frozen_once_payment_link_exists(
        self,
        container: Container,
        pending_order: Any,
        linked_order: Any,
        seed: SimpleNamespace,
    ) -> None:
        with pytest.raises(InvalidStatusTransition):
            await container.orders.add_order_item(pending_order.id, seed.tulip.id, 1)
        with pytest.raises(InvalidStatusTransition):
            await container.orders.delete_order_item(pending_order.items[0].id)

        assert await container.stock.available(seed.tulip.id) == 10
        assert await container.stock.available(seed.rose.id) == 3
