"""
Tests for payment link creation and cancellation.
"""
import re
import uuid
from types import SimpleNamespace
from typing import Any

import pytest

from bloompay.config import Settings
from bloompay.container import Container, build_container
from bloompay.core.exceptions import (
    DuplicatePaymentLink,
    GatewayError,
    InvalidOrderRequest,
    InvalidStatusTransition,
    OrderNotFound,
)
from bloompay.core.orders import OrderLine
from bloompay.core.payments import generate_payment_code
from bloompay.core.reconciliation import GatewayReport

from tests.fakes import FakeGateway


class TestGeneratePaymentCode:
    """Test suite for gateway order codes."""

    @pytest.mark.unit
    def test_code_is_nine_digits(self) -> None:
        code = generate_payment_code()
        assert re.fullmatch(r"\d{9}", code)
        assert 0 < int(code) < 2**53


class TestCreatePaymentLink:
    """Test suite for PaymentService.create_payment_link."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_link_opens_pending_transaction(
        self,
        container: Container,
        gateway: FakeGateway,
        pending_order: Any,
        seed: SimpleNamespace,
    ) -> None:
        link = await container.payments.create_payment_link(pending_order.id)

        assert link["amount"] == 150_000
        assert link["order_id"] == pending_order.id
        assert link["checkout_url"] == f"https://pay.test/web/{link['payment_code']}"
        assert link["qr_code"] == f"qr-{link['payment_code']}"

        order = await container.orders.get_order(pending_order.id)
        assert order.status == "pending"
        assert order.payment_code == link["payment_code"]
        assert order.transaction_id == link["transaction_id"]

        transaction = await container.transactions.get_transaction(link["transaction_id"])
        assert transaction.status == "pending"
        assert transaction.amount == 150_000
        assert transaction.from_account == seed.customer.id
        assert transaction.to_account == seed.system.id
        assert transaction.payment_code == link["payment_code"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_gateway_request_contents(
        self, container: Container, gateway: FakeGateway, pending_order: Any
    ) -> None:
        link = await container.payments.create_payment_link(pending_order.id)

        request = gateway.created[0]
        assert request.order_code == int(link["payment_code"])
        assert request.amount == 150_000
        assert request.description == f"Order {link['payment_code']}"
        assert request.return_url == "http://testserver/payments/payment/success"
        assert request.cancel_url == "http://testserver/payments/payment/cancel"
        assert request.buyer_name == "Lan Nguyen"
        assert [(i.name, i.quantity, i.price) for i in request.items] == [
            ("Red Rose", 2, 60_000)
        ]

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_item_added_before_code_assignment_is_charged(
        self,
        container: Container,
        gateway: FakeGateway,
        pending_order: Any,
        seed: SimpleNamespace,
        monkeypatch: Any,
    ) -> None:
        """An item edit that commits between the order read and the code assignment is billed."""
        service = container.payments
        assign = service._assign_payment_code

        async def add_item_then_assign(order: Any) -> Any:
            await container.orders.add_order_item(pending_order.id, seed.tulip.id, 2)
            return await assign(order)

        monkeypatch.setattr(service, "_assign_payment_code", add_item_then_assign)

        link = await service.create_payment_link(pending_order.id)

        order = await container.orders.get_order(pending_order.id)
        transaction = await container.transactions.get_transaction(link["transaction_id"])
        request = gateway.created[0]
        assert order.total_amount == 200_000
        assert link["amount"] == transaction.amount == request.amount == order.total_amount
        assert sorted((i.name, i.quantity, i.price) for i in request.items) == [
            ("Red Rose", 2, 60_000),
            ("Tulip", 2, 25_000),
        ]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_custom_redirect_urls(
        self, container: Container, gateway: FakeGateway, pending_order: Any
    ) -> None:
        await container.payments.create_payment_link(
            pending_order.id,
            return_url="https://shop.example/ok",
            cancel_url="https://shop.example/cancel",
        )

        assert gateway.created[0].return_url == "https://shop.example/ok"
        assert gateway.created[0].cancel_url == "https://shop.example/cancel"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_second_link_rejected(
        self, container: Container, gateway: FakeGateway, pending_order: Any, linked_order: Any
    ) -> None:
        with pytest.raises(DuplicatePaymentLink):
            await container.payments.create_payment_link(pending_order.id)

        assert len(gateway.created) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_non_pending_order_rejected(
        self, container: Container, pending_order: Any, seed: SimpleNamespace
    ) -> None:
        await container.orders.update_order_status(pending_order.id, "cancelled", seed.admin.id)

        with pytest.raises(InvalidStatusTransition):
            await container.payments.create_payment_link(pending_order.id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_order(self, container: Container, seed: SimpleNamespace) -> None:
        with pytest.raises(OrderNotFound):
            await container.payments.create_payment_link(uuid.uuid4())

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_order_without_items_rejected(
        self, container: Container, pending_order: Any
    ) -> None:
        await container.orders.delete_order_item(pending_order.items[0].id)

        with pytest.raises(InvalidOrderRequest):
            await container.payments.create_payment_link(pending_order.id)

        order = await container.orders.get_order(pending_order.id)
        assert order.payment_code is None
        assert order.transaction_id is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_gateway_failure_is_compensated(
        self,
        container: Container,
        gateway: FakeGateway,
        pending_order: Any,
        seed: SimpleNamespace,
    ) -> None:
        """Failed gateway call: transaction failed, code cleared, stock kept."""
        gateway.fail_with = GatewayError("Gateway unavailable", transient=True)

        with pytest.raises(GatewayError):
            await container.payments.create_payment_link(pending_order.id)

        order = await container.orders.get_order(pending_order.id)
        assert order.status == "pending"
        assert order.payment_code is None
        assert await container.stock.available(seed.rose.id) == 3

        failed = await container.transactions.list_transactions(status="failed")
        assert len(failed) == 1
        assert failed[0].id == order.transaction_id

        gateway.fail_with = None
        link = await container.payments.create_payment_link(pending_order.id)
        assert link["transaction_id"] != failed[0].id

        order = await container.orders.get_order(pending_order.id)
        assert order.payment_code == link["payment_code"]
        assert order.transaction_id == link["transaction_id"]


class TestCancelPaymentLink:
    """Test suite for PaymentService.cancel_payment_link."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancel_mirrors_locally(
        self,
        container: Container,
        gateway: FakeGateway,
        pending_order: Any,
        linked_order: Any,
        seed: SimpleNamespace,
    ) -> None:
        code = linked_order["payment_code"]

        result = await container.payments.cancel_payment_link(code, "Changed my mind")

        assert result["status"] == "CANCELLED"
        assert gateway.cancelled == [(code, "Changed my mind")]

        order = await container.orders.get_order(pending_order.id)
        assert order.status == "cancelled"
        transaction = await container.transactions.get_transaction(linked_order["transaction_id"])
        assert transaction.status == "cancelled"
        assert await container.stock.available(seed.rose.id) == 3

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancel_after_payment_keeps_completed(
        self, container: Container, pending_order: Any, linked_order: Any
    ) -> None:
        await container.reconciliation.reconcile(
            linked_order["payment_code"], GatewayReport(code="00", status="PAID")
        )

        await container.payments.cancel_payment_link(linked_order["payment_code"])

        order = await container.orders.get_order(pending_order.id)
        assert order.status == "paid"
        transaction = await container.transactions.get_transaction(linked_order["transaction_id"])
        assert transaction.status == "completed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancel_with_restock_enabled(
        self,
        test_settings: Settings,
        gateway: FakeGateway,
        session_factory: Any,
        seed: SimpleNamespace,
    ) -> None:
        settings = test_settings.model_copy(update={"release_stock_on_cancel": True})
        container = build_container(settings, gateway=gateway, session_factory=session_factory)
        order = await container.orders.create_order(
            seed.customer.id,
            [OrderLine(seed.rose.id, 2)],
            "12 Nguyen Hue",
        )
        link = await container.payments.create_payment_link(order.id)
        assert await container.stock.available(seed.rose.id) == 3

        await container.payments.cancel_payment_link(link["payment_code"])

        assert await container.stock.available(seed.rose.id) == 5

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_gateway_cancel_failure_leaves_state(
        self,
        container: Container,
        gateway: FakeGateway,
        pending_order: Any,
        linked_order: Any,
    ) -> None:
        gateway.fail_with = GatewayError("Link not found", transient=False)

        with pytest.raises(GatewayError):
            await container.payments.cancel_payment_link(linked_order["payment_code"])

        order = await container.orders.get_order(pending_order.id)
        assert order.status == "pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_payment_link_info(
        self, container: Container, linked_order: Any
    ) -> None:
        info = await container.payments.get_payment_link_info(linked_order["payment_code"])
        assert info["orderCode"] == int(linked_order["payment_code"])
        assert info["status"] == "PENDING"
