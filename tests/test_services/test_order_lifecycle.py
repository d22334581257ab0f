"""Tests for order creation, pricing capture and status transitions."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from support import (
    ADMIN,
    AGENT,
    BUYER,
    OTHER_AGENT,
    SELLER,
    delivered_order,
    paid_order,
    place_order,
)

from order_settlement.domain.enums import OrderStatus
from order_settlement.domain.exceptions import (
    ConflictError,
    IllegalTransitionError,
    NotEligibleError,
    OrderNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from order_settlement.services.orchestrator import LineItem


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_totals_identity(self, orchestrator) -> None:
        result = await orchestrator.create_order(
            BUYER,
            SELLER.id,
            [LineItem("sku-1", 2, Decimal("1000")), LineItem("sku-2", 1, Decimal("500"))],
            delivery_fee=Decimal("300"),
            tax=Decimal("50"),
            discount=Decimal("100"),
        )

        order = result.value
        assert order.status == OrderStatus.PENDING_PAYMENT.value
        assert order.base_total == Decimal("2500.00")
        assert order.commission_total == Decimal("525.00")
        assert order.display_total == (
            order.base_total + order.commission_total + order.delivery_fee + order.tax - order.discount
        )
        assert [line.position for line in order.lines] == [0, 1]
        assert result.event_names == ["OrderCreated"]

    @pytest.mark.asyncio
    async def test_only_buyers_place_orders(self, orchestrator) -> None:
        with pytest.raises(UnauthorizedError):
            await place_order(orchestrator, buyer=SELLER)

    @pytest.mark.asyncio
    async def test_unknown_variant(self, orchestrator) -> None:
        with pytest.raises(ValidationError):
            await place_order(orchestrator, variant="flea_market")

    @pytest.mark.asyncio
    async def test_empty_cart_rejected(self, orchestrator) -> None:
        with pytest.raises(ValidationError):
            await orchestrator.create_order(BUYER, SELLER.id, [])


class TestCommissionCapture:
    @pytest.mark.asyncio
    async def test_new_rate_applies_to_new_orders_only(self, orchestrator) -> None:
        before = await place_order(orchestrator)

        await orchestrator.set_commission_rate("platform_commission", Decimal("0.10"), ADMIN)
        after = await place_order(orchestrator)

        assert after.display_total == Decimal("1100.00")
        reloaded = await orchestrator.get_order(before.id)
        assert reloaded.display_total == Decimal("1210.00")
        assert reloaded.lines[0].commission_rate == Decimal("0.21")

    @pytest.mark.asyncio
    async def test_variant_rate_wins_over_global(self, orchestrator) -> None:
        await orchestrator.set_commission_rate("platform_commission", Decimal("0.10"), ADMIN)
        await orchestrator.set_commission_rate("platform_commission:grocery", Decimal("0.05"), ADMIN)

        grocery = await place_order(orchestrator, variant="grocery")
        standard = await place_order(orchestrator)

        assert grocery.display_total == Decimal("1050.00")
        assert standard.display_total == Decimal("1100.00")

    @pytest.mark.asyncio
    async def test_only_admin_sets_rates(self, orchestrator) -> None:
        with pytest.raises(UnauthorizedError):
            await orchestrator.set_commission_rate("platform_commission", Decimal("0.1"), SELLER)

    @pytest.mark.asyncio
    async def test_rate_out_of_range(self, orchestrator) -> None:
        with pytest.raises(ValidationError):
            await orchestrator.set_commission_rate("platform_commission", Decimal("1.5"), ADMIN)

    @pytest.mark.asyncio
    async def test_settings_are_listed(self, orchestrator) -> None:
        await orchestrator.set_commission_rate("platform_commission", Decimal("0.10"), ADMIN)
        await orchestrator.set_commission_rate("platform_commission", Decimal("0.12"), ADMIN)

        settings = await orchestrator.get_commission_settings()
        assert [(s.key, s.rate) for s in settings] == [("platform_commission", Decimal("0.12"))]


class TestStatusTransitions:
    @pytest.mark.asyncio
    async def test_unknown_order(self, orchestrator) -> None:
        with pytest.raises(OrderNotFoundError):
            await orchestrator.update_status(uuid.uuid4(), OrderStatus.CANCELLED, ADMIN)

    @pytest.mark.asyncio
    async def test_unknown_status(self, orchestrator) -> None:
        order = await place_order(orchestrator)
        with pytest.raises(ValidationError):
            await orchestrator.update_status(order.id, "shipped", ADMIN)

    @pytest.mark.asyncio
    async def test_illegal_jump(self, orchestrator) -> None:
        order = await place_order(orchestrator)
        with pytest.raises(IllegalTransitionError):
            await orchestrator.update_status(order.id, OrderStatus.DELIVERED, ADMIN)
        assert (await orchestrator.get_order(order.id)).status == OrderStatus.PENDING_PAYMENT.value

    @pytest.mark.asyncio
    async def test_confirmation_needs_escrow(self, orchestrator) -> None:
        order = await place_order(orchestrator)
        with pytest.raises(NotEligibleError):
            await orchestrator.update_status(order.id, OrderStatus.CONFIRMED, ADMIN)

    @pytest.mark.asyncio
    async def test_payment_rejected_resubmitted_then_cancelled(self, orchestrator) -> None:
        order = await place_order(orchestrator)

        await orchestrator.update_status(order.id, OrderStatus.PAYMENT_REJECTED, ADMIN)
        await orchestrator.update_status(order.id, OrderStatus.PENDING_PAYMENT, BUYER)
        result = await orchestrator.update_status(order.id, OrderStatus.CANCELLED, BUYER)

        assert result.value.status == OrderStatus.CANCELLED.value
        assert result.value.cancelled_at is not None
        assert "EscrowRefunded" not in result.event_names

    @pytest.mark.asyncio
    async def test_final_state_is_final(self, orchestrator) -> None:
        order = await place_order(orchestrator)
        await orchestrator.update_status(order.id, OrderStatus.CANCELLED, BUYER)

        with pytest.raises(IllegalTransitionError):
            await orchestrator.update_status(order.id, OrderStatus.PENDING_PAYMENT, BUYER)

    @pytest.mark.asyncio
    async def test_only_assigned_agent_moves_order(self, orchestrator, session_factory) -> None:
        order = await paid_order(orchestrator, session_factory)
        await orchestrator.claim(order.id, AGENT)

        with pytest.raises(UnauthorizedError):
            await orchestrator.update_status(order.id, OrderStatus.PICKED_UP, OTHER_AGENT)

        result = await orchestrator.update_status(order.id, OrderStatus.PICKED_UP, AGENT)
        assert result.value.picked_up_at is not None

    @pytest.mark.asyncio
    async def test_seller_cannot_drive_delivery(self, orchestrator, session_factory) -> None:
        order = await paid_order(orchestrator, session_factory)
        await orchestrator.claim(order.id, AGENT)

        with pytest.raises(UnauthorizedError):
            await orchestrator.update_status(order.id, OrderStatus.PICKED_UP, SELLER)

    @pytest.mark.asyncio
    async def test_stale_version_is_a_conflict(self, orchestrator, session_factory) -> None:
        order = await paid_order(orchestrator, session_factory)
        await orchestrator.claim(order.id, AGENT)
        current = await orchestrator.get_order(order.id)

        with pytest.raises(ConflictError):
            await orchestrator.update_status(
                order.id, OrderStatus.PICKED_UP, AGENT, expected_version=current.version - 1
            )

        result = await orchestrator.update_status(
            order.id, OrderStatus.PICKED_UP, AGENT, expected_version=current.version
        )
        assert result.value.version > current.version

    @pytest.mark.asyncio
    async def test_assigned_through_status_means_claim(self, orchestrator, session_factory) -> None:
        order = await paid_order(orchestrator, session_factory)

        with pytest.raises(ValidationError):
            await orchestrator.update_status(order.id, OrderStatus.ASSIGNED, ADMIN)

        result = await orchestrator.update_status(order.id, OrderStatus.ASSIGNED, AGENT)
        assert result.value.agent_id == AGENT.id
        assert "OrderClaimed" in result.event_names

    @pytest.mark.asyncio
    async def test_delivery_code_checked(self, orchestrator, session_factory) -> None:
        order = await paid_order(orchestrator, session_factory)
        await orchestrator.claim(order.id, AGENT)
        await orchestrator.update_status(order.id, OrderStatus.PICKED_UP, AGENT)
        await orchestrator.update_status(order.id, OrderStatus.IN_DELIVERY, AGENT)
        code = (await orchestrator.get_order(order.id)).delivery_code

        with pytest.raises(ValidationError):
            await orchestrator.update_status(
                order.id, OrderStatus.DELIVERED, AGENT, delivery_code="wrong"
            )

        result = await orchestrator.update_status(
            order.id, OrderStatus.DELIVERED, AGENT, delivery_code=code
        )
        assert result.value.status == OrderStatus.DELIVERED.value
        assert result.value.grace_period_ends_at is not None


class TestAuditTrail:
    @pytest.mark.asyncio
    async def test_events_recorded_in_order(self, orchestrator, session_factory) -> None:
        order = await delivered_order(orchestrator, session_factory)

        events = await orchestrator.get_events(order.id)

        assert [e.event_type for e in events] == [
            "OrderCreated",
            "EscrowHeld",
            "OrderStatusChanged",  # confirmed
            "OrderStatusChanged",  # assigned
            "OrderClaimed",
            "OrderStatusChanged",  # picked_up
            "OrderStatusChanged",  # in_delivery
            "OrderStatusChanged",  # delivered
        ]
        assert events[2].actor == "system:SYSTEM"
        assert events[-1].payload["to_status"] == "delivered"

    @pytest.mark.asyncio
    async def test_failed_operation_records_nothing(self, orchestrator) -> None:
        order = await place_order(orchestrator)

        with pytest.raises(IllegalTransitionError):
            await orchestrator.update_status(order.id, OrderStatus.DELIVERED, ADMIN)

        events = await orchestrator.get_events(order.id)
        assert [e.event_type for e in events] == ["OrderCreated"]
