"""Tests for escrow holds, releases and refunds."""

from __future__ import annotations

from decimal import Decimal

import pytest
from support import (
    ADMIN,
    AGENT,
    BUYER,
    CURRENCY,
    OTHER_BUYER,
    SELLER,
    delivered_order,
    fund_wallet,
    paid_order,
    place_order,
)

from order_settlement.domain.enums import EscrowStatus, FundingSource, OrderStatus
from order_settlement.domain.exceptions import (
    AlreadyHeldError,
    EscrowNotFoundError,
    InsufficientFundsError,
    NotHeldError,
    OrderNotDeliveredError,
    UnauthorizedError,
    ValidationError,
)
from order_settlement.infrastructure.database.unit_of_work import UnitOfWork
from order_settlement.services.escrow_ledger import EscrowLedger


class TestHold:
    @pytest.mark.asyncio
    async def test_wallet_hold_confirms_order(self, orchestrator, session_factory) -> None:
        order = await place_order(orchestrator)
        await fund_wallet(session_factory, BUYER.id, "1500")

        result = await orchestrator.hold_escrow(order.id, BUYER)

        escrow = result.value
        assert escrow.status == EscrowStatus.HELD.value
        assert escrow.amount == Decimal("1210.00")
        assert result.event_names == ["EscrowHeld", "OrderStatusChanged"]

        order = await orchestrator.get_order(order.id)
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.funding_source == FundingSource.WALLET.value
        assert await orchestrator.wallet_balance(BUYER.id) == Decimal("290.00")

    @pytest.mark.asyncio
    async def test_second_hold_is_already_held(self, orchestrator, session_factory) -> None:
        order = await paid_order(orchestrator, session_factory)
        await fund_wallet(session_factory, BUYER.id, "5000")

        with pytest.raises(AlreadyHeldError) as exc_info:
            await orchestrator.hold_escrow(order.id, BUYER)

        assert exc_info.value.idempotent is True
        # The retry did not take money a second time
        assert await orchestrator.wallet_balance(BUYER.id) == Decimal("5000.00")

    @pytest.mark.asyncio
    async def test_insufficient_funds_leaves_order_pending(self, orchestrator, session_factory) -> None:
        order = await place_order(orchestrator)
        await fund_wallet(session_factory, BUYER.id, "100")

        with pytest.raises(InsufficientFundsError):
            await orchestrator.hold_escrow(order.id, BUYER)

        assert (await orchestrator.get_order(order.id)).status == OrderStatus.PENDING_PAYMENT.value
        assert await orchestrator.wallet_balance(BUYER.id) == Decimal("100.00")
        with pytest.raises(EscrowNotFoundError):
            await orchestrator.get_escrow(order.id)

    @pytest.mark.asyncio
    async def test_amount_must_match_order_total(self, orchestrator, session_factory) -> None:
        order = await place_order(orchestrator)
        await fund_wallet(session_factory, BUYER.id, "5000")

        with pytest.raises(ValidationError):
            await orchestrator.hold_escrow(order.id, BUYER, amount=Decimal("1000"))
        with pytest.raises(ValidationError):
            await orchestrator.hold_escrow(order.id, BUYER, currency="USD")

    @pytest.mark.asyncio
    async def test_only_the_buyer_funds_from_wallet(self, orchestrator, session_factory) -> None:
        order = await place_order(orchestrator)
        await fund_wallet(session_factory, OTHER_BUYER.id, "5000")

        with pytest.raises(UnauthorizedError):
            await orchestrator.hold_escrow(order.id, OTHER_BUYER)

    @pytest.mark.asyncio
    async def test_payment_proof_is_approved_by_admin(self, orchestrator) -> None:
        order = await place_order(orchestrator)

        with pytest.raises(UnauthorizedError):
            await orchestrator.hold_escrow(
                order.id, BUYER, funding_source=FundingSource.PAYMENT_PROOF
            )

        result = await orchestrator.hold_escrow(
            order.id, ADMIN, funding_source=FundingSource.PAYMENT_PROOF
        )
        assert result.value.funding_source == FundingSource.PAYMENT_PROOF.value
        assert (await orchestrator.get_order(order.id)).status == OrderStatus.CONFIRMED.value
        assert await orchestrator.wallet_balance(BUYER.id) == Decimal("0")


class TestRefund:
    @pytest.mark.asyncio
    async def test_refund_cancels_and_credits_buyer_exactly(
        self, orchestrator, session_factory
    ) -> None:
        order = await paid_order(orchestrator, session_factory)
        await orchestrator.claim(order.id, AGENT)

        result = await orchestrator.refund(order.id, ADMIN, "seller out of stock")

        settlement = result.value
        assert settlement.kind == EscrowStatus.REFUNDED.value
        assert settlement.buyer_refund_amount == Decimal("1210.00")
        assert (await orchestrator.get_order(order.id)).status == OrderStatus.CANCELLED.value
        assert (await orchestrator.get_escrow(order.id)).status == EscrowStatus.REFUNDED.value
        assert await orchestrator.wallet_balance(BUYER.id) == Decimal("1210.00")
        assert await orchestrator.wallet_balance(SELLER.id) == Decimal("0")
        assert await orchestrator.wallet_balance(AGENT.id) == Decimal("0")
        assert "EscrowRefunded" in result.event_names

    @pytest.mark.asyncio
    async def test_buyer_cancels_confirmed_order(self, orchestrator, session_factory) -> None:
        order = await paid_order(orchestrator, session_factory)

        result = await orchestrator.update_status(order.id, OrderStatus.CANCELLED, BUYER)

        assert result.value.status == OrderStatus.CANCELLED.value
        assert await orchestrator.wallet_balance(BUYER.id) == Decimal("1210.00")

    @pytest.mark.asyncio
    async def test_buyer_cannot_cancel_once_assigned(self, orchestrator, session_factory) -> None:
        order = await paid_order(orchestrator, session_factory)
        await orchestrator.claim(order.id, AGENT)

        with pytest.raises(UnauthorizedError):
            await orchestrator.refund(order.id, BUYER)

        assert (await orchestrator.get_escrow(order.id)).status == EscrowStatus.HELD.value
        assert await orchestrator.wallet_balance(BUYER.id) == Decimal("0")

    @pytest.mark.asyncio
    async def test_refund_happens_once(self, orchestrator, session_factory) -> None:
        order = await paid_order(orchestrator, session_factory)
        await orchestrator.refund(order.id, ADMIN)

        with pytest.raises(NotHeldError):
            await orchestrator.refund(order.id, ADMIN)
        assert await orchestrator.wallet_balance(BUYER.id) == Decimal("1210.00")


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_before_delivery_is_refused(
        self, orchestrator, session_factory, settings
    ) -> None:
        order = await paid_order(orchestrator, session_factory)
        escrow = await orchestrator.get_escrow(order.id)

        with pytest.raises(OrderNotDeliveredError):
            async with UnitOfWork(session_factory) as uow:
                ledger = EscrowLedger(uow, settings.variant_policies())
                await ledger.release(escrow.id, "too early", ADMIN)

        assert (await orchestrator.get_escrow(order.id)).status == EscrowStatus.HELD.value

    @pytest.mark.asyncio
    async def test_release_splits_the_escrow(self, orchestrator, session_factory) -> None:
        order = await delivered_order(orchestrator, session_factory, delivery_fee=Decimal("500"))
        assert order.display_total == Decimal("1710.00")

        await orchestrator.confirm_receipt(order.id, BUYER)

        seller = await orchestrator.wallet_balance(SELLER.id)
        agent = await orchestrator.wallet_balance(AGENT.id)
        platform = await orchestrator.platform_balance()
        assert seller == Decimal("1000.00")
        assert agent == Decimal("700.00")  # 200 commission + 500 delivery fee
        assert platform == Decimal("10.00")
        assert seller + agent + platform == order.display_total

    @pytest.mark.asyncio
    async def test_agent_collected_delivery_fee_comes_off_seller_share(
        self, orchestrator, session_factory
    ) -> None:
        order = await delivered_order(
            orchestrator, session_factory, variant="local_market", delivery_fee=Decimal("500")
        )
        assert order.display_total == Decimal("1710.00")
        assert order.agent_commission == Decimal("256.50")

        await orchestrator.confirm_receipt(order.id, BUYER)

        assert await orchestrator.wallet_balance(SELLER.id) == Decimal("500.00")
        assert await orchestrator.wallet_balance(AGENT.id) == Decimal("256.50")
        assert await orchestrator.platform_balance() == Decimal("953.50")

    @pytest.mark.asyncio
    async def test_second_release_is_not_held(
        self, orchestrator, session_factory, settings
    ) -> None:
        order = await delivered_order(orchestrator, session_factory)
        await orchestrator.confirm_receipt(order.id, BUYER)
        escrow = await orchestrator.get_escrow(order.id)

        with pytest.raises(NotHeldError):
            async with UnitOfWork(session_factory) as uow:
                await EscrowLedger(uow, settings.variant_policies()).release(
                    escrow.id, "again", ADMIN
                )
        assert await orchestrator.wallet_balance(SELLER.id) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_failed_operation_moves_no_money(
        self, orchestrator, session_factory, settings
    ) -> None:
        order = await delivered_order(orchestrator, session_factory)
        escrow = await orchestrator.get_escrow(order.id)

        with pytest.raises(RuntimeError):
            async with UnitOfWork(session_factory) as uow:
                await EscrowLedger(uow, settings.variant_policies()).release(
                    escrow.id, "crash after release", ADMIN
                )
                raise RuntimeError("storage went away")

        assert (await orchestrator.get_escrow(order.id)).status == EscrowStatus.HELD.value
        assert await orchestrator.wallet_balance(SELLER.id) == Decimal("0")
        assert await orchestrator.platform_balance() == Decimal("0")

    @pytest.mark.asyncio
    async def test_pricing_audit_flags_corrupted_line(self, orchestrator, session_factory) -> None:
        order = await delivered_order(orchestrator, session_factory)
        async with UnitOfWork(session_factory) as uow:
            stored = await uow.orders.get_by_id(order.id)
            stored.lines[0].unit_display_price = Decimal("900")

        await orchestrator.confirm_receipt(order.id, BUYER)

        order = await orchestrator.get_order(order.id)
        assert order.lines[0].pricing_flagged is True
        assert (await orchestrator.get_escrow(order.id)).status == EscrowStatus.RELEASED.value
        assert await orchestrator.wallet_balance(SELLER.id, CURRENCY) == Decimal("1000.00")
