"""Tests for grace-period timers and release eligibility."""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime, timedelta

import pytest
from support import BUYER, SELLER, delivered_order, paid_order

from order_settlement.domain.enums import EscrowStatus
from order_settlement.services.grace_scheduler import GracePeriodScheduler

GRACE_SECONDS = 300


class TestEligibility:
    @pytest.mark.asyncio
    async def test_delivery_arms_timer(self, orchestrator, session_factory, clock) -> None:
        order = await delivered_order(orchestrator, session_factory)

        assert orchestrator.grace_scheduler.is_scheduled(order.id)
        assert order.grace_period_ends_at == clock.now + timedelta(seconds=GRACE_SECONDS)

    @pytest.mark.asyncio
    async def test_not_eligible_during_grace(self, orchestrator, session_factory) -> None:
        order = await delivered_order(orchestrator, session_factory)

        result = await orchestrator.check_release_eligibility(order.id)

        assert result.value is False
        assert result.events == []
        assert (await orchestrator.get_order(order.id)).release_eligible_at is None

    @pytest.mark.asyncio
    async def test_expiry_marks_eligible_without_moving_money(
        self, orchestrator, session_factory, clock
    ) -> None:
        order = await delivered_order(orchestrator, session_factory)
        clock.advance(seconds=GRACE_SECONDS + 1)

        result = await orchestrator.check_release_eligibility(order.id)

        assert result.value is True
        assert result.event_names == ["ReleaseEligible"]
        reloaded = await orchestrator.get_order(order.id)
        assert reloaded.release_eligible_at == clock.now
        assert (await orchestrator.get_escrow(order.id)).status == EscrowStatus.HELD.value
        assert await orchestrator.wallet_balance(SELLER.id) == 0

    @pytest.mark.asyncio
    async def test_expiry_is_reported_once(self, orchestrator, session_factory, clock) -> None:
        order = await delivered_order(orchestrator, session_factory)
        clock.advance(seconds=GRACE_SECONDS + 1)
        await orchestrator.check_release_eligibility(order.id)

        again = await orchestrator.check_release_eligibility(order.id)

        assert again.value is True
        assert again.events == []

    @pytest.mark.asyncio
    async def test_check_ignores_orders_not_delivered(self, orchestrator, session_factory) -> None:
        order = await paid_order(orchestrator, session_factory)
        assert (await orchestrator.check_release_eligibility(order.id)).value is False
        assert (await orchestrator.check_release_eligibility(uuid.uuid4())).value is False

    @pytest.mark.asyncio
    async def test_confirmation_cancels_timer(self, orchestrator, session_factory) -> None:
        order = await delivered_order(orchestrator, session_factory)

        await orchestrator.confirm_receipt(order.id, BUYER)

        assert not orchestrator.grace_scheduler.is_scheduled(order.id)

    @pytest.mark.asyncio
    async def test_restart_rearms_pending_timers(self, orchestrator, session_factory, clock) -> None:
        waiting = await delivered_order(orchestrator, session_factory)
        done = await delivered_order(orchestrator, session_factory)
        orchestrator.grace_scheduler.shutdown()

        clock.advance(seconds=GRACE_SECONDS + 1)
        await orchestrator.check_release_eligibility(done.id)

        assert await orchestrator.reschedule_pending() == 1
        assert orchestrator.grace_scheduler.is_scheduled(waiting.id)
        assert not orchestrator.grace_scheduler.is_scheduled(done.id)


class TestGracePeriodScheduler:
    @pytest.mark.asyncio
    async def test_expired_timer_fires(self) -> None:
        fired: list[uuid.UUID] = []

        async def on_expiry(order_id: uuid.UUID) -> None:
            fired.append(order_id)

        scheduler = GracePeriodScheduler(on_expiry)
        order_id = uuid.uuid4()
        scheduler.schedule(order_id, datetime.now(UTC) - timedelta(seconds=1))

        await asyncio.sleep(0.05)
        await scheduler.drain()

        assert fired == [order_id]
        assert not scheduler.is_scheduled(order_id)

    @pytest.mark.asyncio
    async def test_cancelled_timer_never_fires(self) -> None:
        fired: list[uuid.UUID] = []

        async def on_expiry(order_id: uuid.UUID) -> None:
            fired.append(order_id)

        scheduler = GracePeriodScheduler(on_expiry)
        order_id = uuid.uuid4()
        scheduler.schedule(order_id, datetime.now(UTC) + timedelta(milliseconds=20))
        scheduler.cancel(order_id)

        await asyncio.sleep(0.05)

        assert fired == []

    @pytest.mark.asyncio
    async def test_failing_check_is_contained(self) -> None:
        async def on_expiry(order_id: uuid.UUID) -> None:
            raise RuntimeError("database unavailable")

        scheduler = GracePeriodScheduler(on_expiry)
        scheduler.schedule(uuid.uuid4(), datetime.now(UTC))

        await asyncio.sleep(0.05)
        await scheduler.drain()
