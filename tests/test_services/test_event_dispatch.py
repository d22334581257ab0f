"""Tests for post-commit event dispatch and the Redis publisher."""

from __future__ import annotations

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from support import ADMIN, BUYER, delivered_order, place_order

from order_settlement.domain.enums import OrderStatus
from order_settlement.domain.events import EscrowRefunded
from order_settlement.domain.exceptions import IllegalTransitionError
from order_settlement.services.event_dispatcher import (
    EventDispatcher,
    InMemoryEventPublisher,
    RedisEventPublisher,
)
from order_settlement.services.orchestrator import SettlementOrchestrator


class FailingPublisher:
    def __init__(self) -> None:
        self.attempts = 0

    async def publish(self, event) -> None:
        self.attempts += 1
        raise RuntimeError("notification service down")


class TestDispatch:
    @pytest.mark.asyncio
    async def test_events_published_in_commit_order(
        self, orchestrator, session_factory, publisher
    ) -> None:
        order = await delivered_order(orchestrator, session_factory)
        publisher.clear()

        result = await orchestrator.confirm_receipt(order.id, BUYER)
        await orchestrator.dispatcher.drain()

        assert publisher.names() == result.event_names
        assert publisher.names()[-1] == "EscrowReleased"
        assert all(event.order_id == order.id for event in publisher.events)

    @pytest.mark.asyncio
    async def test_failed_operation_publishes_nothing(self, orchestrator, publisher) -> None:
        order = await place_order(orchestrator)
        await orchestrator.dispatcher.drain()
        publisher.clear()

        with pytest.raises(IllegalTransitionError):
            await orchestrator.update_status(order.id, OrderStatus.COMPLETED, ADMIN)
        await orchestrator.dispatcher.drain()

        assert publisher.events == []

    @pytest.mark.asyncio
    async def test_failing_publisher_never_undoes_settlement(
        self, session_factory, settings, clock
    ) -> None:
        failing = FailingPublisher()
        memory = InMemoryEventPublisher()
        engine = SettlementOrchestrator(
            session_factory,
            settings,
            dispatcher=EventDispatcher([failing, memory]),
            clock=clock,
        )
        order = await delivered_order(engine, session_factory)

        await engine.confirm_receipt(order.id, BUYER)
        await engine.dispatcher.drain()
        engine.grace_scheduler.shutdown()

        assert failing.attempts > 0
        assert "EscrowReleased" in memory.names()
        assert (await engine.get_order(order.id)).status == OrderStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_dispatch_without_publishers_is_a_no_op(self) -> None:
        dispatcher = EventDispatcher()
        dispatcher.dispatch([EscrowRefunded(order_id=uuid.uuid4(), amount=Decimal("10"))])
        await dispatcher.drain()


class TestRedisEventPublisher:
    @pytest.mark.asyncio
    async def test_publishes_json_document(self) -> None:
        event = EscrowRefunded(order_id=uuid.uuid4(), amount=Decimal("1210.00"))
        with patch(
            "order_settlement.services.event_dispatcher.publish_json",
            new_callable=AsyncMock,
            return_value=1,
        ) as publish:
            await RedisEventPublisher("settlement.events").publish(event)

        publish.assert_awaited_once_with("settlement.events", event.to_dict())

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self) -> None:
        event = EscrowRefunded(order_id=uuid.uuid4(), amount=Decimal("5.00"))
        with patch(
            "order_settlement.services.event_dispatcher.publish_json",
            new_callable=AsyncMock,
            side_effect=[RedisConnectionError("reset"), 1],
        ) as publish:
            await RedisEventPublisher("settlement.events").publish(event)

        assert publish.await_count == 2
