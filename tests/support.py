"""Actors, a controllable clock and lifecycle helpers shared by the test suite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from order_settlement.domain.actor import Actor
from order_settlement.domain.enums import OrderStatus, Role
from order_settlement.infrastructure.database.unit_of_work import UnitOfWork
from order_settlement.services.orchestrator import LineItem

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_settlement.infrastructure.database.orm_models import Order
    from order_settlement.services.orchestrator import SettlementOrchestrator

BUYER = Actor("buyer-1", Role.BUYER)
OTHER_BUYER = Actor("buyer-2", Role.BUYER)
SELLER = Actor("seller-1", Role.SELLER)
AGENT = Actor("agent-1", Role.AGENT)
OTHER_AGENT = Actor("agent-2", Role.AGENT)
ADMIN = Actor("admin-1", Role.ADMIN)

CURRENCY = "RWF"


class FakeClock:
    """A clock tests move forward by hand."""

    def __init__(self) -> None:
        self.now = datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


async def fund_wallet(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str,
    amount: Decimal | str,
    currency: str = CURRENCY,
) -> None:
    """Top up a wallet outside the engine (deposits are handled elsewhere)."""
    async with UnitOfWork(session_factory) as uow:
        await uow.wallets.credit(user_id, currency, Decimal(amount))


async def place_order(
    engine: SettlementOrchestrator,
    *,
    buyer: Actor = BUYER,
    base_price: str = "1000",
    quantity: int = 1,
    **kwargs,
) -> Order:
    result = await engine.create_order(
        buyer,
        SELLER.id,
        [LineItem("sku-1", quantity, Decimal(base_price))],
        **kwargs,
    )
    return result.value


async def paid_order(
    engine: SettlementOrchestrator,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    buyer: Actor = BUYER,
    **kwargs,
) -> Order:
    """An order held in escrow from the buyer's wallet: status confirmed."""
    order = await place_order(engine, buyer=buyer, **kwargs)
    await fund_wallet(session_factory, buyer.id, order.display_total, order.currency)
    await engine.hold_escrow(order.id, buyer)
    return await engine.get_order(order.id)


async def delivered_order(
    engine: SettlementOrchestrator,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    agent: Actor = AGENT,
    **kwargs,
) -> Order:
    """A paid order carried all the way to delivered by one agent."""
    order = await paid_order(engine, session_factory, **kwargs)
    await engine.claim(order.id, agent)
    for target in (OrderStatus.PICKED_UP, OrderStatus.IN_DELIVERY, OrderStatus.DELIVERED):
        await engine.update_status(order.id, target, agent)
    return await engine.get_order(order.id)
