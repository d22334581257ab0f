"""Agent Assignment — concurrency-safe claim of an unassigned order.

The claim is one conditional UPDATE:

    UPDATE orders SET agent_id = :agent, status = 'assigned', version = version + 1
     WHERE id = :order AND agent_id IS NULL AND status IN (:claimable)

Two agents racing for the same order both issue it; the database lets exactly
one of them change a row. The loser re-reads the order to report why.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

from order_settlement.domain.commission import agent_commission
from order_settlement.domain.enums import MarketplaceVariant, OrderStatus, Role
from order_settlement.domain.events import OrderClaimed, OrderStatusChanged
from order_settlement.domain.exceptions import (
    AgentAtCapacityError,
    AlreadyClaimedError,
    IllegalTransitionError,
    OrderNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from order_settlement.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Mapping

    from order_settlement.domain.actor import Actor
    from order_settlement.domain.commission import AgentFeeSchedule
    from order_settlement.domain.enums import AgentType
    from order_settlement.domain.variants import VariantPolicy
    from order_settlement.infrastructure.database.orm_models import Order
    from order_settlement.infrastructure.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)


def new_delivery_code() -> str:
    """Six-digit code the buyer hands to the agent at the door."""
    return f"{secrets.randbelow(1_000_000):06d}"


class AgentAssignment:
    def __init__(
        self,
        uow: UnitOfWork,
        policies: Mapping[MarketplaceVariant, VariantPolicy],
        fee_schedules: Mapping[AgentType, AgentFeeSchedule],
        max_active_orders: int,
    ) -> None:
        self._uow = uow
        self._policies = policies
        self._fee_schedules = fee_schedules
        self._max_active_orders = max_active_orders

    async def claim(self, order_id: uuid.UUID, agent: Actor) -> Order:
        """An agent takes an unassigned order for itself.

        Raises:
            UnauthorizedError: The actor is not an agent.
            OrderNotFoundError: No such order.
            AlreadyClaimedError: Another agent holds the order (including a lost race).
            IllegalTransitionError: The order is not in a claimable status.
            AgentAtCapacityError: The agent already carries the maximum load.
        """
        if agent.role != Role.AGENT:
            raise UnauthorizedError(agent.role.value, "claim an order")
        return await self._take(order_id, agent.id, agent)

    async def assign(self, order_id: uuid.UUID, agent_id: str, admin: Actor) -> Order:
        """An admin hands an unassigned order to a specific agent."""
        if not admin.is_admin:
            raise UnauthorizedError(admin.role.value, "assign an agent to an order")
        agent_id = (agent_id or "").strip()
        if not agent_id:
            raise ValidationError("agent_id is required", field="agent_id")
        return await self._take(order_id, agent_id, admin)

    async def _take(self, order_id: uuid.UUID, agent_id: str, actor: Actor) -> Order:
        order = await self._uow.orders.get_by_id(order_id, refresh=True)
        if order is None:
            raise OrderNotFoundError(str(order_id))

        policy = self._policies[MarketplaceVariant(order.variant)]
        if order.agent_id is not None:
            raise AlreadyClaimedError(str(order_id))
        if OrderStatus(order.status) not in policy.claimable_statuses:
            raise IllegalTransitionError(order.status, OrderStatus.ASSIGNED.value)

        active = await self._uow.orders.count_active_for_agent(agent_id)
        if active >= self._max_active_orders:
            raise AgentAtCapacityError(agent_id, self._max_active_orders)

        # Charged on what the buyer pays, delivery fee included
        earnings = agent_commission(order.display_total, self._fee_schedules[policy.agent_type])
        from_status = order.status
        won = await self._uow.orders.claim(
            order.id,
            agent_id,
            policy.claimable_statuses,
            agent_commission=earnings,
            delivery_code=new_delivery_code(),
        )

        order = await self._uow.orders.get_by_id(order_id, refresh=True)
        if not won:
            if order is None:
                raise OrderNotFoundError(str(order_id))
            if order.agent_id is not None:
                logger.info("order.claim_lost", order_id=str(order_id), agent_id=agent_id)
                raise AlreadyClaimedError(str(order_id))
            raise IllegalTransitionError(order.status, OrderStatus.ASSIGNED.value)

        self._uow.emit(
            OrderStatusChanged(
                order_id=order.id,
                from_status=from_status,
                to_status=OrderStatus.ASSIGNED.value,
                actor=str(actor),
            ),
            actor,
        )
        self._uow.emit(OrderClaimed(order_id=order.id, agent_id=agent_id), actor)
        logger.info(
            "order.claimed",
            order_id=str(order.id),
            agent_id=agent_id,
            agent_commission=str(earnings),
            by=str(actor),
        )
        return order
