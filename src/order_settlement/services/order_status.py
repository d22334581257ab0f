"""Status State Machine — validates and applies order status transitions.

The domain machine (domain/state_machine.py) answers "is this edge legal";
this service answers the rest of the contract against the live order row:
    - NotFound          the order does not exist
    - IllegalTransition the edge is not in the graph
    - Unauthorized      the actor's role, or identity, may not take the edge
    - Conflict          the caller's view of the order is stale

Side effects named by the edge are returned, not performed; the orchestrator
applies them inside the same unit of work.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from order_settlement.domain.enums import (
    EscrowStatus,
    MarketplaceVariant,
    OrderStatus,
    Role,
    SideEffect,
)
from order_settlement.domain.events import OrderStatusChanged
from order_settlement.domain.exceptions import (
    ConflictError,
    NotEligibleError,
    OrderNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from order_settlement.domain.state_machine import (
    STATUS_TIMESTAMPS,
    TransitionRule,
    validate_transition,
)
from order_settlement.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable, Mapping

    from order_settlement.domain.actor import Actor
    from order_settlement.domain.variants import VariantPolicy
    from order_settlement.infrastructure.database.orm_models import Order
    from order_settlement.infrastructure.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)


@dataclass(frozen=True)
class TransitionOutcome:
    order: Order
    from_status: OrderStatus
    rule: TransitionRule

    @property
    def side_effects(self) -> tuple[SideEffect, ...]:
        return self.rule.side_effects


def parse_status(value: str | OrderStatus) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError as err:
        raise ValidationError(f"Unknown order status: {value!r}", field="target_status") from err


def authorize(order: Order, rule: TransitionRule, actor: Actor) -> None:
    """Check the actor's role against the edge, then the actor's identity against the order."""
    action = f"move an order from {rule.source} to {rule.target}"
    if actor.role not in rule.roles:
        raise UnauthorizedError(actor.role.value, action)

    if actor.role == Role.BUYER and actor.id != order.buyer_id:
        raise UnauthorizedError(actor.role.value, f"{action} on another buyer's order")
    if actor.role == Role.SELLER and actor.id != order.seller_id:
        raise UnauthorizedError(actor.role.value, f"{action} on another seller's order")
    if actor.role == Role.AGENT:
        # Only the agent taking the order may move it into assigned
        entering_assignment = rule.target == OrderStatus.ASSIGNED and order.agent_id is None
        if not entering_assignment and actor.id != order.agent_id:
            raise UnauthorizedError(actor.role.value, f"{action} on an order assigned to another agent")


class StatusStateMachine:
    """Applies one legal status transition to a persisted order."""

    def __init__(
        self,
        uow: UnitOfWork,
        policies: Mapping[MarketplaceVariant, VariantPolicy],
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._uow = uow
        self._policies = policies
        self._clock = clock

    async def load(self, order_id: uuid.UUID) -> Order:
        """Fetch the current order row or raise OrderNotFoundError."""
        order = await self._uow.orders.get_by_id(order_id, refresh=True)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    async def transition(
        self,
        order_id: uuid.UUID,
        target_status: str | OrderStatus,
        actor: Actor,
        *,
        expected_version: int | None = None,
        delivery_code: str | None = None,
    ) -> TransitionOutcome:
        """Move the order to target_status on behalf of actor.

        Args:
            order_id: The order to move.
            target_status: Desired status.
            actor: Who is asking.
            expected_version: The order version the caller last saw. A mismatch
                means somebody else moved the order first.
            delivery_code: Code the buyer handed to the agent, checked on delivery.

        Raises:
            OrderNotFoundError, IllegalTransitionError, UnauthorizedError,
            ConflictError, NotEligibleError, ValidationError
        """
        order = await self.load(order_id)
        return await self.apply(
            order,
            target_status,
            actor,
            expected_version=expected_version,
            delivery_code=delivery_code,
        )

    async def apply(
        self,
        order: Order,
        target_status: str | OrderStatus,
        actor: Actor,
        *,
        expected_version: int | None = None,
        delivery_code: str | None = None,
    ) -> TransitionOutcome:
        """Same as transition() for an order already loaded in this unit of work."""
        target = parse_status(target_status)
        current = OrderStatus(order.status)

        if expected_version is not None and order.version != expected_version:
            raise ConflictError(
                f"Order {order.id} is at version {order.version}, not {expected_version}"
            )

        rule = validate_transition(current, target)
        authorize(order, rule, actor)
        now = self._clock()
        await self._check_preconditions(order, rule, actor, now, delivery_code)

        order.status = target.value
        stamp = STATUS_TIMESTAMPS.get(target)
        if stamp is not None:
            setattr(order, stamp, now)
        if SideEffect.START_GRACE_PERIOD in rule.side_effects:
            policy = self._policies[MarketplaceVariant(order.variant)]
            order.grace_period_ends_at = now + policy.grace_period
            order.release_eligible_at = None

        await self._uow.flush()

        self._uow.emit(
            OrderStatusChanged(
                order_id=order.id,
                from_status=current.value,
                to_status=target.value,
                actor=str(actor),
            ),
            actor,
        )
        logger.info(
            "order.transitioned",
            order_id=str(order.id),
            from_status=current.value,
            to_status=target.value,
            actor=str(actor),
            version=order.version,
        )
        return TransitionOutcome(order=order, from_status=current, rule=rule)

    async def _check_preconditions(
        self,
        order: Order,
        rule: TransitionRule,
        actor: Actor,
        now: datetime,
        delivery_code: str | None,
    ) -> None:
        if SideEffect.REQUIRE_ESCROW in rule.side_effects:
            escrow = await self._uow.escrows.get_by_order(order.id)
            if escrow is None or escrow.status != EscrowStatus.HELD.value:
                raise NotEligibleError(str(order.id), "payment has not been placed in escrow")

        if rule.target == OrderStatus.DISPUTED and actor.role == Role.BUYER:
            ends_at = order.grace_period_ends_at
            if ends_at is not None and now >= ends_at:
                raise NotEligibleError(str(order.id), "the dispute window has closed")

        # Only the buyer may complete before the grace period runs out
        if rule.target == OrderStatus.COMPLETED and actor.role != Role.BUYER:
            ends_at = order.grace_period_ends_at
            if ends_at is not None and now < ends_at:
                raise NotEligibleError(
                    str(order.id), f"the grace period runs until {ends_at.isoformat()}"
                )

        if (
            rule.target == OrderStatus.DELIVERED
            and delivery_code is not None
            and delivery_code != order.delivery_code
        ):
            raise ValidationError("Delivery code does not match", field="delivery_code")
