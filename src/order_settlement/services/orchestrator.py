"""Settlement Orchestrator — one entry point per engine operation.

Every public coroutine runs inside its own UnitOfWork:

    1. validate the transition (StatusStateMachine)
    2. mutate order, escrow, wallets and requests (EscrowLedger, ReleaseRequestWorkflow,
       AgentAssignment)
    3. append the emitted events to the audit log and commit
    4. after the commit: arm grace-period timers and hand the events to the
       EventDispatcher (fire-and-forget)

A failure in steps 1-3 rolls everything back and propagates as a
SettlementError subclass. Nothing in step 4 can undo step 3.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from order_settlement.config import get_settings
from order_settlement.domain.actor import Actor
from order_settlement.domain.commission import ZERO, order_totals, price_line
from order_settlement.domain.enums import (
    EscrowStatus,
    FundingSource,
    MarketplaceVariant,
    OrderStatus,
    Role,
    SideEffect,
)
from order_settlement.domain.events import OrderCreated, ReleaseEligible
from order_settlement.domain.exceptions import (
    ConflictError,
    EscrowNotFoundError,
    IllegalTransitionError,
    NotHeldError,
    UnauthorizedError,
    ValidationError,
)
from order_settlement.infrastructure.database.orm_models import Order, OrderLine
from order_settlement.infrastructure.database.unit_of_work import UnitOfWork
from order_settlement.logging_config import get_logger
from order_settlement.services.agent_assignment import AgentAssignment
from order_settlement.services.commission_settings import CommissionSettingsService
from order_settlement.services.escrow_ledger import EscrowLedger
from order_settlement.services.event_dispatcher import EventDispatcher
from order_settlement.services.grace_scheduler import GracePeriodScheduler
from order_settlement.services.order_status import StatusStateMachine, TransitionOutcome, parse_status
from order_settlement.services.release_workflow import ReleaseRequestWorkflow

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_settlement.config import Settings
    from order_settlement.domain.events import DomainEvent
    from order_settlement.infrastructure.database.orm_models import (
        CommissionSetting,
        Escrow,
        OrderEvent,
        PaymentReleaseRequest,
        Settlement,
    )

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class LineItem:
    """One checkout line as entered by the buyer's cart."""

    item_id: str
    quantity: int
    unit_base_price: Decimal


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """What an operation produced, plus the events committed with it."""

    value: T
    events: list[DomainEvent] = field(default_factory=list)

    @property
    def event_names(self) -> list[str]:
        return [event.name for event in self.events]


@dataclass
class _Components:
    """The engine components bound to one unit of work."""

    uow: UnitOfWork
    status: StatusStateMachine
    ledger: EscrowLedger
    workflow: ReleaseRequestWorkflow
    assignment: AgentAssignment
    commissions: CommissionSettingsService
    timers_to_arm: list[tuple[uuid.UUID, datetime]] = field(default_factory=list)
    timers_to_cancel: list[uuid.UUID] = field(default_factory=list)


class SettlementOrchestrator:
    """Composes the settlement components behind one operation per request."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        dispatcher: EventDispatcher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._session_factory = session_factory
        self._policies = settings.variant_policies()
        self._fee_schedules = settings.agent_fee_schedules()
        self._max_active_orders = settings.agent_max_active_orders
        self._default_platform_rate = settings.platform_commission_rate
        self._default_currency = settings.default_currency
        self._clock = clock or (lambda: datetime.now(UTC))
        self.dispatcher = dispatcher or EventDispatcher()
        self.grace_scheduler = GracePeriodScheduler(self.check_release_eligibility)

    @property
    def default_currency(self) -> str:
        return self._default_currency

    # ------------------------------------------------------------------
    # Order creation
    # ------------------------------------------------------------------

    async def create_order(
        self,
        buyer: Actor,
        seller_id: str,
        lines: Sequence[LineItem],
        *,
        variant: str | MarketplaceVariant = MarketplaceVariant.STANDARD,
        delivery_fee: Decimal = ZERO,
        tax: Decimal = ZERO,
        discount: Decimal = ZERO,
        currency: str | None = None,
    ) -> OperationResult[Order]:
        """Price the cart with the current platform rate and persist order + lines."""
        if buyer.role != Role.BUYER:
            raise UnauthorizedError(buyer.role.value, "place an order")
        if not seller_id or not seller_id.strip():
            raise ValidationError("seller_id is required", field="seller_id")
        try:
            variant = MarketplaceVariant(variant)
        except ValueError as err:
            raise ValidationError(f"Unknown marketplace variant: {variant!r}", field="variant") from err
        currency = (currency or self._default_currency).upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError(f"Invalid currency code: {currency!r}", field="currency")

        async def operation(c: _Components) -> Order:
            rate = await c.commissions.platform_rate(variant)
            priced = [
                price_line(line.item_id, line.quantity, line.unit_base_price, rate)
                for line in lines
            ]
            totals = order_totals(priced, delivery_fee=delivery_fee, tax=tax, discount=discount)

            order = Order(
                buyer_id=buyer.id,
                seller_id=seller_id.strip(),
                variant=variant.value,
                status=OrderStatus.PENDING_PAYMENT.value,
                base_total=totals.base_total,
                commission_total=totals.commission_total,
                delivery_fee=totals.delivery_fee,
                tax=totals.tax,
                discount=totals.discount,
                display_total=totals.display_total,
                currency=currency,
                lines=[
                    OrderLine(
                        position=position,
                        item_id=line.item_id,
                        quantity=line.quantity,
                        unit_base_price=line.unit_base_price,
                        unit_display_price=line.unit_display_price,
                        commission_rate=line.commission_rate,
                        line_commission=line.line_commission,
                    )
                    for position, line in enumerate(priced)
                ],
            )
            order = await c.uow.orders.create(order)
            c.uow.emit(
                OrderCreated(
                    order_id=order.id,
                    buyer_id=order.buyer_id,
                    seller_id=order.seller_id,
                    variant=order.variant,
                    display_total=order.display_total,
                ),
                buyer,
            )
            logger.info(
                "order.created",
                order_id=str(order.id),
                variant=order.variant,
                display_total=str(order.display_total),
                rate=str(rate),
            )
            return order

        return await self._run(operation)

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    async def hold_escrow(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        *,
        amount: Decimal | None = None,
        currency: str | None = None,
        funding_source: str | FundingSource = FundingSource.WALLET,
    ) -> OperationResult[Escrow]:
        """Hold payment for a pending order and confirm it.

        Wallet funding is performed by the buyer and confirmed by the system.
        Payment-proof funding is an admin approving the buyer's proof.
        """
        try:
            funding_source = FundingSource(funding_source)
        except ValueError as err:
            raise ValidationError(
                f"Unknown funding source: {funding_source!r}", field="funding_source"
            ) from err

        async def operation(c: _Components) -> Escrow:
            order = await c.status.load(order_id)
            if funding_source is FundingSource.WALLET:
                if not (actor.role == Role.BUYER and actor.id == order.buyer_id):
                    raise UnauthorizedError(actor.role.value, "fund another buyer's order")
                confirmer = Actor.system()
            else:
                if not actor.is_admin:
                    raise UnauthorizedError(actor.role.value, "approve a payment proof")
                confirmer = actor

            escrow = await c.ledger.hold(
                order, actor, amount=amount, currency=currency, funding_source=funding_source
            )
            await c.status.apply(order, OrderStatus.CONFIRMED, confirmer)
            return escrow

        return await self._run(operation)

    async def refund(
        self, order_id: uuid.UUID, actor: Actor, reason: str | None = None
    ) -> OperationResult[Settlement]:
        """Refund the held escrow to the buyer and cancel the order.

        The refund is only possible where cancelling the order is a legal edge
        for the actor: any pre-delivery status, or a dispute resolved by an admin.
        """

        async def operation(c: _Components) -> Settlement:
            return await self._refund(c, order_id, actor, reason)

        return await self._run(operation)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def update_status(
        self,
        order_id: uuid.UUID,
        target_status: str | OrderStatus,
        actor: Actor,
        *,
        expected_version: int | None = None,
        delivery_code: str | None = None,
        reason: str | None = None,
    ) -> OperationResult[Order]:
        """Move an order to target_status and apply the edge's side effects."""
        target = parse_status(target_status)

        async def operation(c: _Components) -> Order:
            if target == OrderStatus.ASSIGNED:
                if actor.role != Role.AGENT:
                    raise ValidationError(
                        "Agents are assigned through claim or admin assignment",
                        field="target_status",
                    )
                await self._check_version(c, order_id, expected_version)
                return await c.assignment.claim(order_id, actor)

            outcome = await c.status.transition(
                order_id,
                target,
                actor,
                expected_version=expected_version,
                delivery_code=delivery_code,
            )
            await self._apply_side_effects(c, outcome, actor, reason)
            return outcome.order

        return await self._run(operation)

    async def confirm_receipt(self, order_id: uuid.UUID, buyer: Actor) -> OperationResult[Order]:
        """Buyer confirms delivery: completes the order and releases funds at once."""
        return await self.update_status(order_id, OrderStatus.COMPLETED, buyer)

    async def raise_dispute(
        self, order_id: uuid.UUID, actor: Actor, reason: str
    ) -> OperationResult[Order]:
        """Dispute a delivered order; any pending release request is rejected."""
        if not reason or not reason.strip():
            raise ValidationError("A dispute reason is required", field="reason")
        return await self.update_status(
            order_id, OrderStatus.DISPUTED, actor, reason=f"dispute: {reason.strip()}"
        )

    async def resolve_dispute(
        self,
        order_id: uuid.UUID,
        admin: Actor,
        *,
        refund: bool,
        reason: str | None = None,
    ) -> OperationResult[Order]:
        """Admin closes a dispute: refund the buyer, or send the order back to the claim pool."""
        target = OrderStatus.CANCELLED if refund else OrderStatus.CONFIRMED

        async def operation(c: _Components) -> Order:
            order = await c.status.load(order_id)
            if order.status != OrderStatus.DISPUTED.value:
                raise IllegalTransitionError(order.status, target.value)
            if refund:
                await self._refund(c, order_id, admin, reason or "dispute resolved for the buyer")
                return order
            outcome = await c.status.apply(order, target, admin)
            await self._apply_side_effects(c, outcome, admin, reason)
            return outcome.order

        return await self._run(operation)

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def claim(self, order_id: uuid.UUID, agent: Actor) -> OperationResult[Order]:
        async def operation(c: _Components) -> Order:
            return await c.assignment.claim(order_id, agent)

        return await self._run(operation)

    async def assign(
        self, order_id: uuid.UUID, agent_id: str, admin: Actor
    ) -> OperationResult[Order]:
        async def operation(c: _Components) -> Order:
            return await c.assignment.assign(order_id, agent_id, admin)

        return await self._run(operation)

    # ------------------------------------------------------------------
    # Release requests
    # ------------------------------------------------------------------

    async def request_release(
        self, order_id: uuid.UUID, requester: Actor, reason: str | None = None
    ) -> OperationResult[PaymentReleaseRequest]:
        async def operation(c: _Components) -> PaymentReleaseRequest:
            order = await c.status.load(order_id)
            return await c.workflow.request_release(order, requester, reason)

        return await self._run(operation)

    async def approve_release(
        self, request_id: uuid.UUID, admin: Actor, notes: str | None = None
    ) -> OperationResult[Settlement]:
        """Approve a request, release the escrow and complete a delivered order."""

        async def operation(c: _Components) -> Settlement:
            settlement = await c.workflow.approve(request_id, admin, notes)
            order = await c.status.load(settlement.order_id)
            if order.status == OrderStatus.DELIVERED.value:
                await c.status.apply(order, OrderStatus.COMPLETED, Actor.system())
            c.timers_to_cancel.append(order.id)
            return settlement

        return await self._run(operation)

    async def reject_release(
        self, request_id: uuid.UUID, admin: Actor, reason: str
    ) -> OperationResult[PaymentReleaseRequest]:
        async def operation(c: _Components) -> PaymentReleaseRequest:
            return await c.workflow.reject(request_id, admin, reason)

        return await self._run(operation)

    # ------------------------------------------------------------------
    # Grace period
    # ------------------------------------------------------------------

    async def check_release_eligibility(self, order_id: uuid.UUID) -> OperationResult[bool]:
        """Mark a delivered order release-eligible once its grace period is over.

        Runs from the grace-period timer. Releases nothing: a buyer confirmation
        or an admin approval is still required.
        """

        async def operation(c: _Components) -> bool:
            order = await c.uow.orders.get_by_id(order_id, refresh=True)
            if order is None or order.status != OrderStatus.DELIVERED.value:
                return False
            ends_at = order.grace_period_ends_at
            if ends_at is None:
                return False
            if self._clock() < ends_at:
                c.timers_to_arm.append((order.id, ends_at))
                return False
            if order.release_eligible_at is not None:
                return True

            order.release_eligible_at = self._clock()
            await c.uow.flush()
            c.uow.emit(ReleaseEligible(order_id=order.id), Actor.system())
            logger.info("grace.expired", order_id=str(order.id))
            return True

        return await self._run(operation)

    async def reschedule_pending(self) -> int:
        """Re-arm grace timers for delivered orders after a restart."""

        async def operation(c: _Components) -> int:
            orders = await c.uow.orders.awaiting_release_eligibility()
            pending = [o for o in orders if o.release_eligible_at is None]
            c.timers_to_arm.extend((o.id, o.grace_period_ends_at) for o in pending)
            return len(pending)

        result = await self._run(operation)
        logger.info("grace.rescheduled", count=result.value)
        return result.value

    # ------------------------------------------------------------------
    # Commission settings
    # ------------------------------------------------------------------

    async def set_commission_rate(
        self, key: str, rate: Decimal, admin: Actor
    ) -> OperationResult[CommissionSetting]:
        async def operation(c: _Components) -> CommissionSetting:
            return await c.commissions.set_rate(key, rate, admin)

        return await self._run(operation)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID) -> Order:
        return (await self._run(lambda c: c.status.load(order_id))).value

    async def get_escrow(self, order_id: uuid.UUID) -> Escrow:
        async def operation(c: _Components) -> Escrow:
            escrow = await c.uow.escrows.get_by_order(order_id)
            if escrow is None:
                raise EscrowNotFoundError(f"order {order_id}")
            return escrow

        return (await self._run(operation)).value

    async def get_release_requests(self, order_id: uuid.UUID) -> list[PaymentReleaseRequest]:
        return (await self._run(lambda c: c.uow.release_requests.get_by_order(order_id))).value

    async def get_events(self, order_id: uuid.UUID) -> list[OrderEvent]:
        """Audit trail of an order."""
        return (await self._run(lambda c: c.uow.events.get_by_order(order_id))).value

    async def get_commission_settings(self) -> list[CommissionSetting]:
        return (await self._run(lambda c: c.uow.commission_settings.all())).value

    async def wallet_balance(self, user_id: str, currency: str | None = None) -> Decimal:
        currency = (currency or self._default_currency).upper()
        return (await self._run(lambda c: c.uow.wallets.balance(user_id, currency))).value

    async def platform_balance(self, currency: str | None = None) -> Decimal:
        currency = (currency or self._default_currency).upper()
        return (await self._run(lambda c: c.uow.settlements.platform_total(currency))).value

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _components(self, uow: UnitOfWork) -> _Components:
        ledger = EscrowLedger(uow, self._policies)
        return _Components(
            uow=uow,
            status=StatusStateMachine(uow, self._policies, clock=self._clock),
            ledger=ledger,
            workflow=ReleaseRequestWorkflow(uow, ledger, clock=self._clock),
            assignment=AgentAssignment(
                uow, self._policies, self._fee_schedules, self._max_active_orders
            ),
            commissions=CommissionSettingsService(uow, self._default_platform_rate),
        )

    async def _run(self, operation: Callable[[_Components], Awaitable[T]]) -> OperationResult[T]:
        async with UnitOfWork(self._session_factory) as uow:
            components = self._components(uow)
            value = await operation(components)

        # Committed. Nothing below may raise into the caller.
        for order_id in components.timers_to_cancel:
            self.grace_scheduler.cancel(order_id)
        for order_id, ends_at in components.timers_to_arm:
            self.grace_scheduler.schedule(order_id, ends_at)
        events = uow.committed_events
        self.dispatcher.dispatch(events)
        return OperationResult(value=value, events=events)

    async def _check_version(
        self, c: _Components, order_id: uuid.UUID, expected_version: int | None
    ) -> None:
        if expected_version is None:
            return
        order = await c.status.load(order_id)
        if order.version != expected_version:
            raise ConflictError(
                f"Order {order.id} is at version {order.version}, not {expected_version}"
            )

    async def _refund(
        self, c: _Components, order_id: uuid.UUID, actor: Actor, reason: str | None
    ) -> Settlement:
        order = await c.status.load(order_id)
        escrow = await c.uow.escrows.get_by_order(order.id)
        if escrow is None:
            raise EscrowNotFoundError(f"order {order_id}")
        if escrow.status != EscrowStatus.HELD.value:
            raise NotHeldError(str(escrow.id), escrow.status)

        outcome = await c.status.apply(order, OrderStatus.CANCELLED, actor)
        settlement = await self._apply_side_effects(c, outcome, actor, reason)
        if settlement is None:
            raise NotHeldError(str(escrow.id), escrow.status)
        return settlement

    async def _apply_side_effects(
        self,
        c: _Components,
        outcome: TransitionOutcome,
        actor: Actor,
        reason: str | None,
    ) -> Any:
        """Perform the work the edge requires. Returns the settlement, if money moved."""
        order = outcome.order
        settlement = None
        for effect in outcome.side_effects:
            if effect is SideEffect.START_GRACE_PERIOD and order.grace_period_ends_at:
                c.timers_to_arm.append((order.id, order.grace_period_ends_at))

            elif effect is SideEffect.RELEASE_ESCROW:
                if await self._escrow_is_held(c, order.id):
                    settlement = await c.workflow.release_on_completion(order, actor)
                c.timers_to_cancel.append(order.id)

            elif effect is SideEffect.REFUND_ESCROW:
                escrow = await c.uow.escrows.get_by_order(order.id)
                if escrow is not None and escrow.status == EscrowStatus.HELD.value:
                    settlement = await c.ledger.refund(
                        escrow.id, reason or f"order cancelled by {actor}", actor
                    )
                c.timers_to_cancel.append(order.id)

            elif effect is SideEffect.REJECT_PENDING_RELEASES:
                await c.workflow.reject_pending(order, actor, reason or "dispute opened")
                c.timers_to_cancel.append(order.id)

            elif effect is SideEffect.RETURN_TO_CLAIM_POOL:
                order.agent_id = None
                order.delivery_code = None
                order.agent_commission = ZERO
                order.grace_period_ends_at = None
                order.release_eligible_at = None
                await c.uow.flush()
                logger.info("order.returned_to_pool", order_id=str(order.id))
        return settlement

    async def _escrow_is_held(self, c: _Components, order_id: uuid.UUID) -> bool:
        escrow = await c.uow.escrows.get_by_order(order_id)
        return escrow is not None and escrow.status == EscrowStatus.HELD.value
