"""Release Request Workflow — who may ask for held funds, and who decides.

One policy for every marketplace variant:
    - buyers, sellers and agents of the order may request a release;
      an admin approves or rejects it
    - an admin may approve only once the grace period has run out, unless
      the buyer already confirmed receipt
    - the buyer confirming receipt is an auto-approved release: no admin step
    - at most one request per order is pending at any time
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from order_settlement.domain.enums import (
    EscrowStatus,
    OrderStatus,
    ReleaseRequestStatus,
    Role,
)
from order_settlement.domain.events import ReleaseDecided, ReleaseRequested
from order_settlement.domain.exceptions import (
    DuplicatePendingError,
    EscrowNotFoundError,
    NotEligibleError,
    NotPendingError,
    OrderNotFoundError,
    ReleaseRequestNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from order_settlement.infrastructure.database.orm_models import PaymentReleaseRequest
from order_settlement.logging_config import get_logger
from order_settlement.services.escrow_ledger import RELEASABLE_ORDER_STATUSES

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable

    from order_settlement.domain.actor import Actor
    from order_settlement.infrastructure.database.orm_models import Order, Settlement
    from order_settlement.infrastructure.database.unit_of_work import UnitOfWork
    from order_settlement.services.escrow_ledger import EscrowLedger

logger = get_logger(__name__)

REQUESTER_ROLES = frozenset({Role.BUYER, Role.SELLER, Role.AGENT})


def _participant_id(order: Order, role: Role) -> str | None:
    return {
        Role.BUYER: order.buyer_id,
        Role.SELLER: order.seller_id,
        Role.AGENT: order.agent_id,
    }.get(role)


class ReleaseRequestWorkflow:
    """Manages release requests and admin decisions on them."""

    def __init__(
        self,
        uow: UnitOfWork,
        ledger: EscrowLedger,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._uow = uow
        self._ledger = ledger
        self._clock = clock

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request_release(
        self, order: Order, requester: Actor, reason: str | None = None
    ) -> PaymentReleaseRequest:
        """Open a pending release request for a delivered order.

        Raises:
            UnauthorizedError: The requester is not a participant of the order.
            NotEligibleError: The order is not delivered/completed, or nothing is held.
            DuplicatePendingError: A request is already pending for the order.
        """
        if requester.role not in REQUESTER_ROLES:
            raise UnauthorizedError(requester.role.value, "request a payment release")
        if _participant_id(order, requester.role) != requester.id:
            raise UnauthorizedError(
                requester.role.value, "request a payment release for an order it is not part of"
            )

        if OrderStatus(order.status) not in RELEASABLE_ORDER_STATUSES:
            raise NotEligibleError(str(order.id), f"order is {order.status}, not delivered")
        escrow = await self._uow.escrows.get_by_order(order.id)
        if escrow is None or escrow.status != EscrowStatus.HELD.value:
            raise NotEligibleError(str(order.id), "no funds are held for this order")

        if await self._uow.release_requests.get_pending_for_order(order.id) is not None:
            raise DuplicatePendingError(str(order.id))

        request = PaymentReleaseRequest(
            order_id=order.id,
            requested_by_id=requester.id,
            requested_by_role=requester.role.value,
            reason=reason,
            status=ReleaseRequestStatus.PENDING.value,
        )
        try:
            request = await self._uow.release_requests.create(request)
        except IntegrityError as err:
            # Lost the race against another pending request for this order
            raise DuplicatePendingError(str(order.id)) from err

        self._uow.emit(
            ReleaseRequested(
                order_id=order.id,
                request_id=request.id,
                requested_by=str(requester),
            ),
            requester,
        )
        logger.info(
            "release.requested",
            order_id=str(order.id),
            request_id=str(request.id),
            requested_by=str(requester),
        )
        return request

    # ------------------------------------------------------------------
    # Admin decisions
    # ------------------------------------------------------------------

    async def approve(
        self, request_id: uuid.UUID, admin: Actor, notes: str | None = None
    ) -> Settlement:
        """Approve a pending request and release the escrow.

        Raises:
            UnauthorizedError, ReleaseRequestNotFoundError, NotPendingError,
            NotEligibleError, plus anything EscrowLedger.release raises.
        """
        if not admin.is_admin:
            raise UnauthorizedError(admin.role.value, "approve a payment release")
        request = await self._get_pending(request_id)
        order = await self._get_order(request.order_id)

        if OrderStatus(order.status) == OrderStatus.DELIVERED:
            ends_at = order.grace_period_ends_at
            if ends_at is not None and self._clock() < ends_at:
                raise NotEligibleError(
                    str(order.id), f"the grace period runs until {ends_at.isoformat()}"
                )

        await self._decide(request, ReleaseRequestStatus.APPROVED, admin, notes)
        return await self._release(order, admin, f"release request {request.id} approved")

    async def reject(
        self, request_id: uuid.UUID, admin: Actor, reason: str
    ) -> PaymentReleaseRequest:
        """Reject a pending request. Held funds stay held; a new request may follow."""
        if not admin.is_admin:
            raise UnauthorizedError(admin.role.value, "reject a payment release")
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required", field="reason")

        request = await self._get_pending(request_id)
        await self._decide(request, ReleaseRequestStatus.REJECTED, admin, reason.strip())
        return request

    # ------------------------------------------------------------------
    # Engine-driven decisions
    # ------------------------------------------------------------------

    async def release_on_completion(self, order: Order, actor: Actor) -> Settlement:
        """Release funds because the order was completed.

        A buyer confirming receipt approves its own release (auto-approved);
        an admin or the system completing the order approves it directly.
        Any pending request is closed as approved; otherwise an approved
        request is recorded so every release has a request behind it.
        """
        auto = actor.role == Role.BUYER
        pending = await self._uow.release_requests.get_pending_for_order(order.id)
        if pending is None:
            pending = await self._uow.release_requests.create(
                PaymentReleaseRequest(
                    order_id=order.id,
                    requested_by_id=actor.id,
                    requested_by_role=actor.role.value,
                    reason="order completed",
                    status=ReleaseRequestStatus.PENDING.value,
                )
            )
            self._uow.emit(
                ReleaseRequested(
                    order_id=order.id,
                    request_id=pending.id,
                    requested_by=str(actor),
                ),
                actor,
            )
        notes = "buyer confirmed receipt" if auto else "order completed"
        await self._decide(pending, ReleaseRequestStatus.APPROVED, actor, notes, auto_approved=auto)
        return await self._release(order, actor, notes)

    async def reject_pending(self, order: Order, actor: Actor, reason: str) -> int:
        """Close the pending request of an order, if any. Returns how many were closed."""
        pending = await self._uow.release_requests.get_pending_for_order(order.id)
        if pending is None:
            return 0
        await self._decide(pending, ReleaseRequestStatus.REJECTED, actor, reason)
        return 1

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_pending(self, request_id: uuid.UUID) -> PaymentReleaseRequest:
        request = await self._uow.release_requests.get_by_id(request_id, refresh=True)
        if request is None:
            raise ReleaseRequestNotFoundError(str(request_id))
        if request.status != ReleaseRequestStatus.PENDING.value:
            raise NotPendingError(str(request_id), request.status)
        return request

    async def _get_order(self, order_id: uuid.UUID) -> Order:
        order = await self._uow.orders.get_by_id(order_id, refresh=True)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    async def _decide(
        self,
        request: PaymentReleaseRequest,
        status: ReleaseRequestStatus,
        actor: Actor,
        notes: str | None,
        auto_approved: bool = False,
    ) -> None:
        won = await self._uow.release_requests.decide(
            request.id, status, actor.id, notes, auto_approved=auto_approved
        )
        if not won:
            current = await self._uow.release_requests.get_by_id(request.id, refresh=True)
            raise NotPendingError(str(request.id), current.status if current else "missing")
        await self._uow.release_requests.get_by_id(request.id, refresh=True)

        self._uow.emit(
            ReleaseDecided(
                order_id=request.order_id,
                request_id=request.id,
                approved=status is ReleaseRequestStatus.APPROVED,
            ),
            actor,
        )
        logger.info(
            "release.decided",
            order_id=str(request.order_id),
            request_id=str(request.id),
            status=status.value,
            decided_by=str(actor),
            auto_approved=auto_approved,
        )

    async def _release(self, order: Order, actor: Actor, reason: str) -> Settlement:
        escrow = await self._uow.escrows.get_by_order(order.id)
        if escrow is None:
            raise EscrowNotFoundError(f"order {order.id}")
        return await self._ledger.release(escrow.id, reason, actor)
