"""Escrow Ledger — holds, releases and refunds against an order.

Invariants:
    - at most one escrow per order (unique escrows.order_id)
    - an escrow leaves HELD exactly once, to RELEASED or to REFUNDED
    - a release or refund moves every amount in the same unit of work:
      escrow status, settlement row, wallet credits, platform ledger entry

The HELD -> terminal step is a conditional UPDATE; whoever loses a race sees
NotHeldError and nothing else is written.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from order_settlement.domain.commission import ZERO, line_commission, to_money
from order_settlement.domain.enums import (
    EscrowStatus,
    FundingSource,
    MarketplaceVariant,
    OrderStatus,
)
from order_settlement.domain.events import EscrowHeld, EscrowRefunded, EscrowReleased
from order_settlement.domain.exceptions import (
    AlreadyHeldError,
    EscrowNotFoundError,
    InsufficientFundsError,
    NotHeldError,
    OrderNotDeliveredError,
    OrderNotFoundError,
    ValidationError,
)
from order_settlement.domain.settlement import split_settlement
from order_settlement.infrastructure.database.orm_models import Escrow, Settlement
from order_settlement.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Mapping

    from order_settlement.domain.actor import Actor
    from order_settlement.domain.variants import VariantPolicy
    from order_settlement.infrastructure.database.orm_models import Order
    from order_settlement.infrastructure.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)

RELEASABLE_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED})


class EscrowLedger:
    """Records fund holds, releases and refunds."""

    def __init__(
        self,
        uow: UnitOfWork,
        policies: Mapping[MarketplaceVariant, VariantPolicy],
    ) -> None:
        self._uow = uow
        self._policies = policies

    # ------------------------------------------------------------------
    # Hold
    # ------------------------------------------------------------------

    async def hold(
        self,
        order: Order,
        actor: Actor,
        *,
        amount: Decimal | None = None,
        currency: str | None = None,
        funding_source: FundingSource = FundingSource.WALLET,
    ) -> Escrow:
        """Place the buyer's payment for an order in escrow.

        Wallet-funded holds debit the buyer wallet; payment-proof holds move no
        wallet money because the payment arrived outside the platform.

        Raises:
            AlreadyHeldError: An escrow already exists for the order.
            InsufficientFundsError: The buyer wallet cannot cover the amount.
            ValidationError: Amount or currency differ from what the order charges.
        """
        if await self._uow.escrows.get_by_order(order.id) is not None:
            raise AlreadyHeldError(str(order.id))

        held_amount = to_money(order.display_total if amount is None else amount)
        if held_amount != to_money(order.display_total):
            raise ValidationError(
                f"Escrow amount {held_amount} does not match order total {order.display_total}",
                field="amount",
            )
        held_currency = (currency or order.currency).upper()
        if held_currency != order.currency:
            raise ValidationError(
                f"Escrow currency {held_currency} does not match order currency {order.currency}",
                field="currency",
            )

        if funding_source is FundingSource.WALLET and held_amount > 0:
            debited = await self._uow.wallets.debit(order.buyer_id, held_currency, held_amount)
            if not debited:
                raise InsufficientFundsError(order.buyer_id, f"{held_amount} {held_currency}")

        escrow = Escrow(
            order_id=order.id,
            amount=held_amount,
            currency=held_currency,
            status=EscrowStatus.HELD.value,
            funding_source=funding_source.value,
            held_by=str(actor),
        )
        try:
            escrow = await self._uow.escrows.create(escrow)
        except IntegrityError as err:
            # A concurrent hold for the same order committed first
            raise AlreadyHeldError(str(order.id)) from err

        order.funding_source = funding_source.value
        self._uow.emit(
            EscrowHeld(
                order_id=order.id,
                escrow_id=escrow.id,
                amount=held_amount,
                currency=held_currency,
                funding_source=funding_source.value,
            ),
            actor,
        )
        logger.info(
            "escrow.held",
            order_id=str(order.id),
            escrow_id=str(escrow.id),
            amount=str(held_amount),
            funding_source=funding_source.value,
        )
        return escrow

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release(self, escrow_id: uuid.UUID, reason: str, actor: Actor) -> Settlement:
        """Disburse a held escrow to seller, agent and platform.

        Raises:
            EscrowNotFoundError, NotHeldError, OrderNotDeliveredError
        """
        escrow = await self._get_held(escrow_id)
        order = await self._get_order(escrow.order_id)

        if OrderStatus(order.status) not in RELEASABLE_ORDER_STATUSES:
            raise OrderNotDeliveredError(str(order.id), order.status)

        audited_commission = self._audit_pricing(order)

        policy = self._policies[MarketplaceVariant(order.variant)]
        split = split_settlement(
            escrow_amount=escrow.amount,
            base_total=order.base_total,
            delivery_fee=order.delivery_fee,
            agent_commission=order.agent_commission,
            has_agent=order.agent_id is not None,
            agent_collects_delivery_fee=policy.agent_collects_delivery_fee,
        )

        await self._terminate(escrow, EscrowStatus.RELEASED, reason)

        if split.seller_amount > 0:
            await self._uow.wallets.credit(order.seller_id, escrow.currency, split.seller_amount)
        if split.agent_amount > 0 and order.agent_id is not None:
            await self._uow.wallets.credit(order.agent_id, escrow.currency, split.agent_amount)
        await self._uow.settlements.credit_platform(
            order.id, escrow.id, split.platform_amount, escrow.currency
        )

        settlement = await self._uow.settlements.create(
            Settlement(
                escrow_id=escrow.id,
                order_id=order.id,
                kind=EscrowStatus.RELEASED.value,
                seller_amount=split.seller_amount,
                agent_amount=split.agent_amount,
                platform_amount=split.platform_amount,
                currency=escrow.currency,
                reason=reason,
            )
        )

        self._uow.emit(
            EscrowReleased(
                order_id=order.id,
                seller_amount=split.seller_amount,
                agent_amount=split.agent_amount,
                commission_amount=split.platform_amount,
            ),
            actor,
        )
        logger.info(
            "escrow.released",
            order_id=str(order.id),
            escrow_id=str(escrow.id),
            seller_amount=str(split.seller_amount),
            agent_amount=str(split.agent_amount),
            platform_amount=str(split.platform_amount),
            audited_commission=str(audited_commission),
        )
        return settlement

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    async def refund(self, escrow_id: uuid.UUID, reason: str, actor: Actor) -> Settlement:
        """Return the full held amount to the buyer's wallet.

        The owning order's move to cancelled is made by the caller in the
        same unit of work.

        Raises:
            EscrowNotFoundError, NotHeldError
        """
        escrow = await self._get_held(escrow_id)
        order = await self._get_order(escrow.order_id)

        await self._terminate(escrow, EscrowStatus.REFUNDED, reason)
        if escrow.amount > 0:
            await self._uow.wallets.credit(order.buyer_id, escrow.currency, escrow.amount)

        settlement = await self._uow.settlements.create(
            Settlement(
                escrow_id=escrow.id,
                order_id=order.id,
                kind=EscrowStatus.REFUNDED.value,
                buyer_refund_amount=escrow.amount,
                currency=escrow.currency,
                reason=reason,
            )
        )

        self._uow.emit(EscrowRefunded(order_id=order.id, amount=escrow.amount), actor)
        logger.info(
            "escrow.refunded",
            order_id=str(order.id),
            escrow_id=str(escrow.id),
            amount=str(escrow.amount),
        )
        return settlement

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_held(self, escrow_id: uuid.UUID) -> Escrow:
        escrow = await self._uow.escrows.get_by_id(escrow_id, refresh=True)
        if escrow is None:
            raise EscrowNotFoundError(str(escrow_id))
        if escrow.status != EscrowStatus.HELD.value:
            raise NotHeldError(str(escrow_id), escrow.status)
        return escrow

    async def _get_order(self, order_id: uuid.UUID) -> Order:
        order = await self._uow.orders.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    async def _terminate(self, escrow: Escrow, status: EscrowStatus, reason: str) -> None:
        won = await self._uow.escrows.terminate(escrow.id, status, reason)
        if not won:
            current = await self._uow.escrows.get_by_id(escrow.id, refresh=True)
            raise NotHeldError(str(escrow.id), current.status if current else "missing")
        await self._uow.escrows.get_by_id(escrow.id, refresh=True)

    def _audit_pricing(self, order: Order) -> Decimal:
        """Recompute line commissions and flag lines whose display price is below base."""
        audited = ZERO
        for line in order.lines:
            result = line_commission(line.unit_base_price, line.unit_display_price, line.quantity)
            if result.flagged and not line.pricing_flagged:
                line.pricing_flagged = True
                logger.warning(
                    "pricing.line_flagged",
                    order_id=str(order.id),
                    item_id=line.item_id,
                    unit_base_price=str(line.unit_base_price),
                    unit_display_price=str(line.unit_display_price),
                )
            audited += result.amount
        return to_money(audited)
