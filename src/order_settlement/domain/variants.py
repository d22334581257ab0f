"""Marketplace variant policies.

Standard, local-market and grocery orders run through the same engine; the
differences between them are data, not code paths.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from order_settlement.domain.enums import AgentType, MarketplaceVariant, OrderStatus


@dataclass(frozen=True)
class VariantPolicy:
    """Settlement parameters for one marketplace variant.

    Attributes:
        variant: The marketplace the order was placed in.
        agent_type: Which agent fee schedule applies to deliveries.
        grace_period: Window after delivery during which the buyer may dispute.
        agent_collects_delivery_fee: The agent takes the delivery fee directly,
            so it is deducted from the seller share instead of paid from escrow.
        claimable_statuses: Statuses an unassigned order must be in to be claimed.
    """

    variant: MarketplaceVariant
    agent_type: AgentType
    grace_period: timedelta
    agent_collects_delivery_fee: bool = False
    claimable_statuses: frozenset[OrderStatus] = field(
        default_factory=lambda: frozenset({OrderStatus.CONFIRMED})
    )
