"""Settlement split: how a released escrow is divided.

    seller   = base_total                 (minus delivery_fee when the agent
                                           collected the fee separately)
    agent    = agent_commission           (plus delivery_fee when it was paid
                                           through the escrow)
    platform = escrow_amount - seller - agent

The three shares always add up to the escrowed amount. The platform share
absorbs tax and discount. When a discount eats past the platform margin,
the seller and agent shares are capped to what is held and the platform
share is zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from order_settlement.domain.commission import ZERO, to_money


@dataclass(frozen=True)
class SettlementSplit:
    seller_amount: Decimal
    agent_amount: Decimal
    platform_amount: Decimal

    @property
    def total(self) -> Decimal:
        return to_money(self.seller_amount + self.agent_amount + self.platform_amount)


def split_settlement(
    *,
    escrow_amount: Decimal,
    base_total: Decimal,
    delivery_fee: Decimal,
    agent_commission: Decimal,
    has_agent: bool,
    agent_collects_delivery_fee: bool,
) -> SettlementSplit:
    """Divide an escrowed amount between seller, agent and platform."""
    escrow_amount = to_money(escrow_amount)
    fee = to_money(delivery_fee)

    if agent_collects_delivery_fee:
        seller = max(to_money(base_total) - fee, ZERO)
        agent = to_money(agent_commission) if has_agent else ZERO
    else:
        seller = to_money(base_total)
        agent = to_money(agent_commission) + fee if has_agent else ZERO

    # Never pay out more than was held
    seller = min(seller, escrow_amount)
    agent = min(agent, escrow_amount - seller)
    platform = to_money(escrow_amount - seller - agent)
    return SettlementSplit(seller_amount=seller, agent_amount=agent, platform_amount=platform)
