"""Commission Calculator — pure pricing functions.

Converts a seller-entered base price into the buyer-facing display price,
derives the per-line and per-order commission, and computes delivery-agent
earnings from an agent-type fee schedule.

Money is Decimal, quantized to MONEY_QUANTUM with ROUND_HALF_UP.
Rates are Decimal fractions in [0, 1] captured when a line is priced; they are
stored on the line and never re-read from CommissionSetting afterwards.

    price(1000, 0.21)              -> 1210.00
    commission(1000, 1210)         -> 210.00
    agent_commission(10000, 15%, floor 100, ceiling 5000) -> 1500.00
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING

from order_settlement.domain.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable

MONEY_QUANTUM = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | str) -> Decimal:
    """Coerce a value to a Decimal amount rounded to one minor unit."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as err:
        raise ValidationError(f"Not a monetary amount: {value!r}") from err


def validate_rate(rate: Decimal, field: str = "rate") -> Decimal:
    """Ensure a commission rate is a fraction in [0, 1]."""
    try:
        rate = Decimal(str(rate))
    except InvalidOperation as err:
        raise ValidationError(f"{field} is not a number: {rate!r}", field=field) from err
    if not rate.is_finite() or rate < 0 or rate > 1:
        raise ValidationError(f"{field} must be between 0 and 1, got {rate}", field=field)
    return rate


def _non_negative(amount: Decimal, field: str) -> Decimal:
    amount = to_money(amount)
    if amount < 0:
        raise ValidationError(f"{field} must not be negative, got {amount}", field=field)
    return amount


# ---------------------------------------------------------------------------
# Display price and commission
# ---------------------------------------------------------------------------


def price(base_price: Decimal, rate: Decimal) -> Decimal:
    """Return the buyer-facing display price for a seller base price."""
    base = _non_negative(base_price, "base_price")
    return to_money(base * (1 + validate_rate(rate)))


@dataclass(frozen=True)
class CommissionResult:
    """Commission for one price pair.

    Attributes:
        amount: Display minus base, never negative.
        flagged: True when the stored display price was below the base price.
    """

    amount: Decimal
    flagged: bool = False


def commission(base_price: Decimal, display_price: Decimal) -> CommissionResult:
    """Return display_price - base_price, or a flagged zero for corrupted pairs."""
    difference = to_money(display_price) - to_money(base_price)
    if difference < 0:
        return CommissionResult(amount=ZERO, flagged=True)
    return CommissionResult(amount=difference)


def line_commission(
    unit_base_price: Decimal, unit_display_price: Decimal, quantity: int
) -> CommissionResult:
    """Commission for a whole order line: unit commission times quantity."""
    unit = commission(unit_base_price, unit_display_price)
    return CommissionResult(amount=to_money(unit.amount * quantity), flagged=unit.flagged)


# ---------------------------------------------------------------------------
# Order lines and totals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PricedLine:
    """An order line with prices and rate fixed at checkout."""

    item_id: str
    quantity: int
    unit_base_price: Decimal
    unit_display_price: Decimal
    commission_rate: Decimal
    line_commission: Decimal

    @property
    def base_total(self) -> Decimal:
        return to_money(self.unit_base_price * self.quantity)

    @property
    def display_total(self) -> Decimal:
        return to_money(self.unit_display_price * self.quantity)


def price_line(item_id: str, quantity: int, unit_base_price: Decimal, rate: Decimal) -> PricedLine:
    """Price one checkout line with the platform rate in force right now."""
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError(f"quantity must be a positive integer, got {quantity!r}", field="quantity")
    base = _non_negative(unit_base_price, "unit_base_price")
    rate = validate_rate(rate)
    display = price(base, rate)
    return PricedLine(
        item_id=item_id,
        quantity=quantity,
        unit_base_price=base,
        unit_display_price=display,
        commission_rate=rate,
        line_commission=line_commission(base, display, quantity).amount,
    )


@dataclass(frozen=True)
class OrderTotals:
    base_total: Decimal
    commission_total: Decimal
    delivery_fee: Decimal
    tax: Decimal
    discount: Decimal
    display_total: Decimal


def order_totals(
    lines: Iterable[PricedLine],
    delivery_fee: Decimal = ZERO,
    tax: Decimal = ZERO,
    discount: Decimal = ZERO,
) -> OrderTotals:
    """Sum priced lines into order totals.

    display_total = base_total + commission_total + delivery_fee + tax - discount
    """
    lines = list(lines)
    if not lines:
        raise ValidationError("An order needs at least one line", field="lines")

    fee = _non_negative(delivery_fee, "delivery_fee")
    tax = _non_negative(tax, "tax")
    discount = _non_negative(discount, "discount")

    base_total = to_money(sum((line.base_total for line in lines), ZERO))
    commission_total = to_money(sum((line.line_commission for line in lines), ZERO))
    display_total = to_money(base_total + commission_total + fee + tax - discount)
    if display_total < 0:
        raise ValidationError(
            f"Discount {discount} exceeds the order total", field="discount"
        )
    return OrderTotals(
        base_total=base_total,
        commission_total=commission_total,
        delivery_fee=fee,
        tax=tax,
        discount=discount,
        display_total=display_total,
    )


def totals_consistent(
    *,
    base_total: Decimal,
    commission_total: Decimal,
    delivery_fee: Decimal,
    tax: Decimal,
    discount: Decimal,
    display_total: Decimal,
    tolerance: Decimal = MONEY_QUANTUM,
) -> bool:
    """Check the order total identity within one minor unit."""
    expected = base_total + commission_total + delivery_fee + tax - discount
    return display_total >= 0 and abs(display_total - expected) <= tolerance


# ---------------------------------------------------------------------------
# Delivery agent earnings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgentFeeSchedule:
    """Percentage of the order total, clamped to [minimum_fee, maximum_fee]."""

    rate: Decimal
    minimum_fee: Decimal
    maximum_fee: Decimal

    def __post_init__(self) -> None:
        validate_rate(self.rate, "agent rate")
        if to_money(self.minimum_fee) < 0 or to_money(self.minimum_fee) > to_money(self.maximum_fee):
            raise ValidationError(
                f"Invalid fee bounds: minimum {self.minimum_fee} maximum {self.maximum_fee}"
            )


def agent_commission(order_total: Decimal, schedule: AgentFeeSchedule) -> Decimal:
    """Agent earnings for an order: a floor/ceiling clamp, not a pure percentage."""
    raw = to_money(_non_negative(order_total, "order_total") * schedule.rate)
    return max(to_money(schedule.minimum_fee), min(raw, to_money(schedule.maximum_fee)))
