"""Pydantic schemas for the Order API.

These schemas define the request/response shapes for the REST adapter.
They are separate from the ORM models to keep the API and database layers
apart: routes validate input with these, call the orchestrator, then
serialize its return value with ``model_validate``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from order_settlement.domain.enums import MarketplaceVariant, OrderStatus

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class OrderLineRequest(BaseModel):
    """One cart line at checkout."""

    item_id: str = Field(..., min_length=1, max_length=64, examples=["sku-4471"])
    quantity: int = Field(..., gt=0, examples=[2])
    unit_base_price: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Seller's price per unit, before platform commission",
        examples=[1000],
    )


class CreateOrderRequest(BaseModel):
    """Request body for placing an order."""

    seller_id: str = Field(..., min_length=1, max_length=64)
    variant: MarketplaceVariant = Field(default=MarketplaceVariant.STANDARD)
    lines: list[OrderLineRequest] = Field(..., min_length=1)
    delivery_fee: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    currency: str | None = Field(
        default=None,
        min_length=3,
        max_length=3,
        description="ISO 4217 code; the configured default currency when omitted",
    )


class UpdateStatusRequest(BaseModel):
    """Request body for a generic status change."""

    target_status: OrderStatus
    expected_version: int | None = Field(
        default=None,
        ge=1,
        description="Reject with 409 when the order moved on since this version was read",
    )
    delivery_code: str | None = Field(default=None, max_length=12)
    reason: str | None = Field(default=None, max_length=2000)


class AssignAgentRequest(BaseModel):
    agent_id: str = Field(..., min_length=1, max_length=64)


class RaiseDisputeRequest(BaseModel):
    """Request body for disputing a delivered order."""

    reason: str = Field(..., min_length=1, max_length=2000)


class ResolveDisputeRequest(BaseModel):
    refund: bool = Field(
        ...,
        description="true refunds the buyer; false returns the order to the claim pool",
    )
    reason: str | None = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class OrderLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: str
    quantity: int
    unit_base_price: Decimal
    unit_display_price: Decimal
    commission_rate: Decimal
    line_commission: Decimal
    pricing_flagged: bool


class OrderResponse(BaseModel):
    """Response schema for an order."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    buyer_id: str
    seller_id: str
    agent_id: str | None
    variant: str
    status: str
    base_total: Decimal
    commission_total: Decimal
    delivery_fee: Decimal
    tax: Decimal
    discount: Decimal
    display_total: Decimal
    agent_commission: Decimal
    currency: str
    funding_source: str | None
    grace_period_ends_at: datetime | None
    release_eligible_at: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime
    lines: list[OrderLineResponse] = Field(default_factory=list)


class OrderEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: uuid.UUID
    event_type: str
    actor: str
    payload: dict | None
    created_at: datetime
