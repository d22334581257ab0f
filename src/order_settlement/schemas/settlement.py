"""Pydantic schemas for escrow, release requests, commission settings and wallets."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from order_settlement.domain.enums import FundingSource

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class HoldEscrowRequest(BaseModel):
    """Request body for holding payment against a pending order."""

    funding_source: FundingSource = Field(default=FundingSource.WALLET)
    amount: Decimal | None = Field(
        default=None,
        ge=0,
        decimal_places=2,
        description="Must equal the order's display total; defaults to it",
    )
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class RefundRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class ReleaseRequestCreate(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class ApproveReleaseRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class RejectReleaseRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class CommissionRateRequest(BaseModel):
    """Request body for setting an admin-managed commission rate."""

    rate: Decimal = Field(
        ...,
        description="Fraction between 0 and 1, e.g. 0.21",
        examples=[0.21],
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class EscrowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    amount: Decimal
    currency: str
    status: str
    funding_source: str
    held_by: str
    held_at: datetime
    released_at: datetime | None
    refunded_at: datetime | None
    release_reason: str | None


class SettlementResponse(BaseModel):
    """How a terminated escrow was paid out."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    escrow_id: uuid.UUID
    order_id: uuid.UUID
    kind: str
    seller_amount: Decimal
    agent_amount: Decimal
    platform_amount: Decimal
    buyer_refund_amount: Decimal
    currency: str
    reason: str | None
    created_at: datetime


class ReleaseRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    requested_by_id: str
    requested_by_role: str
    reason: str | None
    status: str
    auto_approved: bool
    decided_by: str | None
    decision_notes: str | None
    created_at: datetime
    decided_at: datetime | None


class CommissionSettingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    rate: Decimal
    updated_by: str | None
    updated_at: datetime


class BalanceResponse(BaseModel):
    """Balance of a wallet or of the platform pseudo-account."""

    account: str
    currency: str
    balance: Decimal


class ErrorResponse(BaseModel):
    """Body of every 4xx returned for a domain error."""

    error: str
    message: str
    idempotent: bool = False


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
