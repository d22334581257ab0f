"""Commission settings and balance REST API routes.

Routes:
    GET    /api/v1/commission-settings          — List admin-managed rates
    PUT    /api/v1/commission-settings/{key}    — Set a rate (admin)
    GET    /api/v1/wallets/{user_id}            — Wallet balance (owner or admin)
    GET    /api/v1/platform/balance             — Platform pseudo-account (admin)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from order_settlement.api.deps import get_actor, get_orchestrator
from order_settlement.domain.actor import Actor
from order_settlement.domain.exceptions import UnauthorizedError
from order_settlement.schemas.settlement import (
    BalanceResponse,
    CommissionRateRequest,
    CommissionSettingResponse,
)
from order_settlement.services.orchestrator import SettlementOrchestrator

router = APIRouter(prefix="/api/v1", tags=["Accounts"])


@router.get(
    "/commission-settings",
    response_model=list[CommissionSettingResponse],
    summary="List commission settings",
)
async def list_commission_settings(
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> list[CommissionSettingResponse]:
    settings = await engine.get_commission_settings()
    return [CommissionSettingResponse.model_validate(s) for s in settings]


@router.put(
    "/commission-settings/{key}",
    response_model=CommissionSettingResponse,
    summary="Set a commission rate",
)
async def set_commission_rate(
    key: str,
    request: CommissionRateRequest,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> CommissionSettingResponse:
    """Applies to orders priced from now on. Existing orders keep their captured rate."""
    result = await engine.set_commission_rate(key, request.rate, actor)
    return CommissionSettingResponse.model_validate(result.value)


@router.get("/wallets/{user_id}", response_model=BalanceResponse, summary="Wallet balance")
async def wallet_balance(
    user_id: str,
    currency: str | None = Query(default=None, min_length=3, max_length=3),
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> BalanceResponse:
    if not actor.is_admin and actor.id != user_id:
        raise UnauthorizedError(actor.role.value, "read another user's wallet")
    currency = (currency or engine.default_currency).upper()
    balance = await engine.wallet_balance(user_id, currency)
    return BalanceResponse(account=user_id, currency=currency, balance=balance)


@router.get("/platform/balance", response_model=BalanceResponse, summary="Platform balance")
async def platform_balance(
    currency: str | None = Query(default=None, min_length=3, max_length=3),
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> BalanceResponse:
    if not actor.is_admin:
        raise UnauthorizedError(actor.role.value, "read the platform account")
    currency = (currency or engine.default_currency).upper()
    balance = await engine.platform_balance(currency)
    return BalanceResponse(account="platform", currency=currency, balance=balance)
