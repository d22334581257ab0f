"""Escrow and release-request REST API routes.

Routes:
    POST   /api/v1/orders/{id}/escrow              — Hold payment for the order
    GET    /api/v1/orders/{id}/escrow              — Get the order's escrow
    POST   /api/v1/orders/{id}/refund              — Refund the buyer, cancel the order
    POST   /api/v1/orders/{id}/release-requests    — Ask for the escrow to be released
    GET    /api/v1/orders/{id}/release-requests    — List the order's release requests
    POST   /api/v1/release-requests/{id}/approve   — Admin approves and releases
    POST   /api/v1/release-requests/{id}/reject    — Admin rejects
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from order_settlement.api.deps import get_actor, get_orchestrator
from order_settlement.domain.actor import Actor
from order_settlement.schemas.settlement import (
    ApproveReleaseRequest,
    EscrowResponse,
    HoldEscrowRequest,
    RefundRequest,
    RejectReleaseRequest,
    ReleaseRequestCreate,
    ReleaseRequestResponse,
    SettlementResponse,
)
from order_settlement.services.orchestrator import SettlementOrchestrator

router = APIRouter(prefix="/api/v1", tags=["Escrow"])


# ---------------------------------------------------------------------------
# Escrow
# ---------------------------------------------------------------------------


@router.post(
    "/orders/{order_id}/escrow",
    response_model=EscrowResponse,
    status_code=201,
    summary="Hold payment in escrow",
)
async def hold_escrow(
    order_id: uuid.UUID,
    request: HoldEscrowRequest,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> EscrowResponse:
    """Hold the order's display total and confirm the order.

    A second hold for the same order returns 409 with ``idempotent: true``.
    """
    result = await engine.hold_escrow(
        order_id,
        actor,
        amount=request.amount,
        currency=request.currency,
        funding_source=request.funding_source,
    )
    return EscrowResponse.model_validate(result.value)


@router.get("/orders/{order_id}/escrow", response_model=EscrowResponse, summary="Get escrow")
async def get_escrow(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> EscrowResponse:
    return EscrowResponse.model_validate(await engine.get_escrow(order_id))


@router.post(
    "/orders/{order_id}/refund",
    response_model=SettlementResponse,
    summary="Refund the buyer",
)
async def refund(
    order_id: uuid.UUID,
    request: RefundRequest,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> SettlementResponse:
    result = await engine.refund(order_id, actor, request.reason)
    return SettlementResponse.model_validate(result.value)


# ---------------------------------------------------------------------------
# Release requests
# ---------------------------------------------------------------------------


@router.post(
    "/orders/{order_id}/release-requests",
    response_model=ReleaseRequestResponse,
    status_code=201,
    summary="Request a payment release",
)
async def request_release(
    order_id: uuid.UUID,
    request: ReleaseRequestCreate,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> ReleaseRequestResponse:
    result = await engine.request_release(order_id, actor, request.reason)
    return ReleaseRequestResponse.model_validate(result.value)


@router.get(
    "/orders/{order_id}/release-requests",
    response_model=list[ReleaseRequestResponse],
    summary="List release requests",
)
async def list_release_requests(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> list[ReleaseRequestResponse]:
    await engine.get_order(order_id)
    requests = await engine.get_release_requests(order_id)
    return [ReleaseRequestResponse.model_validate(r) for r in requests]


@router.post(
    "/release-requests/{request_id}/approve",
    response_model=SettlementResponse,
    summary="Approve a release request",
)
async def approve_release(
    request_id: uuid.UUID,
    request: ApproveReleaseRequest,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> SettlementResponse:
    """Release the escrow to seller, agent and platform."""
    result = await engine.approve_release(request_id, actor, request.notes)
    return SettlementResponse.model_validate(result.value)


@router.post(
    "/release-requests/{request_id}/reject",
    response_model=ReleaseRequestResponse,
    summary="Reject a release request",
)
async def reject_release(
    request_id: uuid.UUID,
    request: RejectReleaseRequest,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> ReleaseRequestResponse:
    result = await engine.reject_release(request_id, actor, request.reason)
    return ReleaseRequestResponse.model_validate(result.value)
