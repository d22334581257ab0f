"""Order REST API routes.

Routes:
    POST   /api/v1/orders                        — Place an order
    GET    /api/v1/orders/{id}                   — Get order details
    PATCH  /api/v1/orders/{id}/status            — Generic status change
    POST   /api/v1/orders/{id}/claim             — Agent claims the order
    POST   /api/v1/orders/{id}/assign            — Admin assigns an agent
    POST   /api/v1/orders/{id}/confirm-receipt   — Buyer confirms delivery
    POST   /api/v1/orders/{id}/dispute           — Raise a dispute
    POST   /api/v1/orders/{id}/resolve           — Admin resolves a dispute
    GET    /api/v1/orders/{id}/events            — Audit trail
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from order_settlement.api.deps import get_actor, get_orchestrator
from order_settlement.domain.actor import Actor
from order_settlement.schemas.orders import (
    AssignAgentRequest,
    CreateOrderRequest,
    OrderEventResponse,
    OrderResponse,
    RaiseDisputeRequest,
    ResolveDisputeRequest,
    UpdateStatusRequest,
)
from order_settlement.services.orchestrator import LineItem, SettlementOrchestrator

router = APIRouter(prefix="/api/v1/orders", tags=["Orders"])


@router.post(
    "",
    response_model=OrderResponse,
    status_code=201,
    summary="Place an order",
)
async def create_order(
    request: CreateOrderRequest,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> OrderResponse:
    """Price the cart at the current platform rate. The order starts in pending_payment."""
    result = await engine.create_order(
        actor,
        request.seller_id,
        [LineItem(line.item_id, line.quantity, line.unit_base_price) for line in request.lines],
        variant=request.variant,
        delivery_fee=request.delivery_fee,
        tax=request.tax,
        discount=request.discount,
        currency=request.currency,
    )
    return OrderResponse.model_validate(result.value)


@router.get("/{order_id}", response_model=OrderResponse, summary="Get order details")
async def get_order(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> OrderResponse:
    return OrderResponse.model_validate(await engine.get_order(order_id))


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Change the order status",
)
async def update_status(
    order_id: uuid.UUID,
    request: UpdateStatusRequest,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> OrderResponse:
    """Move the order along one edge of the lifecycle graph.

    Money moves with the edge: completing releases the escrow, cancelling
    refunds it.
    """
    result = await engine.update_status(
        order_id,
        request.target_status,
        actor,
        expected_version=request.expected_version,
        delivery_code=request.delivery_code,
        reason=request.reason,
    )
    return OrderResponse.model_validate(result.value)


@router.post("/{order_id}/claim", response_model=OrderResponse, summary="Claim an order")
async def claim_order(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> OrderResponse:
    """Exactly one of several agents racing for the same order wins; the rest get 409."""
    result = await engine.claim(order_id, actor)
    return OrderResponse.model_validate(result.value)


@router.post("/{order_id}/assign", response_model=OrderResponse, summary="Assign an agent")
async def assign_agent(
    order_id: uuid.UUID,
    request: AssignAgentRequest,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> OrderResponse:
    result = await engine.assign(order_id, request.agent_id, actor)
    return OrderResponse.model_validate(result.value)


@router.post(
    "/{order_id}/confirm-receipt",
    response_model=OrderResponse,
    summary="Buyer confirms receipt",
)
async def confirm_receipt(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> OrderResponse:
    """Complete the order and release the escrow without waiting for the grace period."""
    result = await engine.confirm_receipt(order_id, actor)
    return OrderResponse.model_validate(result.value)


@router.post("/{order_id}/dispute", response_model=OrderResponse, summary="Raise a dispute")
async def raise_dispute(
    order_id: uuid.UUID,
    request: RaiseDisputeRequest,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> OrderResponse:
    result = await engine.raise_dispute(order_id, actor, request.reason)
    return OrderResponse.model_validate(result.value)


@router.post("/{order_id}/resolve", response_model=OrderResponse, summary="Resolve a dispute")
async def resolve_dispute(
    order_id: uuid.UUID,
    request: ResolveDisputeRequest,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> OrderResponse:
    result = await engine.resolve_dispute(
        order_id, actor, refund=request.refund, reason=request.reason
    )
    return OrderResponse.model_validate(result.value)


@router.get(
    "/{order_id}/events",
    response_model=list[OrderEventResponse],
    summary="Get the order's audit trail",
)
async def get_events(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: SettlementOrchestrator = Depends(get_orchestrator),
) -> list[OrderEventResponse]:
    await engine.get_order(order_id)
    events = await engine.get_events(order_id)
    return [OrderEventResponse.model_validate(e) for e in events]
