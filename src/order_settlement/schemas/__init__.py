"""Pydantic API schemas."""

from order_settlement.schemas.orders import (
    AssignAgentRequest,
    CreateOrderRequest,
    OrderEventResponse,
    OrderLineRequest,
    OrderLineResponse,
    OrderResponse,
    RaiseDisputeRequest,
    ResolveDisputeRequest,
    UpdateStatusRequest,
)
from order_settlement.schemas.settlement import (
    ApproveReleaseRequest,
    BalanceResponse,
    CommissionRateRequest,
    CommissionSettingResponse,
    ErrorResponse,
    EscrowResponse,
    HealthResponse,
    HoldEscrowRequest,
    RefundRequest,
    RejectReleaseRequest,
    ReleaseRequestCreate,
    ReleaseRequestResponse,
    SettlementResponse,
)

__all__ = [
    "ApproveReleaseRequest",
    "AssignAgentRequest",
    "BalanceResponse",
    "CommissionRateRequest",
    "CommissionSettingResponse",
    "CreateOrderRequest",
    "ErrorResponse",
    "EscrowResponse",
    "HealthResponse",
    "HoldEscrowRequest",
    "OrderEventResponse",
    "OrderLineRequest",
    "OrderLineResponse",
    "OrderResponse",
    "RaiseDisputeRequest",
    "RefundRequest",
    "RejectReleaseRequest",
    "ReleaseRequestCreate",
    "ReleaseRequestResponse",
    "ResolveDisputeRequest",
    "SettlementResponse",
    "UpdateStatusRequest",
]
