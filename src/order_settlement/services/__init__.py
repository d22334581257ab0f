"""Application services — the settlement engine's components and their orchestration."""

from order_settlement.services.event_dispatcher import (
    EventDispatcher,
    InMemoryEventPublisher,
    RedisEventPublisher,
)
from order_settlement.services.grace_scheduler import GracePeriodScheduler
from order_settlement.services.orchestrator import (
    LineItem,
    OperationResult,
    SettlementOrchestrator,
)

__all__ = [
    "EventDispatcher",
    "GracePeriodScheduler",
    "InMemoryEventPublisher",
    "LineItem",
    "OperationResult",
    "RedisEventPublisher",
    "SettlementOrchestrator",
]
