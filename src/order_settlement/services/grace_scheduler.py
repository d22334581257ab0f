"""Grace-period timers.

When an order is delivered, a timer is armed for the end of its grace
period. Firing only runs the eligibility check; it never blocks the request
that armed it and never releases money on its own.

Timers live in the event loop, so they are lost on restart;
SettlementOrchestrator.reschedule_pending() re-arms them from the orders table.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from order_settlement.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable

logger = get_logger(__name__)


class GracePeriodScheduler:
    def __init__(self, on_expiry: Callable[[uuid.UUID], Awaitable[object]]) -> None:
        self._on_expiry = on_expiry
        self._handles: dict[uuid.UUID, asyncio.TimerHandle] = {}
        self._running: set[asyncio.Task] = set()

    def schedule(self, order_id: uuid.UUID, ends_at: datetime) -> None:
        """Arm (or re-arm) the timer for an order."""
        self.cancel(order_id)
        delay = max((ends_at - datetime.now(UTC)).total_seconds(), 0.0)
        loop = asyncio.get_running_loop()
        self._handles[order_id] = loop.call_later(delay, self._fire, order_id)
        logger.debug("grace.scheduled", order_id=str(order_id), delay_seconds=round(delay, 3))

    def cancel(self, order_id: uuid.UUID) -> None:
        handle = self._handles.pop(order_id, None)
        if handle is not None:
            handle.cancel()

    def is_scheduled(self, order_id: uuid.UUID) -> bool:
        return order_id in self._handles

    def _fire(self, order_id: uuid.UUID) -> None:
        self._handles.pop(order_id, None)
        task = asyncio.get_running_loop().create_task(self._run(order_id))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, order_id: uuid.UUID) -> None:
        try:
            await self._on_expiry(order_id)
        except Exception:
            logger.exception("grace.check_failed", order_id=str(order_id))

    async def drain(self) -> None:
        """Wait for checks that have already fired."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    def shutdown(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
