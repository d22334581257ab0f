"""Post-commit event dispatch.

The orchestrator hands committed events to EventDispatcher.dispatch(), which
returns immediately. Delivery runs in background asyncio tasks; a publisher
that fails is logged and skipped, and can never undo the settlement that
produced the event.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from order_settlement.infrastructure.redis_client import publish_json
from order_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from order_settlement.domain.events import DomainEvent

logger = get_logger(__name__)


class EventPublisher(Protocol):
    """Anything that can deliver one domain event to the notification layer."""

    async def publish(self, event: DomainEvent) -> None: ...


class InMemoryEventPublisher:
    """Keeps every published event in a list. Used by tests and local runs."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [event.name for event in self.events]

    def clear(self) -> None:
        self.events.clear()


class RedisEventPublisher:
    """Publishes events as JSON on a Redis pub/sub channel.

    Connection errors are retried with backoff; after that the dispatcher
    logs the failure and moves on.
    """

    def __init__(self, channel: str) -> None:
        self._channel = channel

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
        reraise=True,
    )
    async def publish(self, event: DomainEvent) -> None:
        receivers = await publish_json(self._channel, event.to_dict())
        logger.debug(
            "events.published",
            channel=self._channel,
            event_type=event.name,
            order_id=str(event.order_id),
            receivers=receivers,
        )


class EventDispatcher:
    """Fire-and-forget fan-out of committed events to every publisher."""

    def __init__(self, publishers: Sequence[EventPublisher] = ()) -> None:
        self._publishers = list(publishers)
        self._tasks: set[asyncio.Task] = set()

    def add_publisher(self, publisher: EventPublisher) -> None:
        self._publishers.append(publisher)

    def dispatch(self, events: Iterable[DomainEvent]) -> None:
        """Schedule delivery of events in order. Never raises, never waits."""
        events = list(events)
        if not events or not self._publishers:
            return
        task = asyncio.get_running_loop().create_task(self._deliver(events))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, events: list[DomainEvent]) -> None:
        for event in events:
            for publisher in self._publishers:
                try:
                    await publisher.publish(event)
                except Exception:
                    logger.exception(
                        "events.publish_failed",
                        publisher=type(publisher).__name__,
                        event_type=event.name,
                        order_id=str(event.order_id),
                    )

    async def drain(self) -> None:
        """Wait for in-flight deliveries. Used at shutdown and in tests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
