"""
Event transport seen by the risk assessment pipeline.

Delivery is at-least-once: a message that is not committed (crash, cancellation,
publish failure) comes back through ``deliver`` with a higher ``attempt``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Awaitable, Callable

from app.schemas.risk_event import RiskAssessedRecord

logger = logging.getLogger(__name__)

PublishListener = Callable[[RiskAssessedRecord], Awaitable[None]]


@dataclass(frozen=True)
class InboundMessage:
    message_id: int
    payload: Any
    # 1 on first delivery, incremented on every redelivery
    attempt: int = 0


class EventChannel(ABC):
    def __init__(self, *, listener_timeout_seconds: float = 5.0) -> None:
        self._listeners: list[PublishListener] = []
        self._listener_timeout = listener_timeout_seconds

    @abstractmethod
    async def receive(self) -> InboundMessage:
        """Wait for the next deliverable message."""

    @abstractmethod
    async def publish(
        self, record: RiskAssessedRecord, *, source: InboundMessage | None = None
    ) -> None:
        """Write to the outbound stream. Raises PublishFailed when rejected."""

    @abstractmethod
    async def commit(self, message: InboundMessage) -> None:
        """Acknowledge consumption; the message is never delivered again."""

    @abstractmethod
    async def release(self, message: InboundMessage, error: str | None = None) -> None:
        """Return an uncommitted message for redelivery."""

    @abstractmethod
    async def dead_letter(self, message: InboundMessage, error: str) -> None:
        """Park a message that can never succeed and stop delivering it."""

    async def deliver(self) -> AsyncIterator[InboundMessage]:
        while True:
            yield await self.receive()

    def add_publish_listener(self, listener: PublishListener) -> None:
        self._listeners.append(listener)

    async def _notify_published(self, record: RiskAssessedRecord) -> None:
        for listener in list(self._listeners):
            try:
                await asyncio.wait_for(listener(record), timeout=self._listener_timeout)
            except asyncio.TimeoutError:
                # A stalled listener must not hold up the commit past the lease
                logger.warning(
                    "Publish listener timed out after %ss for %s",
                    self._listener_timeout,
                    record.shipment_id,
                )
            except Exception:
                # Listeners are best-effort; the record is already published
                logger.exception("Publish listener failed for %s", record.shipment_id)

    async def aclose(self) -> None:
        return None


class InMemoryEventChannel(EventChannel):
    """asyncio.Queue backed channel for tests and single-process runs."""

    def __init__(self, *, listener_timeout_seconds: float = 5.0) -> None:
        super().__init__(listener_timeout_seconds=listener_timeout_seconds)
        self._queue: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self._ids = itertools.count(1)
        self.published: list[RiskAssessedRecord] = []
        self.committed: list[int] = []
        self.released: list[int] = []
        self.dead_letters: list[tuple[InboundMessage, str]] = []

    async def submit(self, payload: Any) -> InboundMessage:
        message = InboundMessage(message_id=next(self._ids), payload=payload)
        await self._queue.put(message)
        return message

    def pending(self) -> int:
        return self._queue.qsize()

    async def receive(self) -> InboundMessage:
        message = await self._queue.get()
        return replace(message, attempt=message.attempt + 1)

    async def publish(
        self, record: RiskAssessedRecord, *, source: InboundMessage | None = None
    ) -> None:
        self.published.append(record)
        await self._notify_published(record)

    async def commit(self, message: InboundMessage) -> None:
        self.committed.append(message.message_id)

    async def release(self, message: InboundMessage, error: str | None = None) -> None:
        self.released.append(message.message_id)
        await self._queue.put(message)

    async def dead_letter(self, message: InboundMessage, error: str) -> None:
        self.dead_letters.append((message, error))
