"""
Event channel backed by the ``inbound_delay_events`` / ``risk_assessed_events`` tables.

Inbound rows are leased for ``lease_seconds`` on delivery. A lease that expires
without a commit (worker crash, hung publish) makes the row deliverable again.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Callable

import anyio
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import PublishFailed
from app.models.inbound_delay_event import (
    STATUS_COMMITTED,
    STATUS_DEAD_LETTERED,
    STATUS_LEASED,
    STATUS_PENDING,
    InboundDelayEvent,
    utcnow,
)
from app.models.risk_assessed_event import RiskAssessedEvent
from app.schemas.risk_event import RiskAssessedRecord
from app.services.event_channel import EventChannel, InboundMessage

logger = logging.getLogger(__name__)


def enqueue_inbound_event(db: Session, payload: Any) -> InboundDelayEvent:
    """Store a raw predicted-delay payload as pending; validation happens in the pipeline."""
    shipment_id = None
    if isinstance(payload, dict) and isinstance(payload.get("shipmentId"), str):
        shipment_id = payload["shipmentId"][:255] or None
    event = InboundDelayEvent(
        shipment_id=shipment_id,
        payload=payload,
        status=STATUS_PENDING,
        delivery_attempts=0,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


class DatabaseEventChannel(EventChannel):
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        poll_interval_seconds: float = 1.0,
        lease_seconds: int = 60,
        listener_timeout_seconds: float = 5.0,
    ):
        super().__init__(listener_timeout_seconds=listener_timeout_seconds)
        self._session_factory = session_factory
        self._poll_interval = poll_interval_seconds
        self._lease = timedelta(seconds=lease_seconds)

    # ── Inbound ──────────────────────────────────────────────────────

    def _lease_next(self) -> InboundMessage | None:
        db = self._session_factory()
        try:
            now = utcnow()
            event = (
                db.query(InboundDelayEvent)
                .filter(
                    or_(
                        InboundDelayEvent.status == STATUS_PENDING,
                        and_(
                            InboundDelayEvent.status == STATUS_LEASED,
                            InboundDelayEvent.leased_until < now,
                        ),
                    )
                )
                .order_by(InboundDelayEvent.id)
                .with_for_update(skip_locked=True)
                .first()
            )
            if event is None:
                db.rollback()
                return None
            if event.status == STATUS_LEASED:
                logger.warning(
                    "Lease expired for inbound event %d (attempt %d); redelivering",
                    event.id,
                    event.delivery_attempts,
                )
            event.status = STATUS_LEASED
            event.leased_until = now + self._lease
            event.delivery_attempts = (event.delivery_attempts or 0) + 1
            db.commit()
            return InboundMessage(
                message_id=event.id,
                payload=event.payload,
                attempt=event.delivery_attempts,
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def receive(self) -> InboundMessage:
        while True:
            message = await anyio.to_thread.run_sync(self._lease_next)
            if message is not None:
                return message
            await asyncio.sleep(self._poll_interval)

    def _set_status(
        self, message: InboundMessage, status: str, error: str | None = None
    ) -> bool:
        """Move a leased row to ``status`` if this delivery still holds the lease.

        ``delivery_attempts`` is the fencing token: once the lease expired and
        the row was handed out again, the stale holder's transition is skipped.
        """
        values: dict[str, Any] = {"status": status, "leased_until": None}
        if error is not None:
            values["last_error"] = error[:2000]
        if status == STATUS_COMMITTED:
            values["committed_at"] = utcnow()
        db = self._session_factory()
        try:
            updated = (
                db.query(InboundDelayEvent)
                .filter(
                    InboundDelayEvent.id == message.message_id,
                    InboundDelayEvent.status == STATUS_LEASED,
                    InboundDelayEvent.delivery_attempts == message.attempt,
                )
                .update(values, synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        if not updated:
            logger.warning(
                "Inbound event %d no longer leased by attempt %d; skipping %s",
                message.message_id,
                message.attempt,
                status,
            )
            return False
        return True

    async def commit(self, message: InboundMessage) -> None:
        await anyio.to_thread.run_sync(self._set_status, message, STATUS_COMMITTED)

    async def release(self, message: InboundMessage, error: str | None = None) -> None:
        await anyio.to_thread.run_sync(self._set_status, message, STATUS_PENDING, error)

    async def dead_letter(self, message: InboundMessage, error: str) -> None:
        await anyio.to_thread.run_sync(
            self._set_status, message, STATUS_DEAD_LETTERED, error
        )

    # ── Outbound ─────────────────────────────────────────────────────

    def _insert_assessment(
        self, record: RiskAssessedRecord, source_event_id: int | None
    ) -> None:
        db = self._session_factory()
        try:
            db.add(
                RiskAssessedEvent(
                    source_event_id=source_event_id,
                    shipment_id=record.shipment_id,
                    predicted_eta=record.predicted_eta,
                    risk_level=record.risk_level.value,
                    reason=record.reason,
                    degraded=record.degraded,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def publish(
        self, record: RiskAssessedRecord, *, source: InboundMessage | None = None
    ) -> None:
        source_id = source.message_id if source is not None else None
        try:
            await anyio.to_thread.run_sync(self._insert_assessment, record, source_id)
        except SQLAlchemyError as exc:
            raise PublishFailed(
                f"Could not write risk assessment: {exc}",
                shipment_id=record.shipment_id,
            ) from exc
        await self._notify_published(record)
