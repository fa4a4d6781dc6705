"""Inbound predicted-delay event as received, plus its delivery/lease state."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from app.database import Base

STATUS_PENDING = "pending"
STATUS_LEASED = "leased"
STATUS_COMMITTED = "committed"
STATUS_DEAD_LETTERED = "dead_lettered"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class InboundDelayEvent(Base):
    __tablename__ = "inbound_delay_events"

    id = Column(Integer, primary_key=True, index=True)
    # Best-effort copy of payload["shipmentId"]; the payload is validated later
    shipment_id = Column(String(255), nullable=True, index=True)
    payload = Column(JSON, nullable=True)

    status = Column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    delivery_attempts = Column(Integer, nullable=False, default=0)
    leased_until = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    received_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    committed_at = Column(DateTime, nullable=True)
