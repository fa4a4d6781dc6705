"""Published risk assessment (outbound stream), keyed by shipment and predicted ETA."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from app.database import Base
from app.models.inbound_delay_event import utcnow


class RiskAssessedEvent(Base):
    __tablename__ = "risk_assessed_events"

    id = Column(Integer, primary_key=True, index=True)
    source_event_id = Column(
        Integer,
        ForeignKey("inbound_delay_events.id", ondelete="SET NULL"),
        nullable=True,
    )

    shipment_id = Column(String(255), nullable=False, index=True)
    predicted_eta = Column(DateTime(timezone=True), nullable=True)
    risk_level = Column(String(16), nullable=False)
    reason = Column(Text, nullable=False)
    degraded = Column(Boolean, nullable=False, default=False)

    assessed_at = Column(DateTime, default=utcnow, nullable=False)
