"""Route and carrier signals for a shipment, read by the database risk factor provider."""

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String

from app.database import Base
from app.models.inbound_delay_event import utcnow


class ShipmentRiskProfile(Base):
    __tablename__ = "shipment_risk_profiles"

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(String(255), unique=True, nullable=False, index=True)
    carrier_name = Column(String(255), nullable=True)

    # Explicit signals; when null they are derived from the route attributes below
    route_risk_score = Column(Float, nullable=True)
    vendor_reliable = Column(Boolean, nullable=True)

    shipping_mode = Column(String(50), nullable=True)
    distance_km = Column(Float, nullable=True)
    avg_transit_days = Column(Float, nullable=True)
    port_used = Column(String(255), nullable=True)
    historical_delay_percentage = Column(Float, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
