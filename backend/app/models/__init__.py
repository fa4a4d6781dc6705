from app.models.inbound_delay_event import InboundDelayEvent
from app.models.risk_assessed_event import RiskAssessedEvent
from app.models.shipment_risk_profile import ShipmentRiskProfile

__all__ = [
    "InboundDelayEvent",
    "RiskAssessedEvent",
    "ShipmentRiskProfile",
]
