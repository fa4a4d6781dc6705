from datetime import datetime

from pydantic import BaseModel, Field


class RiskProfileBase(BaseModel):
    shipment_id: str = Field(..., min_length=1, max_length=255)
    carrier_name: str | None = Field(None, description="Carrier / vendor name")

    route_risk_score: float | None = Field(
        None, ge=0, le=1, description="Explicit route risk; derived when omitted"
    )
    vendor_reliable: bool | None = Field(
        None, description="Explicit vendor reliability; derived when omitted"
    )

    shipping_mode: str | None = Field(None, description="e.g. Sea, Air, Road, Rail")
    distance_km: float | None = Field(None, ge=0)
    avg_transit_days: float | None = Field(None, ge=0)
    port_used: str | None = None
    historical_delay_percentage: float | None = Field(None, ge=0, le=100)


class RiskProfileCreate(RiskProfileBase):
    pass


class RiskProfileUpdate(BaseModel):
    carrier_name: str | None = None
    route_risk_score: float | None = Field(None, ge=0, le=1)
    vendor_reliable: bool | None = None
    shipping_mode: str | None = None
    distance_km: float | None = Field(None, ge=0)
    avg_transit_days: float | None = Field(None, ge=0)
    port_used: str | None = None
    historical_delay_percentage: float | None = Field(None, ge=0, le=100)


class RiskProfileOut(RiskProfileBase):
    id: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
