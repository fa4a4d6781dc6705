"""Wire schemas for the predicted-delay (inbound) and risk-assessed (outbound) streams."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class PredictedDelayRecord(BaseModel):
    """Inbound event produced by the delay-prediction service."""

    shipment_id: str = Field(..., alias="shipmentId", min_length=1)
    predicted_eta: datetime = Field(..., alias="predictedETA")
    delay_minutes: int = Field(..., alias="delayInMinutes", ge=0)
    is_delayed: bool = Field(..., alias="isDelayed")

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("shipment_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("shipmentId must not be blank")
        return v

    @field_validator("predicted_eta")
    @classmethod
    def _as_utc(cls, v: datetime) -> datetime:
        # Naive timestamps are taken to be UTC already
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @property
    def delay_flag_consistent(self) -> bool:
        return self.is_delayed == (self.delay_minutes > 0)


class RiskAssessedRecord(BaseModel):
    """Outbound event: one per classified inbound record.

    ``predicted_eta`` and ``degraded`` travel with the record inside the
    service (storage keys, dashboards) but are not part of the wire form.
    """

    shipment_id: str = Field(..., alias="shipmentId")
    risk_level: RiskLevel = Field(..., alias="riskLevel")
    reason: str
    predicted_eta: datetime | None = Field(None, exclude=True)
    degraded: bool = Field(False, exclude=True)

    model_config = {"populate_by_name": True, "frozen": True}

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ClassifyRequest(BaseModel):
    delay_minutes: int = Field(..., ge=0)
    route_risk_score: float = Field(..., ge=0, le=1)
    vendor_reliable: bool


class ClassifyResponse(BaseModel):
    risk_level: RiskLevel
    reason: str


class InboundEventAccepted(BaseModel):
    id: int
    status: str


class RiskAssessmentOut(BaseModel):
    id: int
    source_event_id: int | None = None
    shipment_id: str
    predicted_eta: datetime | None = None
    risk_level: RiskLevel
    reason: str
    degraded: bool
    assessed_at: datetime

    model_config = {"from_attributes": True}


class DeadLetterOut(BaseModel):
    id: int
    shipment_id: str | None = None
    payload: dict[str, Any] | list[Any] | str | int | float | bool | None = None
    delivery_attempts: int
    last_error: str | None = None
    received_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
