"""Predicted-delay ingestion, published risk assessments and the dead-letter sink."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from app.core.risk_classifier import RiskClassifier
from app.database import get_db
from app.models.inbound_delay_event import STATUS_DEAD_LETTERED, InboundDelayEvent
from app.models.risk_assessed_event import RiskAssessedEvent
from app.schemas.risk_event import (
    ClassifyRequest,
    ClassifyResponse,
    DeadLetterOut,
    InboundEventAccepted,
    RiskAssessmentOut,
)
from app.services.db_event_channel import enqueue_inbound_event

router = APIRouter(tags=["risk"])

_classifier = RiskClassifier()


@router.post(
    "/events/predicted-delay",
    response_model=InboundEventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
def ingest_predicted_delay(
    payload: Any = Body(...),
    db: Session = Depends(get_db),
) -> InboundEventAccepted:
    """
    Queue a predicted-delay event for the pipeline. The payload is stored as-is;
    malformed events surface later in /events/dead-letters.
    """
    event = enqueue_inbound_event(db, payload)
    return InboundEventAccepted(id=event.id, status=event.status)


@router.get("/events/dead-letters", response_model=list[DeadLetterOut])
def list_dead_letters(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
) -> list[DeadLetterOut]:
    events = (
        db.query(InboundDelayEvent)
        .filter(InboundDelayEvent.status == STATUS_DEAD_LETTERED)
        .order_by(InboundDelayEvent.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return [DeadLetterOut.model_validate(e) for e in events]


@router.get("/risk-assessments", response_model=list[RiskAssessmentOut])
def list_risk_assessments(
    shipment_id: str | None = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
) -> list[RiskAssessmentOut]:
    query = db.query(RiskAssessedEvent)
    if shipment_id:
        query = query.filter(RiskAssessedEvent.shipment_id == shipment_id)
    rows = query.order_by(RiskAssessedEvent.id.desc()).offset(skip).limit(limit).all()
    return [RiskAssessmentOut.model_validate(r) for r in rows]


@router.post("/risk/classify", response_model=ClassifyResponse)
def classify(data: ClassifyRequest) -> ClassifyResponse:
    """Stateless preview of the classification rules."""
    risk_level, reason = _classifier.classify(
        data.delay_minutes, data.route_risk_score, data.vendor_reliable
    )
    return ClassifyResponse(risk_level=risk_level, reason=reason)
