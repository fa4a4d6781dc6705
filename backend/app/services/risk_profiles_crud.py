"""CRUD for shipment risk profiles (list, get, create, update, delete)."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy.orm import Session

from app.models.shipment_risk_profile import ShipmentRiskProfile
from app.schemas.risk_profile import RiskProfileCreate, RiskProfileUpdate


def get_profiles(
    db: Session, skip: int = 0, limit: int = 100
) -> Sequence[ShipmentRiskProfile]:
    return (
        db.query(ShipmentRiskProfile)
        .order_by(ShipmentRiskProfile.id)
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_profile(db: Session, shipment_id: str) -> ShipmentRiskProfile | None:
    return (
        db.query(ShipmentRiskProfile)
        .filter(ShipmentRiskProfile.shipment_id == shipment_id)
        .first()
    )


def create_profile(db: Session, data: RiskProfileCreate) -> ShipmentRiskProfile:
    profile = ShipmentRiskProfile(**data.model_dump())
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def update_profile(
    db: Session, profile: ShipmentRiskProfile, data: RiskProfileUpdate
) -> ShipmentRiskProfile:
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(profile, field, value)
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def delete_profile(db: Session, profile: ShipmentRiskProfile) -> None:
    db.delete(profile)
    db.commit()
