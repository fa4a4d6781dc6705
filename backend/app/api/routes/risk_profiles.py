"""Shipment risk profiles read by the database risk factor provider."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.risk_profile import RiskProfileCreate, RiskProfileOut, RiskProfileUpdate
from app.services.risk_profiles_crud import (
    create_profile,
    delete_profile,
    get_profile,
    get_profiles,
    update_profile,
)

router = APIRouter(prefix="/risk-profiles", tags=["risk-profiles"])


@router.post("/", response_model=RiskProfileOut, status_code=status.HTTP_201_CREATED)
def create(
    data: RiskProfileCreate,
    db: Session = Depends(get_db),
) -> RiskProfileOut:
    if get_profile(db, data.shipment_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Risk profile already exists for this shipment",
        )
    profile = create_profile(db, data)
    return RiskProfileOut.model_validate(profile)


@router.get("/", response_model=list[RiskProfileOut])
def list_profiles(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
) -> list[RiskProfileOut]:
    profiles = get_profiles(db, skip=skip, limit=limit)
    return [RiskProfileOut.model_validate(p) for p in profiles]


@router.get("/{shipment_id}", response_model=RiskProfileOut)
def get_one(
    shipment_id: str,
    db: Session = Depends(get_db),
) -> RiskProfileOut:
    profile = get_profile(db, shipment_id)
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Risk profile not found"
        )
    return RiskProfileOut.model_validate(profile)


@router.put("/{shipment_id}", response_model=RiskProfileOut)
def update(
    shipment_id: str,
    data: RiskProfileUpdate,
    db: Session = Depends(get_db),
) -> RiskProfileOut:
    profile = get_profile(db, shipment_id)
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Risk profile not found"
        )
    updated = update_profile(db, profile, data)
    return RiskProfileOut.model_validate(updated)


@router.delete(
    "/{shipment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_model=None,
)
def delete(
    shipment_id: str,
    db: Session = Depends(get_db),
) -> None:
    profile = get_profile(db, shipment_id)
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Risk profile not found"
        )
    delete_profile(db, profile)
