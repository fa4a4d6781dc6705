"""Seed demo shipment risk profiles if the table is empty. Call from startup or manually."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.database import Base, SessionLocal, engine
from app.models.shipment_risk_profile import ShipmentRiskProfile

logger = logging.getLogger(__name__)

SEED_PROFILES = [
    {
        # High-risk lane with an unreliable carrier: long delays classify HIGH
        "shipment_id": "SHIP1234",
        "carrier_name": "Blue Horizon Freight",
        "route_risk_score": 0.8,
        "vendor_reliable": False,
        "shipping_mode": "Sea",
        "port_used": "Los Angeles",
    },
    {
        # Scores derived from route attributes and carrier history
        "shipment_id": "SHIP2001",
        "carrier_name": "Pacific Lines",
        "shipping_mode": "Sea",
        "distance_km": 10400,
        "avg_transit_days": 21,
        "port_used": "Long Beach",
        "historical_delay_percentage": 38.0,
    },
    {
        "shipment_id": "SHIP2002",
        "carrier_name": "Xpressbees Surface",
        "shipping_mode": "Road",
        "distance_km": 350,
        "avg_transit_days": 2,
        "historical_delay_percentage": 6.5,
    },
    {
        "shipment_id": "SHIP2003",
        "carrier_name": "SkyCargo",
        "shipping_mode": "Air",
        "distance_km": 2900,
        "avg_transit_days": 1,
        "port_used": "Singapore",
        "historical_delay_percentage": 12.0,
    },
]


def seed_profiles(db: Session) -> int:
    if db.query(ShipmentRiskProfile).first() is not None:
        return 0
    for row in SEED_PROFILES:
        db.add(ShipmentRiskProfile(**row))
    db.commit()
    return len(SEED_PROFILES)


def seed_all_if_empty() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        created = seed_profiles(db)
        if created:
            logger.info("Seeded %d shipment risk profiles", created)
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    seed_all_if_empty()
