import os

# Settings are read at import time; keep tests off PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PIPELINE_ENABLED", "false")

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.data.base import RiskFactors
from app.data.static_factors import StaticRiskFactorProvider
from app.database import Base


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def delay_payload(
    shipment_id: str = "SHIP1234",
    delay_minutes: int = 180,
    is_delayed: bool | None = None,
    eta: str = "2024-05-01T12:00:00Z",
) -> dict:
    return {
        "shipmentId": shipment_id,
        "predictedETA": eta,
        "delayInMinutes": delay_minutes,
        "isDelayed": delay_minutes > 0 if is_delayed is None else is_delayed,
    }


@pytest.fixture
def risky_provider():
    return StaticRiskFactorProvider(
        {
            "SHIP1234": RiskFactors(route_risk_score=0.8, vendor_reliable=False),
            "SAFE1": RiskFactors(route_risk_score=0.1, vendor_reliable=True),
        }
    )


@pytest.fixture
def eta():
    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_payload():
    return delay_payload
