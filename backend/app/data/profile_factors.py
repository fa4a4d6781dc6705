import logging
from typing import Callable

import anyio
from sqlalchemy.orm import Session

from app.data.base import FactorNotFound, RiskFactorProvider, RiskFactors
from app.models.shipment_risk_profile import ShipmentRiskProfile
from app.schemas.risk_event import PredictedDelayRecord
from app.services.route_risk import factors_from_profile

logger = logging.getLogger(__name__)


class DatabaseRiskFactorProvider(RiskFactorProvider):
    """Reads ``shipment_risk_profiles``; every lookup uses its own session."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        vendor_unreliable_delay_percentage: float = 25.0,
    ):
        self._session_factory = session_factory
        self._unreliable_above = vendor_unreliable_delay_percentage

    def get_type(self) -> str:
        return "database"

    def _load(self, shipment_id: str) -> tuple[float, bool] | None:
        db = self._session_factory()
        try:
            profile = (
                db.query(ShipmentRiskProfile)
                .filter(ShipmentRiskProfile.shipment_id == shipment_id)
                .first()
            )
            if profile is None:
                return None
            return factors_from_profile(profile, self._unreliable_above)
        finally:
            db.close()

    async def lookup(self, record: PredictedDelayRecord) -> RiskFactors:
        # Abandon the worker thread on cancellation so wait_for timeouts take effect
        found = await anyio.to_thread.run_sync(
            self._load, record.shipment_id, abandon_on_cancel=True
        )
        if found is None:
            raise FactorNotFound(record.shipment_id)
        route_score, vendor_reliable = found
        logger.debug(
            "Risk profile for %s: route=%.2f vendor_reliable=%s",
            record.shipment_id,
            route_score,
            vendor_reliable,
        )
        return self._create_factors(record.shipment_id, route_score, vendor_reliable)
