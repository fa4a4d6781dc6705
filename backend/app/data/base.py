from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.schemas.risk_event import PredictedDelayRecord


@dataclass(frozen=True)
class RiskFactors:
    route_risk_score: float
    vendor_reliable: bool


# Substituted when a lookup fails: neutral route score, vendor assumed reliable
NEUTRAL_RISK_FACTORS = RiskFactors(route_risk_score=0.5, vendor_reliable=True)


class RiskFactorLookupError(Exception):
    """Provider could not produce factors for a shipment."""

    def __init__(self, shipment_id: str, message: str):
        super().__init__(f"{message} (shipment {shipment_id})")
        self.shipment_id = shipment_id


class FactorNotFound(RiskFactorLookupError):
    def __init__(self, shipment_id: str, message: str = "No risk factors found"):
        super().__init__(shipment_id, message)


class FactorTimeout(RiskFactorLookupError):
    def __init__(self, shipment_id: str, message: str = "Risk factor lookup timed out"):
        super().__init__(shipment_id, message)


class RiskFactorProvider(ABC):
    """
    Supplies route risk and vendor reliability for a shipment.

    A single instance is shared by every pipeline worker, so implementations
    must tolerate concurrent ``lookup`` calls.
    """

    @abstractmethod
    async def lookup(self, record: PredictedDelayRecord) -> RiskFactors:
        pass

    @abstractmethod
    def get_type(self) -> str:
        pass

    async def aclose(self) -> None:
        return None

    def _create_factors(
        self, shipment_id: str, route_risk_score: float, vendor_reliable: bool
    ) -> RiskFactors:
        try:
            score = float(route_risk_score)
        except (TypeError, ValueError):
            raise RiskFactorLookupError(
                shipment_id, f"Route risk score is not a number: {route_risk_score!r}"
            )
        if math.isnan(score) or not 0.0 <= score <= 1.0:
            raise RiskFactorLookupError(
                shipment_id, f"Route risk score out of range: {score}"
            )
        if not isinstance(vendor_reliable, bool):
            raise RiskFactorLookupError(
                shipment_id, f"Vendor reliability is not a boolean: {vendor_reliable!r}"
            )
        return RiskFactors(route_risk_score=score, vendor_reliable=vendor_reliable)
