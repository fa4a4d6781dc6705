from __future__ import annotations

from typing import Mapping

from app.data.base import FactorNotFound, RiskFactorProvider, RiskFactors
from app.schemas.risk_event import PredictedDelayRecord


class StaticRiskFactorProvider(RiskFactorProvider):
    """
    Fixed factors per shipment, with an optional fallback for unknown ones.

    Deterministic and I/O-free; used in tests and for local runs with
    ``RISK_FACTOR_SOURCE=static``.
    """

    def __init__(
        self,
        factors: Mapping[str, RiskFactors] | None = None,
        default: RiskFactors | None = None,
    ):
        self._factors = dict(factors or {})
        self._default = default
        self.calls: list[str] = []

    def get_type(self) -> str:
        return "static"

    async def lookup(self, record: PredictedDelayRecord) -> RiskFactors:
        self.calls.append(record.shipment_id)
        factors = self._factors.get(record.shipment_id, self._default)
        if factors is None:
            raise FactorNotFound(record.shipment_id)
        return self._create_factors(
            record.shipment_id, factors.route_risk_score, factors.vendor_reliable
        )
