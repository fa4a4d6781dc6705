"""Risk factors from an external HTTP API (historical data / scoring service)."""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from app.data.base import (
    FactorNotFound,
    FactorTimeout,
    RiskFactorLookupError,
    RiskFactorProvider,
    RiskFactors,
)
from app.schemas.risk_event import PredictedDelayRecord
from app.services.external_api_cache import ResponseCache

logger = logging.getLogger(__name__)


class HttpRiskFactorProvider(RiskFactorProvider):
    """
    GET {base_url}/shipments/{shipment_id}/risk-factors

    Expected body: {"routeRiskScore": 0.42, "vendorReliable": true}.
    One AsyncClient is shared by all workers; successful bodies are cached
    for ``cache_ttl_seconds``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 2.0,
        cache_ttl_seconds: float = 300,
        client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        self._owns_client = client is None
        self._cache = ResponseCache(ttl_seconds=cache_ttl_seconds)

    def get_type(self) -> str:
        return "http"

    async def lookup(self, record: PredictedDelayRecord) -> RiskFactors:
        shipment_id = record.shipment_id
        url = f"{self._base_url}/shipments/{quote(shipment_id, safe='')}/risk-factors"
        try:
            resp = await self._cache.cached_get(self._client, url, service="risk_factors")
        except httpx.TimeoutException as exc:
            raise FactorTimeout(shipment_id) from exc
        except httpx.HTTPError as exc:
            raise RiskFactorLookupError(
                shipment_id, f"Risk factor API unreachable: {exc}"
            ) from exc

        if resp.status_code == 404:
            raise FactorNotFound(shipment_id)
        if resp.status_code != 200:
            logger.warning(
                "Risk factor API -> %d for shipment %s", resp.status_code, shipment_id
            )
            raise RiskFactorLookupError(
                shipment_id, f"Risk factor API returned {resp.status_code}"
            )

        try:
            body = resp.json()
        except ValueError as exc:
            raise RiskFactorLookupError(
                shipment_id, "Risk factor API returned a non-JSON body"
            ) from exc
        if not isinstance(body, dict) or "routeRiskScore" not in body or "vendorReliable" not in body:
            raise RiskFactorLookupError(
                shipment_id, "Risk factor API response missing routeRiskScore/vendorReliable"
            )
        return self._create_factors(
            shipment_id, body["routeRiskScore"], body["vendorReliable"]
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
