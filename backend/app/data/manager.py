import logging
from typing import Callable

from sqlalchemy.orm import Session

from app.config import Settings
from app.data.base import NEUTRAL_RISK_FACTORS, RiskFactorProvider
from app.data.profile_factors import DatabaseRiskFactorProvider
from app.data.remote_factors import HttpRiskFactorProvider
from app.data.static_factors import StaticRiskFactorProvider

logger = logging.getLogger(__name__)


def build_risk_factor_provider(
    settings: Settings, session_factory: Callable[[], Session]
) -> RiskFactorProvider:
    """Pick the provider named by ``risk_factor_source``."""
    source = (settings.risk_factor_source or "").strip().lower()
    if source == "http":
        if not settings.risk_factor_api_url:
            raise ValueError("risk_factor_source=http requires risk_factor_api_url")
        provider: RiskFactorProvider = HttpRiskFactorProvider(
            settings.risk_factor_api_url,
            api_key=settings.risk_factor_api_key,
            timeout=settings.factor_lookup_timeout_seconds,
            cache_ttl_seconds=settings.risk_factor_cache_ttl_seconds,
        )
    elif source == "static":
        provider = StaticRiskFactorProvider(default=NEUTRAL_RISK_FACTORS)
    elif source == "database":
        provider = DatabaseRiskFactorProvider(
            session_factory,
            vendor_unreliable_delay_percentage=settings.vendor_unreliable_delay_percentage,
        )
    else:
        raise ValueError(f"Unknown risk_factor_source: {settings.risk_factor_source!r}")
    logger.info('Risk factor provider: "%s"', provider.get_type())
    return provider
