from __future__ import annotations

from app.schemas.risk_event import RiskLevel

HIGH_DELAY_MINUTES = 180
MEDIUM_DELAY_MINUTES = 60
HIGH_ROUTE_RISK_SCORE = 0.7

MEDIUM_REASON = "Moderate delay with average risk factors"
LOW_REASON = "Minor delay or low-risk route"


def _high_reason(route_risk_score: float) -> str:
    return (
        f"Delay exceeds {HIGH_DELAY_MINUTES} minutes on a high-risk route "
        f"(route risk score {route_risk_score!r}) with an unreliable vendor"
    )


class RiskClassifier:
    """
    Maps a predicted delay plus route/vendor signals to a risk level.

    Rules are evaluated in order and the first match wins. All thresholds
    are strict: a 180-minute delay never qualifies as HIGH and a 60-minute
    delay never qualifies as MEDIUM.
    """

    def classify(
        self,
        delay_minutes: int,
        route_risk_score: float,
        vendor_reliable: bool,
    ) -> tuple[RiskLevel, str]:
        if (
            delay_minutes > HIGH_DELAY_MINUTES
            and route_risk_score > HIGH_ROUTE_RISK_SCORE
            and not vendor_reliable
        ):
            return RiskLevel.HIGH, _high_reason(route_risk_score)
        if delay_minutes > MEDIUM_DELAY_MINUTES:
            return RiskLevel.MEDIUM, MEDIUM_REASON
        return RiskLevel.LOW, LOW_REASON
