"""Route risk heuristic: derive a [0, 1] route score and carrier reliability from shipment attributes."""

from __future__ import annotations

from app.models.shipment_risk_profile import ShipmentRiskProfile


def calculate_mode_risk(shipping_mode: str | None) -> float:
    mode = (shipping_mode or "").lower()
    if mode == "sea":
        return 0.7
    if mode == "road":
        return 0.5
    if mode == "rail":
        return 0.4
    if mode == "air":
        return 0.2
    return 0.5


def calculate_distance_risk(distance_km: float | None) -> float:
    if distance_km is None:
        return 0.4
    if distance_km <= 300:
        return 0.2
    if distance_km <= 1000:
        return 0.4
    if distance_km <= 3000:
        return 0.6
    return 0.8


def calculate_transit_risk(avg_transit_days: float | None) -> float:
    if avg_transit_days is None:
        return 0.5
    if avg_transit_days <= 3:
        return 0.2
    if avg_transit_days <= 7:
        return 0.4
    if avg_transit_days <= 15:
        return 0.6
    return 0.8


_PORT_CONGESTION: dict[str, float] = {
    "chennai port": 0.7,
    "los angeles": 0.8,
    "long beach": 0.8,
    "singapore": 0.5,
    "shanghai": 0.7,
    "rotterdam": 0.4,
}


def calculate_port_congestion_risk(port_used: str | None) -> float:
    if not port_used:
        return 0.4
    return _PORT_CONGESTION.get(port_used.strip().lower(), 0.5)


_ROUTE_WEIGHTS = {
    "mode": 0.3,
    "distance": 0.2,
    "transit": 0.2,
    "port": 0.3,
}


def calculate_route_risk_score(
    *,
    shipping_mode: str | None,
    distance_km: float | None,
    avg_transit_days: float | None,
    port_used: str | None,
) -> float:
    score = (
        calculate_mode_risk(shipping_mode) * _ROUTE_WEIGHTS["mode"]
        + calculate_distance_risk(distance_km) * _ROUTE_WEIGHTS["distance"]
        + calculate_transit_risk(avg_transit_days) * _ROUTE_WEIGHTS["transit"]
        + calculate_port_congestion_risk(port_used) * _ROUTE_WEIGHTS["port"]
    )
    return round(max(0.0, min(score, 1.0)), 2)


def is_vendor_reliable(
    historical_delay_percentage: float | None, unreliable_above: float
) -> bool:
    # Carriers without history are given the benefit of the doubt
    if historical_delay_percentage is None:
        return True
    return historical_delay_percentage <= unreliable_above


def factors_from_profile(
    profile: ShipmentRiskProfile, unreliable_above: float
) -> tuple[float, bool]:
    """Explicit profile values win; missing ones are derived from route attributes."""
    if profile.route_risk_score is not None:
        route_score = float(profile.route_risk_score)
    else:
        route_score = calculate_route_risk_score(
            shipping_mode=profile.shipping_mode,
            distance_km=profile.distance_km,
            avg_transit_days=profile.avg_transit_days,
            port_used=profile.port_used,
        )
    if profile.vendor_reliable is not None:
        vendor_reliable = bool(profile.vendor_reliable)
    else:
        vendor_reliable = is_vendor_reliable(
            profile.historical_delay_percentage, unreliable_above
        )
    return route_score, vendor_reliable
