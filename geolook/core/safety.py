# geolook/core/safety.py
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .models import Reading, SafetyTier
from .sensor_catalog import CATALOG, label_for, unit_for

RANGE = "range"
ONE_SIDED_MIN = "one-sided-min"
MAGNITUDE = "magnitude"
PRESSURE = "pressure"


@dataclass(frozen=True)
class SafetyBand:
    strategy: str
    safe: Tuple[float, float]
    warning: Tuple[float, float]


INF = float("inf")

SAFETY_BANDS: Dict[str, SafetyBand] = {
    "temperature": SafetyBand(RANGE, (0, 40), (40, 50)),
    "hum": SafetyBand(RANGE, (0, 80), (80, 90)),
    "ws_2": SafetyBand(RANGE, (0, 10), (10, 20)),
    "curr_rain": SafetyBand(RANGE, (0, 10), (10, 30)),
    "max_WS": SafetyBand(RANGE, (0, 15), (15, 25)),
    "VP_mbar": SafetyBand(RANGE, (0, 20), (20, 30)),
    "tilt_NS": SafetyBand(RANGE, (0, 2), (2, 5)),
    "tilt_WE": SafetyBand(RANGE, (0, 2), (2, 5)),
    # CRITICAL only below 970 or above 1060
    "press_h": SafetyBand(PRESSURE, (980, 1050), (970, 1060)),
    "bv": SafetyBand(ONE_SIDED_MIN, (12, INF), (10, INF)),
    "Strike": SafetyBand(MAGNITUDE, (0, 1), (0, 3)),
}


def _within(value: float, bounds: Tuple[float, float]) -> bool:
    return bounds[0] <= value <= bounds[1]


def classify(sensor_type: str, value: float) -> SafetyTier:
    """Safety tier of a single value. Unknown sensors are always SAFE."""
    band = SAFETY_BANDS.get(sensor_type)
    if band is None:
        return SafetyTier.SAFE

    if band.strategy == MAGNITUDE:
        value = abs(value)
        if value <= band.safe[1]:
            return SafetyTier.SAFE
        if value <= band.warning[1]:
            return SafetyTier.WARNING
        return SafetyTier.CRITICAL

    if band.strategy == ONE_SIDED_MIN:
        if value >= band.safe[0]:
            return SafetyTier.SAFE
        if value >= band.warning[0]:
            return SafetyTier.WARNING
        return SafetyTier.CRITICAL

    # RANGE and PRESSURE share the comparison; pressure's warning band
    # simply straddles the safe band on both sides.
    if _within(value, band.safe):
        return SafetyTier.SAFE
    if _within(value, band.warning):
        return SafetyTier.WARNING
    return SafetyTier.CRITICAL


def classify_reading(reading: Reading) -> Dict[str, SafetyTier]:
    """Tier for every catalogued sensor that has a numeric value in the reading."""
    tiers = {}
    for key in CATALOG:
        value = reading.value(key)
        if value is not None:
            tiers[key] = classify(key, value)
    return tiers


def group_by_tier(reading: Reading, tiers: Optional[Dict[str, SafetyTier]] = None) -> Dict[str, List[dict]]:
    """Dashboard grouping: {"critical": [...], "warning": [...], "safe": [...]}."""
    if tiers is None:
        tiers = classify_reading(reading)
    groups: Dict[str, List[dict]] = {"critical": [], "warning": [], "safe": []}
    for key, tier in tiers.items():
        groups[tier.value.lower()].append({
            "id": key,
            "label": label_for(key),
            "value": reading.value(key),
            "unit": unit_for(key),
            "status": tier.value,
        })
    return groups
