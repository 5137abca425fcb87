"""
Spatial Risk Classifier

Off-site compensation further from the development is less certain to
deliver, so allocated units are discounted by a distance band:

- On-site (0 km)          -> factor 1.0
- Within   (<= 10 km)     -> factor 1.0
- Neighbouring (<= 30 km) -> factor 0.75
- Outside  (beyond)       -> factor 0.5

The bands above are the defaults; the loaded reference tables carry the
authoritative copy (spatial_risk.csv). A distance equal to a threshold falls
into the closer band.

Usage:
    from habitat_units.spatial_risk import classify_distance

    risk = classify_distance(12.5)
    risk.category, risk.factor   # ("Neighbouring", 0.75)
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple


EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class SpatialRiskBand:
    """One distance band; max_distance_km is None for the catch-all last band"""
    category: str
    max_distance_km: Optional[float]
    factor: float


@dataclass(frozen=True)
class SpatialRisk:
    """Classification of one site-to-allocation distance"""
    category: str
    factor: float


DEFAULT_BANDS: Tuple[SpatialRiskBand, ...] = (
    SpatialRiskBand("On-site", 0.0, 1.0),
    SpatialRiskBand("Within", 10.0, 1.0),
    SpatialRiskBand("Neighbouring", 30.0, 0.75),
    SpatialRiskBand("Outside", None, 0.5),
)


def validate_bands(bands: Sequence[SpatialRiskBand]) -> Tuple[SpatialRiskBand, ...]:
    """
    Check that bands ascend by distance and end with exactly one open band.
    Returns the bands as a tuple.
    """
    bands = tuple(bands)
    if not bands:
        raise ValueError("At least one spatial risk band is required")
    if bands[-1].max_distance_km is not None:
        raise ValueError(f"Last spatial risk band '{bands[-1].category}' must have no upper distance")

    previous = None
    for band in bands[:-1]:
        if band.max_distance_km is None:
            raise ValueError(f"Only the last spatial risk band may be open-ended (got '{band.category}')")
        if previous is not None and band.max_distance_km <= previous:
            raise ValueError("Spatial risk bands must be in ascending distance order")
        previous = band.max_distance_km

    for band in bands:
        if not 0 < band.factor <= 1:
            raise ValueError(f"Spatial risk factor for '{band.category}' must be in (0, 1]")
    return bands


def classify_distance(distance_km: float,
                      bands: Sequence[SpatialRiskBand] = DEFAULT_BANDS) -> SpatialRisk:
    """Map a site-to-allocation distance (km) to its spatial risk band."""
    if distance_km is None or math.isnan(distance_km) or distance_km < 0:
        raise ValueError(f"Distance must be a non-negative number, got {distance_km!r}")

    for band in bands:
        if band.max_distance_km is None or distance_km <= band.max_distance_km:
            return SpatialRisk(band.category, band.factor)

    # validate_bands guarantees an open last band; fall back to it anyway
    last = bands[-1]
    return SpatialRisk(last.category, last.factor)


def effective_units(units: float, distance_km: Optional[float],
                    bands: Sequence[SpatialRiskBand] = DEFAULT_BANDS) -> float:
    """Apply the spatial risk discount to allocated units (no discount without a distance)."""
    if distance_km is None:
        return units
    return units * classify_distance(distance_km, bands).factor


def haversine_km(lat1: Optional[float], lon1: Optional[float],
                 lat2: Optional[float], lon2: Optional[float]) -> Optional[float]:
    """Great-circle distance in km, or None when any coordinate is missing."""
    if lat1 is None or lon1 is None or lat2 is None or lon2 is None:
        return None

    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(d_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c
