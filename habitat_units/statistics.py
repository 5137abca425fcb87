"""
Aggregate statistics over the full allocation set.

- Pearson correlation of (site IMD, allocation IMD) pairs
- mean and sample standard deviation (n - 1) of the paired differences
- sparse fixed-width histogram of the differences
- allocation distance, HU and IMD decile distributions

Pairs missing either value are excluded, never zero-filled. Anything that
needs at least two pairs (or a non-zero variance) reports None instead of
raising.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .config import get_settings
from .errors import InsufficientDataError
from .models import Allocation, Site
from .spatial_risk import SpatialRiskBand

logger = logging.getLogger(__name__)


IMD_DECILES = tuple(range(1, 11))
NOT_AVAILABLE = "N/A"

# (label, lower bound exclusive, upper bound inclusive); the first bin includes 0
HU_BINS: Tuple[Tuple[str, float, Optional[float]], ...] = (
    ("0-1", 0.0, 1.0),
    ("1-2", 1.0, 2.0),
    ("2-3", 2.0, 3.0),
    ("3-4", 3.0, 4.0),
    ("4-5", 4.0, 5.0),
    (">5", 5.0, None),
)


@dataclass
class PairedDifferenceStats:
    """Summary of site-minus-allocation differences"""
    n: int = 0
    mean: Optional[float] = None
    std_dev: Optional[float] = None


@dataclass
class ImdComparison:
    """Site versus allocation deprivation, for the statistics page"""
    pairs: int = 0
    correlation: Optional[float] = None
    mean_difference: Optional[float] = None
    std_dev_difference: Optional[float] = None
    histogram: Dict[float, int] = field(default_factory=dict)


# ================= Core statistics =================

def _valid_pairs(pairs: Iterable[Tuple[Optional[float], Optional[float]]]) -> np.ndarray:
    kept = [(x, y) for x, y in pairs
            if x is not None and y is not None and not np.isnan(x) and not np.isnan(y)]
    return np.array(kept, dtype=float).reshape(-1, 2)


def _pearson(x: np.ndarray, y: np.ndarray) -> float:
    if len(x) < 2:
        raise InsufficientDataError(f"Correlation needs at least 2 pairs, got {len(x)}")
    # Constant columns leave rounding residue in the deviations
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        raise InsufficientDataError("Correlation is undefined for zero variance")
    dx = x - x.mean()
    dy = y - y.mean()
    sxx = float(np.sum(dx * dx))
    syy = float(np.sum(dy * dy))
    if sxx == 0 or syy == 0:
        # Spread too small to square
        raise InsufficientDataError("Correlation is undefined for zero variance")
    r =float(np.sum(dx * dy)) / np.sqrt(sxx * syy)
    # Rounding can push |r| just past 1
    return float(np.clip(r, -1.0, 1.0))


def pearson_correlation(pairs: Iterable[Tuple[Optional[float], Optional[float]]]) -> Optional[float]:
    """Pearson r over pairs with both values present; None when undefined."""
    data = _valid_pairs(pairs)
    try:
        return _pearson(data[:, 0], data[:, 1])
    except InsufficientDataError as e:
        logger.debug(f"Correlation not available: {e}")
        return None


def paired_difference_stats(pairs: Iterable[Tuple[Optional[float], Optional[float]]]) -> PairedDifferenceStats:
    """Mean and sample standard deviation of (first - second) over complete pairs."""
    data = _valid_pairs(pairs)
    n = len(data)
    if n < 2:
        return PairedDifferenceStats(n=n)
    differences = data[:, 0] - data[:, 1]
    return PairedDifferenceStats(
        n=n,
        mean=float(differences.mean()),
        std_dev=float(differences.std(ddof=1)),
    )


def histogram(values: Iterable[Optional[float]], width: Optional[float] = None) -> Dict[float, int]:
    """
    Sparse fixed-width histogram keyed by each bin's lower bound, in
    ascending order. Empty bins are omitted.
    """
    if width is None:
        width = get_settings().histogram_bin_width
    if width <= 0:
        raise ValueError("Histogram bin width must be positive")

    data = np.array([v for v in values if v is not None], dtype=float)
    data = data[~np.isnan(data)]
    if data.size == 0:
        return {}

    # Values on a bin edge stay in that bin for non-integer widths
    indices = np.floor(np.round(data / width, 9)).astype(int)
    bins, counts = np.unique(indices, return_counts=True)
    return {round(float(idx) * width, 9): int(count) for idx, count in zip(bins, counts)}


# ================= IMD comparison =================

def imd_pairs(sites: Sequence[Site], use_scores: bool = False) -> List[Tuple[Optional[float], Optional[float]]]:
    """(site, allocation) IMD decile (or score) for every allocation."""
    pairs = []
    for site in sites:
        site_value = site.imd_score if use_scores else site.imd_decile
        for allocation in site.allocations:
            alloc_value = allocation.imd_score if use_scores else allocation.imd_decile
            pairs.append((site_value, alloc_value))
    return pairs


def compare_imd(pairs: Iterable[Tuple[Optional[float], Optional[float]]],
                width: Optional[float] = None) -> ImdComparison:
    """Correlation, paired differences (site - allocation) and their histogram."""
    data = _valid_pairs(pairs)
    as_pairs = [tuple(p) for p in data.tolist()]
    stats = paired_difference_stats(as_pairs)
    return ImdComparison(
        pairs=len(as_pairs),
        correlation=pearson_correlation(as_pairs),
        mean_difference=stats.mean,
        std_dev_difference=stats.std_dev,
        histogram=histogram([x - y for x, y in as_pairs], width),
    )


# ================= Allocation distributions =================

def median_distance(allocations: Iterable[Allocation]) -> Optional[float]:
    distances = [a.distance for a in allocations if a.distance is not None]
    if not distances:
        return None
    return float(np.median(distances))


def cumulative_distance_distribution(distances: Iterable[Optional[float]]) -> List[Dict[str, float]]:
    """Sorted distances with the cumulative count and percentage of allocations."""
    data = np.sort(np.array([d for d in distances if d is not None], dtype=float))
    total = len(data)
    return [
        {"distance": float(d), "count": i + 1, "percentage": 100.0 * (i + 1) / total}
        for i, d in enumerate(data)
    ]


def hu_bin_label(units: float) -> str:
    for label, lower, upper in HU_BINS:
        if upper is None or units <= upper:
            return label
    return HU_BINS[-1][0]


def hu_distribution(allocations: Iterable[Allocation]) -> Dict[str, Dict[str, int]]:
    """
    Count of allocations per HU bin, separately for area, hedgerow and
    watercourse units. Allocations with no units of a kind are left out
    of that kind.
    """
    distribution = {kind: {label: 0 for label, _, _ in HU_BINS}
                    for kind in ("area", "hedgerow", "watercourse")}
    for allocation in allocations:
        for kind, units in (("area", allocation.area_units),
                            ("hedgerow", allocation.hedgerow_units),
                            ("watercourse", allocation.watercourse_units)):
            if units and units > 0:
                distribution[kind][hu_bin_label(units)] += 1
    return distribution


def decile_distribution(deciles: Iterable[Optional[int]]) -> Dict[str, int]:
    """Count per IMD decile 1-10, plus an "N/A" bucket for missing or out-of-range values."""
    distribution = {str(d): 0 for d in IMD_DECILES}
    distribution[NOT_AVAILABLE] = 0
    for decile in deciles:
        key = str(decile) if decile in IMD_DECILES else NOT_AVAILABLE
        distribution[key] += 1
    return distribution


def spatial_risk_distribution(allocations: Iterable[Allocation],
                              bands: Sequence[SpatialRiskBand]) -> Dict[str, int]:
    """Count of allocations per spatial risk band, in band order."""
    distribution = {band.category: 0 for band in bands}
    distribution[NOT_AVAILABLE] = 0
    for allocation in allocations:
        category = allocation.spatial_risk.category if allocation.spatial_risk else NOT_AVAILABLE
        distribution[category] = distribution.get(category, 0) + 1
    return distribution
