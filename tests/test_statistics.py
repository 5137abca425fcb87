"""
tests/test_statistics.py

Tests for cross-site statistics.
"""

import math

import pytest

from habitat_units.models import Allocation
from habitat_units.spatial_risk import DEFAULT_BANDS, SpatialRisk
from habitat_units.statistics import (
    compare_imd,
    cumulative_distance_distribution,
    decile_distribution,
    histogram,
    hu_bin_label,
    hu_distribution,
    median_distance,
    paired_difference_stats,
    pearson_correlation,
    spatial_risk_distribution,
)


IMD_PAIRS = [(3, 7), (5, 5), (8, 2)]


def test_correlation_of_inverse_relationship():
    """Test negative correlation."""
    r = pearson_correlation(IMD_PAIRS)
    assert r < 0
    assert r == pytest.approx(-1.0)


def test_correlation_bounds():
    """Test correlation stays within bounds."""
    r = pearson_correlation([(1, 2), (2, 1), (3, 5), (4, 4), (10, 3)])
    assert -1 <= r <= 1


def test_correlation_undefined():
    """Test undefined correlation."""
    assert pearson_correlation([]) is None
    assert pearson_correlation([(1, 2)]) is None
    # Zero variance in x
    assert pearson_correlation([(1, 2), (1, 3), (1, 4)]) is None
    # Constant non-integer column
    assert pearson_correlation([(0.1, 1), (0.1, 2), (0.1, 4)]) is None
    assert pearson_correlation([(30.5, 1), (30.5, 2), (30.5, 4)]) is None


def test_incomplete_pairs_excluded():
    """Test incomplete pairs are ignored."""
    r = pearson_correlation([(1, None), (None, 2), (1, 2), (2, 3)])
    assert r == pytest.approx(1.0)


def test_paired_difference_stats():
    """Test paired difference mean and spread."""
    stats = paired_difference_stats(IMD_PAIRS)
    assert stats.n == 3
    # (-4 + 0 + 6) / 3
    assert abs(stats.mean - 0.667) < 1e-3
    # Sample variance: 50.667 / (n - 1)
    assert stats.std_dev == pytest.approx(math.sqrt(76 / 3))


def test_paired_difference_needs_two_pairs():
    """Test paired differences with one pair."""
    stats = paired_difference_stats([(3, 7), (None, 1)])
    assert stats.n == 1
    assert stats.mean is None
    assert stats.std_dev is None


def test_histogram_is_sparse():
    """Test sparse histogram bins."""
    assert histogram([-4, 0, 6], width=1) == {-4.0: 1, 0.0: 1, 6.0: 1}
    assert histogram([0.2, 0.7, 1.5, -0.5], width=1) == {-1.0: 1, 0.0: 2, 1.0: 1}
    assert histogram([0, 1, 2, 3.9], width=2) == {0.0: 2, 2.0: 2}
    assert histogram([None], width=1) == {}
    assert list(histogram([5, -3, 1], width=1)) == [-3.0, 1.0, 5.0]


def test_histogram_fractional_width():
    """Test histogram with a fractional bin width."""
    assert histogram([0.3, 0.7], width=0.1) == {0.3: 1, 0.7: 1}
    assert histogram([0.25, 0.29, 0.31], width=0.1) == {0.2: 2, 0.3: 1}


def test_histogram_default_width():
    """Test default bin width."""
    assert histogram([0.5, 1.5]) == {0.0: 1, 1.0: 1}


def test_histogram_rejects_bad_width():
    """Test invalid bin width."""
    with pytest.raises(ValueError):
        histogram([1, 2], width=0)


def test_compare_imd():
    """Test IMD comparison."""
    comparison = compare_imd(IMD_PAIRS + [(None, 4)], width=1)
    assert comparison.pairs == 3
    assert comparison.correlation < 0
    assert abs(comparison.mean_difference - 0.667) < 1e-3
    assert comparison.histogram == {-4.0: 1, 0.0: 1, 6.0: 1}


def test_hu_bins():
    """Test HU bin labels."""
    assert hu_bin_label(0) == "0-1"
    assert hu_bin_label(1) == "0-1"
    assert hu_bin_label(1.01) == "1-2"
    assert hu_bin_label(5) == "4-5"
    assert hu_bin_label(5.1) == ">5"


def test_hu_distribution():
    """Test allocation HU distribution."""
    allocations = [
        Allocation(planning_reference="A", area_units=1.5, hedgerow_units=0.2),
        Allocation(planning_reference="B", area_units=7.0),
    ]
    distribution = hu_distribution(allocations)
    assert distribution["area"]["1-2"] == 1
    assert distribution["area"][">5"] == 1
    assert distribution["hedgerow"]["0-1"] == 1
    assert sum(distribution["watercourse"].values()) == 0


def test_decile_distribution():
    """Test decile distribution."""
    distribution = decile_distribution([1, 3, 3, None, 11])
    assert distribution["1"] == 1
    assert distribution["3"] == 2
    assert distribution["10"] == 0
    assert distribution["N/A"] == 2
    assert len(distribution) == 11


def test_cumulative_distance_distribution():
    """Test cumulative distance distribution."""
    distribution = cumulative_distance_distribution([5, None, 1, 3])
    assert [d["distance"] for d in distribution] == [1, 3, 5]
    assert [d["count"] for d in distribution] == [1, 2, 3]
    assert distribution[-1]["percentage"] == 100
    assert cumulative_distance_distribution([]) == []


def test_median_distance():
    """Test median allocation distance."""
    allocations = [
        Allocation(planning_reference="A", distance=1),
        Allocation(planning_reference="B", distance=3),
        Allocation(planning_reference="C"),
    ]
    assert median_distance(allocations) == 2
    assert median_distance([]) is None


def test_spatial_risk_distribution():
    """Test spatial risk distribution."""
    allocations = [
        Allocation(planning_reference="A", spatial_risk=SpatialRisk("Within", 1.0)),
        Allocation(planning_reference="B", spatial_risk=SpatialRisk("Within", 1.0)),
        Allocation(planning_reference="C"),
    ]
    distribution = spatial_risk_distribution(allocations, DEFAULT_BANDS)
    assert list(distribution) == ["On-site", "Within", "Neighbouring", "Outside", "N/A"]
    assert distribution["Within"] == 2
    assert distribution["N/A"] == 1
