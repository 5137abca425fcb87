"""
tests/test_spatial_risk.py

Tests for distance banding, unit discounting and great-circle distance.
"""

import pytest

from habitat_units.spatial_risk import (
    DEFAULT_BANDS,
    SpatialRiskBand,
    classify_distance,
    effective_units,
    haversine_km,
    validate_bands,
)


def test_classify_distance():
    """Test distance classification."""
    assert classify_distance(0).category == "On-site"
    assert classify_distance(5).category == "Within"
    assert classify_distance(20).category == "Neighbouring"
    assert classify_distance(250).category == "Outside"
    assert classify_distance(20).factor == 0.75
    assert classify_distance(250).factor == 0.5


def test_threshold_ties_fall_into_closer_band():
    """Test band thresholds."""
    assert classify_distance(10).category == "Within"
    assert classify_distance(30).category == "Neighbouring"
    assert classify_distance(30.0001).category == "Outside"


def test_classify_rejects_invalid_distance():
    """Test invalid distance."""
    with pytest.raises(ValueError):
        classify_distance(-1)
    with pytest.raises(ValueError):
        classify_distance(float("nan"))


def test_classifier_uses_loaded_bands(tables):
    """Test bands from reference data."""
    assert classify_distance(12, tables.spatial_risk_bands).category == "Neighbouring"


def test_effective_units():
    """Test spatial risk discount on units."""
    assert effective_units(4, 5) == 4
    assert effective_units(4, 25) == 3
    assert effective_units(4, 100) == 2
    assert effective_units(4, None) == 4


def test_validate_bands():
    """Test band validation."""
    assert validate_bands(DEFAULT_BANDS) == DEFAULT_BANDS

    with pytest.raises(ValueError):
        validate_bands([])
    with pytest.raises(ValueError):
        validate_bands([SpatialRiskBand("Near", 10, 1.0), SpatialRiskBand("Far", 20, 0.5)])
    with pytest.raises(ValueError):
        validate_bands([SpatialRiskBand("Near", 10, 1.0), SpatialRiskBand("Nearer", 5, 1.0),
                        SpatialRiskBand("Far", None, 0.5)])
    with pytest.raises(ValueError):
        validate_bands([SpatialRiskBand("Near", 10, 1.0), SpatialRiskBand("Far", None, 0)])


def test_haversine_km():
    """Test great-circle distance."""
    assert haversine_km(51.5, -0.1, 51.5, -0.1) == 0
    # London to Bristol is roughly 170 km
    distance = haversine_km(51.5074, -0.1278, 51.4545, -2.5879)
    assert 165 < distance < 175
    assert haversine_km(None, -0.1, 51.5, -0.1) is None
