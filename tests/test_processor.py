"""
tests/test_processor.py

End-to-end tests for the site index processor.
"""

import logging

import pytest

from habitat_units.formula import score_parcels
from habitat_units.models import AreaParcel
from habitat_units.processor import SiteIndexProcessor, derive_allocated_sizes
from habitat_units.register import parse_allocation, parse_register


# Modified grassland Poor 10 ha (20) + Native hedgerow Poor 0.5 km (1)
BASELINE_HUS = 21.0
# Modified grassland Good 6 ha enhanced (6 x 6 x 0.709)
# + Other neutral grassland Good 4 ha created (4 x 12 x 0.709)
# + Native hedgerow Good 0.5 km enhanced (0.5 x 6 x 0.662)
IMPROVEMENT_HUS = 6 * 6 * 0.709 + 4 * 12 * 0.709 + 0.5 * 6 * 0.662


@pytest.fixture
def processor(tables):
    return SiteIndexProcessor(tables)


@pytest.fixture
def malformed_record():
    return {"referenceNumber": "BGS-999", "siteSize": 3}


def test_site_summary(processor, tables, site_record):
    """Test per-site summary."""
    sites = parse_register([site_record], tables)
    result = processor.process_site(sites[0])
    summary = result.summary

    assert summary.reference_number == "BGS-010124001"
    assert summary.responsible_bodies == ["Somerset Council"]
    assert summary.allocations_count == 1
    assert summary.lpa_name == "Somerset"
    assert summary.imd_decile == 3
    assert summary.baseline_area_size == 10
    assert summary.baseline_hus == pytest.approx(BASELINE_HUS)
    assert summary.improvement_hus == pytest.approx(IMPROVEMENT_HUS)
    assert summary.hu_gain == pytest.approx(IMPROVEMENT_HUS - BASELINE_HUS)
    assert summary.median_allocation_distance == 12
    assert result.errors == []


def test_site_conversions(processor, tables, site_record):
    """Test per-site conversion edges."""
    result = processor.process_site(parse_register([site_record], tables)[0])
    edges = [(e.module, e.source_type, e.target_type, e.quantity) for e in result.conversions.edges]

    assert edges == [
        ("Area", "Modified grassland", "Modified grassland", 6),
        ("Hedgerow", "Native hedgerow", "Native hedgerow", 0.5),
        ("Area", "Modified grassland", "Other neutral grassland", 4),
    ]
    assert result.conversions.retained == ()


def test_register_summary(processor, tables, site_record):
    """Test register-wide summary."""
    result = processor.process(parse_register([site_record], tables))
    summary = result.summary

    assert summary.total_sites == 1
    assert summary.total_area == 12.5
    assert summary.total_baseline_hus == pytest.approx(BASELINE_HUS)
    assert summary.total_created_hus == pytest.approx(IMPROVEMENT_HUS)
    assert summary.total_hu_gain == pytest.approx(IMPROVEMENT_HUS - BASELINE_HUS)
    assert summary.total_allocation_hus == pytest.approx(1.7)
    assert summary.num_allocations == 1
    assert summary.baseline_parcels == 2
    assert summary.improvement_parcels == 3
    assert summary.allocated_parcels == 1
    assert summary.baseline_sizes["Area"] == 10
    assert summary.improvement_sizes["Hedgerow"] == 0.5
    assert summary.imd_decile_distribution["3"] == 1
    assert summary.skipped_sites == []


def test_improvement_rows_carry_allocation_and_gain(processor, tables, site_record):
    """Test allocated fraction and HU gain on rows."""
    result = processor.process(parse_register([site_record], tables))
    rows = {(r.module, r.type): r for r in result.improvement_rows}

    neutral = rows[("Area", "Other neutral grassland")]
    # 1 ha of the 4 ha allocated; 4 ha of Modified grassland Poor (2 HUs/ha) matched
    assert neutral.allocated == pytest.approx(0.25)
    assert neutral.hu_gain == pytest.approx(4 * 12 * 0.709 - 8)

    modified = rows[("Area", "Modified grassland")]
    assert modified.allocated == 0
    assert modified.hu_gain == pytest.approx(6 * 6 * 0.709 - 12)

    assert [r.type for r in result.allocation_rows] == ["Other neutral grassland"]


def test_register_distributions(processor, tables, site_record):
    """Test register distributions."""
    result = processor.process(parse_register([site_record], tables))

    assert result.spatial_risk_distribution["Neighbouring"] == 1
    assert result.allocation_hu_distribution["area"]["1-2"] == 1
    assert result.allocation_hu_distribution["hedgerow"]["0-1"] == 1
    assert result.allocation_imd_distribution["7"] == 1
    assert result.distance_distribution == [{"distance": 12.0, "count": 1, "percentage": 100.0}]
    # A single pair: no correlation, no spread
    assert result.imd_comparison.pairs == 1
    assert result.imd_comparison.correlation is None
    assert result.imd_comparison.histogram == {-4.0: 1}


def test_malformed_site_isolated(processor, tables, site_record, malformed_record, caplog):
    """Test a malformed site does not affect others."""
    with caplog.at_level(logging.WARNING, logger="habitat_units.processor"):
        result = processor.process(parse_register([site_record, malformed_record], tables))
    summary = result.summary

    # Counted where it can be
    assert summary.total_sites == 2
    assert summary.total_area == 15.5
    # Excluded from everything needing habitats
    assert summary.total_baseline_hus == pytest.approx(BASELINE_HUS)
    assert summary.total_created_hus == pytest.approx(IMPROVEMENT_HUS)
    assert summary.skipped_sites == ["BGS-999"]
    assert summary.imd_decile_distribution["N/A"] == 1

    broken = result.sites[1]
    assert broken.summary.baseline_hus is None
    assert broken.summary.hu_gain is None
    assert broken.conversions is None
    assert set(broken.errors) == {"habitats", "improvements", "lsoa"}
    assert any("BGS-999" in r.getMessage() for r in caplog.records)


def test_site_without_lsoa_still_scored(processor, tables, site_record):
    """Test site without LSOA data."""
    del site_record["lsoa"]
    result = processor.process(parse_register([site_record], tables))

    assert result.summary.total_baseline_hus == pytest.approx(BASELINE_HUS)
    assert result.summary.skipped_sites == ["BGS-010124001"]
    assert result.sites[0].errors == ["lsoa"]


def test_conversions_for(processor, tables, site_record):
    """Test conversion lookup by reference."""
    result = processor.process(parse_register([site_record], tables))
    assert result.conversions_for("BGS-010124001") is result.sites[0].conversions
    assert result.conversions_for("BGS-404") is None


def test_empty_register(processor):
    """Test processing an empty register."""
    result = processor.process([])
    assert result.summary.total_sites == 0
    assert result.baseline_rows == []
    assert result.imd_comparison.correlation is None


def test_derive_allocated_sizes(tables):
    """Test allocated sizes derived from allocations."""
    improvements = score_parcels({
        "Area": (
            AreaParcel(type="Mixed scrub", size=2, condition="Good", is_improvement=True),
            AreaParcel(type="Mixed scrub", size=3, condition="Good", is_improvement=True),
            AreaParcel(type="Mixed scrub", size=1, condition="Poor", is_improvement=True, allocated_size=0.5),
        ),
    }, tables)
    allocations = [
        parse_allocation({"planningReference": "A", "habitats": {"areas": [
            {"type": "Heathland and shrub - Mixed scrub", "condition": "Good", "size": 2.5}]}}, tables),
        parse_allocation({"planningReference": "B", "habitats": {"areas": [
            {"type": "Heathland and shrub - Mixed scrub", "condition": "Good", "size": 10}]}}, tables),
    ]
    derived = derive_allocated_sizes(improvements, allocations)["Area"]

    # Filled in register order and clamped to parcel size
    assert derived[0].allocated_size == 2
    assert derived[1].allocated_size == 3
    # Provided by the register: left alone
    assert derived[2].allocated_size == 0.5
