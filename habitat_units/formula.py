"""
HU Formula

Habitat Units (HUs) for baseline and improvement parcels:

    baseline HU    = size x distinctiveness x condition x strategic significance
    improvement HU = size x distinctiveness x condition x strategic significance
                     x temporal risk x difficulty x spatial risk

Strategic significance is fixed at 1.0 ("Low") for current records and
spatial risk is 1.0 for site-level improvements (it applies to allocations).

Every function here is pure: the reference tables are passed in. A lookup
miss scores the parcel 0 and is logged rather than raised, so one bad record
cannot blank out a page.
"""

import dataclasses
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from .config import get_settings
from .errors import ReferenceDataError
from .models import (
    INTERVENTION_CREATION,
    INTERVENTION_ENHANCEMENT,
    HabitatParcel,
    ParcelsByModule,
)
from .reference import CAPPED_YEARS_KEY, ReferenceTables, normalise_years

logger = logging.getLogger(__name__)


STRATEGIC_SIGNIFICANCE_LOW = 1.0

# Condition assumed when the register gives none
MISSING_CONDITION = "N/A - Other"


@lru_cache(maxsize=1024)
def _report_missing(table: str, key: str) -> None:
    # Cached so each missing key is logged once per process
    logger.warning(f"Reference data miss in '{table}' for {key}; scoring 0 HUs")


def _strategic_significance(value: Optional[float]) -> float:
    if value is None:
        return get_settings().strategic_significance
    return value


def _condition_or_default(condition: Optional[str]) -> str:
    if condition is None or not str(condition).strip():
        return MISSING_CONDITION
    return str(condition).strip()


def _offset_years(years, offset: float):
    """Add an offset to a time-to-target value; capped values stay capped."""
    if not offset:
        return years
    key = normalise_years(years)
    if key == CAPPED_YEARS_KEY:
        return key
    return max(0.0, float(key) + offset)


# ================= Core formula =================

def baseline_hu(size: float, habitat: str, condition: Optional[str], tables: ReferenceTables,
                strategic_significance: Optional[float] = None) -> float:
    """Baseline HUs for a parcel of the given size, type and condition."""
    try:
        return (size *
                tables.distinctiveness_score(habitat) *
                tables.condition_score(_condition_or_default(condition)) *
                _strategic_significance(strategic_significance))
    except ReferenceDataError as e:
        _report_missing(e.table, repr(e.key))
        return 0.0


def improvement_hu(size: float, habitat: str, condition: Optional[str], tables: ReferenceTables,
                   intervention_type: Optional[str] = INTERVENTION_CREATION,
                   time_to_target=None,
                   strategic_significance: Optional[float] = None,
                   spatial_risk: float = 1.0) -> float:
    """
    Improvement HUs for a created or enhanced parcel.

    time_to_target defaults to the reference table value for the habitat and
    condition. The difficulty band follows the intervention type.
    """
    condition = _condition_or_default(condition)
    try:
        if time_to_target is None:
            time_to_target = tables.time_to_target(habitat, condition)
        return (size *
                tables.distinctiveness_score(habitat) *
                tables.condition_score(condition) *
                _strategic_significance(strategic_significance) *
                tables.temporal_risk(time_to_target) *
                tables.difficulty_factor(habitat, intervention_type) *
                spatial_risk)
    except ReferenceDataError as e:
        _report_missing(e.table, repr(e.key))
        return 0.0


def enhancement_hu(size: float, habitat: str, condition: str,
                   baseline_habitat: str, baseline_condition: str, tables: ReferenceTables,
                   time_to_target=None,
                   strategic_significance: Optional[float] = None,
                   spatial_risk: float = 1.0) -> float:
    """
    HUs for enhancing a known baseline: only the uplift over the baseline is
    discounted for temporal risk and difficulty.
    """
    condition = _condition_or_default(condition)
    try:
        if time_to_target is None:
            time_to_target = tables.time_to_target(habitat, condition)
        pre = (tables.distinctiveness_score(baseline_habitat) *
               tables.condition_score(_condition_or_default(baseline_condition)))
        post = tables.distinctiveness_score(habitat) * tables.condition_score(condition)
        uplift = ((post - pre) *
                  tables.temporal_risk(time_to_target) *
                  tables.difficulty_factor(habitat, INTERVENTION_ENHANCEMENT))
        return (uplift + pre) * size * _strategic_significance(strategic_significance) * spatial_risk
    except ReferenceDataError as e:
        _report_missing(e.table, repr(e.key))
        return 0.0


def parcel_hu(parcel: HabitatParcel, tables: ReferenceTables,
              strategic_significance: Optional[float] = None) -> float:
    """HUs for a parcel, using the improvement formula for improvement parcels."""
    if parcel.is_improvement:
        return improvement_hu(
            parcel.size, parcel.type, parcel.condition, tables,
            intervention_type=parcel.intervention_type,
            time_to_target=parcel.time_to_target,
            strategic_significance=strategic_significance,
        )
    return baseline_hu(parcel.size, parcel.type, parcel.condition, tables,
                       strategic_significance=strategic_significance)


def score_parcel(parcel: HabitatParcel, tables: ReferenceTables) -> HabitatParcel:
    """Return a copy of the parcel with distinctiveness and HUs filled in."""
    try:
        distinctiveness = tables.distinctiveness_band(parcel.type)
    except ReferenceDataError as e:
        _report_missing(e.table, repr(e.key))
        distinctiveness = None
    return dataclasses.replace(parcel, distinctiveness=distinctiveness, hus=parcel_hu(parcel, tables))


def score_parcels(parcels_by_module: Optional[ParcelsByModule],
                  tables: ReferenceTables) -> Optional[Dict[str, Tuple[HabitatParcel, ...]]]:
    """Score every parcel of a module mapping; None passes through."""
    if parcels_by_module is None:
        return None
    return {
        module: tuple(score_parcel(p, tables) for p in parcels)
        for module, parcels in parcels_by_module.items()
    }


def total_hus(parcels_by_module: Optional[ParcelsByModule]) -> float:
    if not parcels_by_module:
        return 0.0
    return sum(p.hus for parcels in parcels_by_module.values() for p in parcels)


# ================= HU calculator =================

def hu_breakdown(size: float, habitat: str, condition: str, tables: ReferenceTables,
                 intervention_type: Optional[str] = None) -> Dict[str, Any]:
    """
    HUs plus every multiplier that went into them, for the HU calculator.
    Unknown habitats or conditions raise ReferenceDataError.
    """
    is_baseline = not intervention_type or str(intervention_type).lower() == "none"

    result = {
        "hu": 0.0,
        "distinctiveness": tables.distinctiveness_band(habitat),
        "distinctiveness_score": tables.distinctiveness_score(habitat),
        "condition_score": tables.condition_score(condition),
    }

    if is_baseline:
        result["hu"] = baseline_hu(size, habitat, condition, tables)
        return result

    time_to_target = tables.time_to_target(habitat, condition)
    result["time_to_target"] = time_to_target
    result["temporal_risk"] = tables.temporal_risk(time_to_target)
    result["difficulty_factor"] = tables.difficulty_factor(habitat, intervention_type)
    result["hu"] = improvement_hu(size, habitat, condition, tables,
                                  intervention_type=intervention_type,
                                  time_to_target=time_to_target)
    return result


# ================= Scenario planning =================

def ranked_conditions(tables: ReferenceTables) -> List[str]:
    """Conditions with an ordinal rank, worst first."""
    return [c for c, _ in sorted(tables.condition_ranks.items(), key=lambda item: item[1])]


def calculate_scenarios(size: float, habitat: str, tables: ReferenceTables,
                        improvement_type: str = "creation",
                        baseline_habitat: Optional[str] = None,
                        baseline_condition: Optional[str] = None,
                        time_to_target_offset: float = 0,
                        strategic_significance: float = STRATEGIC_SIGNIFICANCE_LOW,
                        spatial_risk: float = 1.0) -> Dict[str, Any]:
    """
    Improvement HUs for a habitat at every target condition.

    Creation covers every ranked condition. Enhancement needs a baseline
    habitat and condition and only covers target conditions at least as good
    as the baseline condition.
    """
    is_enhancement = str(improvement_type).lower().startswith("enhance")
    if is_enhancement and (not baseline_habitat or not baseline_condition):
        raise ValueError("Enhancement scenarios need a baseline habitat and condition")

    scenarios = []
    for target_condition in ranked_conditions(tables):
        if is_enhancement and (tables.condition_score(target_condition) <
                               tables.condition_score(baseline_condition)):
            continue

        try:
            time_to_target = tables.time_to_target(habitat, target_condition)
        except ReferenceDataError:
            time_to_target = None
        if time_to_target is not None:
            time_to_target = _offset_years(time_to_target, time_to_target_offset)

        if is_enhancement:
            hus = enhancement_hu(size, habitat, target_condition, baseline_habitat, baseline_condition,
                                 tables, time_to_target=time_to_target,
                                 strategic_significance=strategic_significance,
                                 spatial_risk=spatial_risk)
            baseline_hus = baseline_hu(size, baseline_habitat, baseline_condition, tables,
                                       strategic_significance=strategic_significance)
        else:
            hus = improvement_hu(size, habitat, target_condition, tables,
                                 intervention_type=INTERVENTION_CREATION,
                                 time_to_target=time_to_target,
                                 strategic_significance=strategic_significance,
                                 spatial_risk=spatial_risk)
            baseline_hus = 0.0

        scenarios.append({
            "baseline_habitat": baseline_habitat if is_enhancement else "N/A (Creation)",
            "baseline_condition": baseline_condition if is_enhancement else "N/A (Creation)",
            "target_condition": target_condition,
            "hus": hus,
            "baseline_hus": baseline_hus,
            "distinctiveness_score": tables.distinctiveness_score(habitat),
            "condition_score": tables.condition_score(target_condition),
            "time_to_target": time_to_target if time_to_target is not None else "N/A",
        })

    hu_values = [s["hus"] for s in scenarios]
    summary = None
    if hu_values:
        summary = {
            "min_hus": min(hu_values),
            "max_hus": max(hu_values),
            "avg_hus": sum(hu_values) / len(hu_values),
        }

    return {
        "habitat": habitat,
        "habitat_group": tables.broad_habitat(habitat),
        "improvement_type": "enhancement" if is_enhancement else "creation",
        "results": scenarios,
        "summary": summary,
    }
