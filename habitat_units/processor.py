"""
Site Index Processor

Runs the full pipeline over a register snapshot:

1. Score every baseline, improvement and allocated parcel (HU formula)
2. Fill in allocated sizes for improvement parcels the register left blank
3. Per site: collate, infer baseline -> improvement conversions, site summary
4. Register-wide: collated rows, HU gain per improvement row, totals,
   IMD comparison and allocation distributions

A malformed site (no habitats block, no LSOA data) is left out of the
metrics that need the missing field and still counted everywhere else.

Usage:
    from habitat_units.processor import SiteIndexProcessor

    result = SiteIndexProcessor(tables).process(sites)
    result.summary.total_baseline_hus
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .collation import allocation_parcels, collate_habitats, site_parcels
from .config import Settings, get_settings
from .conversion import ConversionResult, infer_site_conversions, matched_baseline_hus
from .errors import MalformedSiteError
from .formula import score_parcels, total_hus
from .models import (
    MODULE_AREA,
    MODULES,
    CollatedHabitatRow,
    HabitatParcel,
    ParcelsByModule,
    RegisterSummary,
    Site,
    SiteSummary,
    iter_parcels,
)
from .reference import ReferenceTables
from .statistics import (
    ImdComparison,
    compare_imd,
    cumulative_distance_distribution,
    decile_distribution,
    hu_distribution,
    imd_pairs,
    median_distance,
    spatial_risk_distribution,
)

logger = logging.getLogger(__name__)


@dataclass
class SiteResult:
    """Everything computed for one site"""
    index: int
    site: Site  # with scored parcels
    summary: SiteSummary
    conversions: Optional[ConversionResult] = None
    errors: List[str] = field(default_factory=list)  # fields missing from the record


@dataclass
class RegisterResult:
    """Everything computed for the register"""
    sites: List[SiteResult] = field(default_factory=list)
    summary: RegisterSummary = field(default_factory=RegisterSummary)
    baseline_rows: List[CollatedHabitatRow] = field(default_factory=list)
    improvement_rows: List[CollatedHabitatRow] = field(default_factory=list)
    allocation_rows: List[CollatedHabitatRow] = field(default_factory=list)
    imd_comparison: ImdComparison = field(default_factory=ImdComparison)
    distance_distribution: List[Dict[str, float]] = field(default_factory=list)
    allocation_hu_distribution: Dict[str, Dict[str, int]] = field(default_factory=dict)
    allocation_imd_distribution: Dict[str, int] = field(default_factory=dict)
    spatial_risk_distribution: Dict[str, int] = field(default_factory=dict)

    def conversions_for(self, reference_number: str) -> Optional[ConversionResult]:
        for result in self.sites:
            if result.site.reference_number == reference_number:
                return result.conversions
        return None


# ================= Allocated sizes =================

def derive_allocated_sizes(improvements: ParcelsByModule, allocations) -> Dict[str, Tuple[HabitatParcel, ...]]:
    """
    Fill allocated_size on improvement parcels that lack it.

    Each allocated habitat is assigned, in register order, to the site's
    improvement parcels of the same module and type (and condition, when the
    allocation gives one), clamped to each parcel's size.
    """
    remaining = {}
    assigned = {}
    for module in MODULES:
        for i, parcel in enumerate(improvements.get(module, ())):
            if parcel.allocated_size is None:
                remaining[(module, i)] = parcel.size
                assigned[(module, i)] = 0.0

    if assigned:
        for allocation in allocations:
            for consumed in iter_parcels(allocation.habitats):
                need = consumed.size
                for i, parcel in enumerate(improvements.get(consumed.module, ())):
                    if need <= 0:
                        break
                    slot = (consumed.module, i)
                    if slot not in remaining or parcel.type != consumed.type:
                        continue
                    if consumed.condition and parcel.condition != consumed.condition:
                        continue
                    take = min(need, remaining[slot])
                    remaining[slot] -= take
                    assigned[slot] += take
                    need -= take

    return {
        module: tuple(
            dataclasses.replace(parcel, allocated_size=assigned[(module, i)])
            if (module, i) in assigned else parcel
            for i, parcel in enumerate(parcels)
        )
        for module, parcels in improvements.items()
    }


def _module_sizes(parcels_by_module: Optional[ParcelsByModule]) -> Dict[str, float]:
    sizes = {module: 0.0 for module in MODULES}
    for parcel in iter_parcels(parcels_by_module):
        sizes[parcel.module] += parcel.size
    return sizes


def _parcel_count(parcels_by_module: Optional[ParcelsByModule]) -> int:
    return sum(1 for _ in iter_parcels(parcels_by_module))


# ================= Processor =================

class SiteIndexProcessor:
    """Orchestrates scoring, collation, conversion inference and statistics"""

    def __init__(self, tables: ReferenceTables, settings: Optional[Settings] = None):
        self.tables = tables
        self.settings = settings or get_settings()

    # ---------- per site ----------

    def score_site(self, site: Site) -> Site:
        """Copy of the site with every parcel scored and allocated sizes filled in."""
        habitats = score_parcels(site.habitats, self.tables)
        improvements = score_parcels(site.improvements, self.tables)
        if improvements is not None:
            improvements = derive_allocated_sizes(improvements, site.allocations)
        allocations = tuple(
            dataclasses.replace(a, habitats=score_parcels(a.habitats, self.tables) or {})
            for a in site.allocations
        )
        return dataclasses.replace(site, habitats=habitats, improvements=improvements,
                                   allocations=allocations)

    def process_site(self, site: Site, index: int = 0) -> SiteResult:
        """Score one site and compute its summary and conversions."""
        scored = self.score_site(site)
        summary = SiteSummary(
            reference_number=scored.reference_number,
            responsible_bodies=list(scored.responsible_bodies),
            site_size=scored.site_size,
            allocations_count=len(scored.allocations),
            lpa_name=scored.lpa_name or "N/A",
            nca_name=scored.nca_name or "N/A",
            imd_decile=scored.imd_decile,
            median_allocation_distance=median_distance(scored.allocations),
        )
        result = SiteResult(index=index, site=scored, summary=summary)

        habitats = self._require(result, scored.require_habitats)
        improvements = self._require(result, scored.require_improvements)
        self._require(result, scored.require_imd_decile)

        if habitats is not None:
            summary.baseline_hus = total_hus(habitats)
            summary.baseline_area_size = _module_sizes(habitats)[MODULE_AREA]
        if improvements is not None:
            summary.improvement_hus = total_hus(improvements)
        if habitats is not None and improvements is not None:
            summary.hu_gain = summary.improvement_hus - summary.baseline_hus
            result.conversions = infer_site_conversions(
                collate_habitats(site_parcels([scored])),
                collate_habitats(site_parcels([scored], improvements=True), is_improvement=True),
                self.tables,
                self.settings.float_tolerance,
            )
        return result

    def _require(self, result: SiteResult, accessor):
        try:
            return accessor()
        except MalformedSiteError as e:
            logger.warning(f"Excluding site {e.reference} from metrics needing '{e.field}'")
            result.errors.append(e.field)
            return None

    # ---------- register ----------

    def process(self, sites: Sequence[Site]) -> RegisterResult:
        """Process every site of a register snapshot."""
        result = RegisterResult()
        result.sites = [self.process_site(site, i) for i, site in enumerate(sites)]
        scored_sites = [r.site for r in result.sites]
        summary = result.summary

        matched: Dict[Tuple[str, str], float] = {}
        baseline_sizes = {module: 0.0 for module in MODULES}
        improvement_sizes = {module: 0.0 for module in MODULES}
        allocations = []

        for site_result in result.sites:
            site = site_result.site
            site_summary = site_result.summary

            summary.total_sites += 1
            summary.total_area += site.site_size
            summary.num_allocations += len(site.allocations)
            allocations.extend(site.allocations)
            for allocation in site.allocations:
                summary.total_allocation_hus += allocation.total_units
                summary.allocated_parcels += allocation.parcel_count

            if site_summary.baseline_hus is not None:
                summary.total_baseline_hus += site_summary.baseline_hus
                summary.baseline_parcels += _parcel_count(site.habitats)
                for module, size in _module_sizes(site.habitats).items():
                    baseline_sizes[module] += size
            if site_summary.improvement_hus is not None:
                summary.total_created_hus += site_summary.improvement_hus
                summary.improvement_parcels += _parcel_count(site.improvements)
                for module, size in _module_sizes(site.improvements).items():
                    improvement_sizes[module] += size
            if site_summary.hu_gain is not None:
                summary.total_hu_gain += site_summary.hu_gain

            if site_result.conversions is not None:
                for key, hus in matched_baseline_hus(site_result.conversions).items():
                    matched[key] = matched.get(key, 0.0) + hus

            if site_result.errors:
                summary.skipped_sites.append(site.reference_number)

        summary.baseline_sizes = baseline_sizes
        summary.improvement_sizes = improvement_sizes
        summary.imd_decile_distribution = decile_distribution(s.imd_decile for s in scored_sites)

        result.baseline_rows = collate_habitats(site_parcels(scored_sites))
        result.improvement_rows = collate_habitats(site_parcels(scored_sites, improvements=True),
                                                   is_improvement=True, matched_baseline_hus=matched)
        result.allocation_rows = collate_habitats(allocation_parcels(scored_sites))

        result.imd_comparison = compare_imd(imd_pairs(scored_sites), self.settings.histogram_bin_width)
        result.distance_distribution = cumulative_distance_distribution(a.distance for a in allocations)
        result.allocation_hu_distribution = hu_distribution(allocations)
        result.allocation_imd_distribution = decile_distribution(a.imd_decile for a in allocations)
        result.spatial_risk_distribution = spatial_risk_distribution(allocations,
                                                                     self.tables.spatial_risk_bands)

        logger.info(f"Processed {summary.total_sites} sites "
                    f"({len(summary.skipped_sites)} with missing data), "
                    f"{summary.num_allocations} allocations")
        return result
