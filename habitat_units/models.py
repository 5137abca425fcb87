"""
habitat_units/models.py

Data model for the HU engine: habitat parcels (one variant per module),
allocations, sites, and the collated rows / flow edges handed to the
rendering collaborators.
"""

import math
from dataclasses import dataclass, field
from typing import ClassVar, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from .errors import MalformedSiteError
from .spatial_risk import SpatialRisk


# ================= Constants =================
MODULE_AREA = "Area"
MODULE_HEDGEROW = "Hedgerow"
MODULE_WATERCOURSE = "Watercourse"
MODULE_TREE = "Tree"

MODULES = (MODULE_AREA, MODULE_HEDGEROW, MODULE_WATERCOURSE, MODULE_TREE)

# Keys used by the upstream register for each module block
REGISTER_MODULE_KEYS = {
    "areas": MODULE_AREA,
    "hedgerows": MODULE_HEDGEROW,
    "watercourses": MODULE_WATERCOURSE,
    "trees": MODULE_TREE,
}

INTERVENTION_CREATION = "Creation"
INTERVENTION_ENHANCEMENT = "Enhancement"
INTERVENTION_RETAINED = "Retained"

RETAINED = "Retained"

# Area of one small-tree equivalent (ha)
SMALL_TREE_AREA_HA = 0.0041

TimeToTarget = Union[int, float, str]


# ================= Parcels =================

@dataclass(frozen=True)
class HabitatParcel:
    """One baseline or improvement habitat record of a single type and condition"""
    type: str
    size: float
    condition: Optional[str] = None
    is_improvement: bool = False
    intervention_type: Optional[str] = None  # improvements only: "Creation" / "Enhancement"
    time_to_target: Optional[TimeToTarget] = None  # improvements only, years ("30+" allowed)
    allocated_size: Optional[float] = None  # improvements only, size consumed by allocations
    broad_habitat: str = ""
    distinctiveness: Optional[str] = None  # filled in when scored
    hus: float = 0.0  # filled in when scored

    module: ClassVar[str] = ""
    size_unit: ClassVar[str] = "ha"

    def __post_init__(self):
        if self.size is None or math.isnan(self.size) or self.size < 0:
            raise ValueError(f"{self.module} parcel '{self.type}' has invalid size {self.size!r}")
        if self.hus < 0:
            raise ValueError(f"{self.module} parcel '{self.type}' has negative HUs")


@dataclass(frozen=True)
class AreaParcel(HabitatParcel):
    module: ClassVar[str] = MODULE_AREA
    size_unit: ClassVar[str] = "ha"


@dataclass(frozen=True)
class HedgerowParcel(HabitatParcel):
    module: ClassVar[str] = MODULE_HEDGEROW
    size_unit: ClassVar[str] = "km"


@dataclass(frozen=True)
class WatercourseParcel(HabitatParcel):
    module: ClassVar[str] = MODULE_WATERCOURSE
    size_unit: ClassVar[str] = "km"


@dataclass(frozen=True)
class TreeParcel(HabitatParcel):
    module: ClassVar[str] = MODULE_TREE
    size_unit: ClassVar[str] = "ha"

    @property
    def tree_count(self) -> int:
        """Number of small-tree equivalents covering this parcel."""
        if self.size <= 0:
            return 0
        return max(1, math.floor(self.size / SMALL_TREE_AREA_HA))


PARCEL_TYPES = {
    MODULE_AREA: AreaParcel,
    MODULE_HEDGEROW: HedgerowParcel,
    MODULE_WATERCOURSE: WatercourseParcel,
    MODULE_TREE: TreeParcel,
}


def parcel_class_for(module: str):
    """Return the parcel variant for a module name."""
    try:
        return PARCEL_TYPES[module]
    except KeyError:
        raise ValueError(f"Unknown habitat module: {module!r}") from None


ParcelsByModule = Mapping[str, Tuple[HabitatParcel, ...]]


def iter_parcels(parcels_by_module: Optional[ParcelsByModule]) -> Iterator[HabitatParcel]:
    """Iterate parcels across modules in fixed module order."""
    if not parcels_by_module:
        return
    for module in MODULES:
        for parcel in parcels_by_module.get(module, ()):
            yield parcel


# ================= Sites and allocations =================

@dataclass(frozen=True)
class Allocation:
    """A development's claim on a site's improvement units"""
    planning_reference: str
    local_planning_authority: str = ""
    distance: Optional[float] = None  # km from site
    spatial_risk: Optional[SpatialRisk] = None
    habitats: ParcelsByModule = field(default_factory=dict)
    area_units: float = 0.0
    hedgerow_units: float = 0.0
    watercourse_units: float = 0.0
    imd_decile: Optional[int] = None
    imd_score: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def total_units(self) -> float:
        return self.area_units + self.hedgerow_units + self.watercourse_units

    @property
    def parcel_count(self) -> int:
        return sum(1 for _ in iter_parcels(self.habitats))


@dataclass(frozen=True)
class Site:
    """A biodiversity gain site: the aggregate root of the register"""
    reference_number: str
    site_size: float = 0.0
    habitats: Optional[ParcelsByModule] = None  # baseline
    improvements: Optional[ParcelsByModule] = None
    allocations: Tuple[Allocation, ...] = ()
    responsible_bodies: Tuple[str, ...] = ()
    lpa_name: Optional[str] = None
    nca_name: Optional[str] = None
    lnrs_name: Optional[str] = None
    lsoa_name: Optional[str] = None
    imd_decile: Optional[int] = None
    imd_score: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def require_habitats(self) -> ParcelsByModule:
        if self.habitats is None:
            raise MalformedSiteError(self.reference_number, "habitats")
        return self.habitats

    def require_improvements(self) -> ParcelsByModule:
        if self.improvements is None:
            raise MalformedSiteError(self.reference_number, "improvements")
        return self.improvements

    def require_imd_decile(self) -> int:
        if self.imd_decile is None:
            raise MalformedSiteError(self.reference_number, "lsoa")
        return self.imd_decile


# ================= Collation output =================

@dataclass
class SubRow:
    """Breakdown of a collated row by condition (and intervention for improvements)"""
    condition: str
    parcels: int = 0
    size: float = 0.0
    hus: float = 0.0
    intervention_type: Optional[str] = None


@dataclass
class SiteShare:
    """Back-reference from a collated row to one site's contribution"""
    site_index: int
    subtotal: float
    allocated: float = 0.0


@dataclass
class CollatedHabitatRow:
    """Summary of all parcels sharing a habitat type and distinctiveness"""
    module: str
    type: str
    distinctiveness: Optional[str]
    broad_habitat: str = ""
    parcels: int = 0
    size: float = 0.0
    hus: float = 0.0
    allocated: Optional[float] = None  # improvements only, fraction 0-1
    hu_gain: Optional[float] = None  # improvements only
    sites: List[SiteShare] = field(default_factory=list)
    sub_rows: List[SubRow] = field(default_factory=list)


# ================= Conversion inference output =================

@dataclass(frozen=True)
class ConversionFlowEdge:
    """Inferred transfer of habitat from a baseline node to an improvement node"""
    module: str
    source_type: str
    source_condition: str
    target_type: str
    target_condition: str
    quantity: float
    intervention: str = INTERVENTION_CREATION

    @property
    def is_retained(self) -> bool:
        return self.target_type == RETAINED


# ================= Summaries =================

@dataclass
class SiteSummary:
    """Per-site numbers for the site list view"""
    reference_number: str
    responsible_bodies: List[str] = field(default_factory=list)
    site_size: float = 0.0
    allocations_count: int = 0
    lpa_name: str = "N/A"
    nca_name: str = "N/A"
    imd_decile: Optional[int] = None
    baseline_area_size: Optional[float] = None
    baseline_hus: Optional[float] = None
    improvement_hus: Optional[float] = None
    hu_gain: Optional[float] = None
    median_allocation_distance: Optional[float] = None


@dataclass
class RegisterSummary:
    """Register-wide totals for the summary display and the periodic snapshot"""
    total_sites: int = 0
    total_area: float = 0.0
    total_baseline_hus: float = 0.0
    total_created_hus: float = 0.0
    total_allocation_hus: float = 0.0
    total_hu_gain: float = 0.0
    num_allocations: int = 0
    baseline_sizes: Dict[str, float] = field(default_factory=dict)
    improvement_sizes: Dict[str, float] = field(default_factory=dict)
    baseline_parcels: int = 0
    improvement_parcels: int = 0
    allocated_parcels: int = 0
    imd_decile_distribution: Dict[str, int] = field(default_factory=dict)
    skipped_sites: List[str] = field(default_factory=list)
