"""
Register adapter

Builds Site / Allocation / HabitatParcel models from upstream register
records (already fetched and parsed JSON dicts). Field names follow the
register:

    referenceNumber, siteSize, responsibleBodies, latitude, longitude,
    lpaArea.name, nationalCharacterArea.name, lnrs.name,
    lsoa {name, IMDDecile, IMDScore},
    habitats / improvements {areas, hedgerows, watercourses, trees},
    allocations [{planningReference, localPlanningAuthority, distance,
                  areaUnits, hedgerowUnits, watercourseUnits, habitats,
                  lsoa, latitude, longitude}]

A missing habitats or improvements block stays None on the Site so the
processor can tell "no data" apart from "no parcels".
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .models import (
    REGISTER_MODULE_KEYS,
    Allocation,
    HabitatParcel,
    Site,
    parcel_class_for,
)
from .reference import ReferenceTables
from .spatial_risk import classify_distance, haversine_km

logger = logging.getLogger(__name__)


def _to_number(value) -> Optional[float]:
    """Parse a register number; None for blanks, junk and NaN."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _to_int(value) -> Optional[int]:
    number = _to_number(value)
    return None if number is None else int(number)


def _text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _name_of(value) -> Optional[str]:
    """Name of a nested {name: ...} object (or a bare string)."""
    if isinstance(value, Mapping):
        value = value.get("name")
    text = _text(value)
    return text or None


def _responsible_bodies(value) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, (str, Mapping)):
        value = [value]
    names = (_name_of(v) for v in value)
    return tuple(n for n in names if n)


# ================= Parcels =================

def parse_parcel(record: Mapping[str, Any], module: str, tables: ReferenceTables,
                 is_improvement: bool = False) -> HabitatParcel:
    """
    Build one parcel of the given module. Raises ValueError when the record
    has no usable size.
    """
    habitat_type, broad_habitat = tables.resolve_type(record.get("type", ""))
    condition = _text(record.get("condition")) or None

    kwargs = {}
    if is_improvement:
        kwargs["intervention_type"] = _text(record.get("interventionType")) or None
        time_to_target = record.get("timeToTarget")
        if isinstance(time_to_target, str):
            time_to_target = time_to_target.strip() or None
        kwargs["time_to_target"] = time_to_target
        kwargs["allocated_size"] = _to_number(record.get("allocatedSize"))

    return parcel_class_for(module)(
        type=habitat_type,
        size=_to_number(record.get("size")),
        condition=condition,
        is_improvement=is_improvement,
        broad_habitat=broad_habitat,
        **kwargs,
    )


def parse_parcels(block: Optional[Mapping[str, Any]], tables: ReferenceTables,
                  is_improvement: bool = False,
                  owner: str = "") -> Optional[Dict[str, Tuple[HabitatParcel, ...]]]:
    """
    Parcels of a habitats/improvements block keyed by module name.
    Returns None when the block itself is absent; parcels without a usable
    size are dropped with a warning.
    """
    if block is None:
        return None
    if not isinstance(block, Mapping):
        logger.warning(f"Ignoring malformed parcel block on {owner or 'unknown site'}")
        return None

    parcels_by_module = {}
    for key, module in REGISTER_MODULE_KEYS.items():
        parcels = []
        for record in block.get(key) or ():
            if not isinstance(record, Mapping):
                logger.warning(f"Skipping malformed {module.lower()} parcel on {owner or 'unknown site'}: {record!r}")
                continue
            try:
                parcels.append(parse_parcel(record, module, tables, is_improvement))
            except ValueError as e:
                logger.warning(f"Skipping {module.lower()} parcel on {owner or 'unknown site'}: {e}")
        parcels_by_module[module] = tuple(parcels)
    return parcels_by_module


# ================= Allocations =================

def parse_allocation(record: Mapping[str, Any], tables: ReferenceTables,
                     site_latitude: Optional[float] = None,
                     site_longitude: Optional[float] = None,
                     owner: str = "") -> Allocation:
    """
    Build an allocation. The distance falls back to the great-circle
    distance from the site when the register gives coordinates only.
    """
    latitude = _to_number(record.get("latitude"))
    longitude = _to_number(record.get("longitude"))

    distance = _to_number(record.get("distance"))
    if distance is None:
        distance = haversine_km(site_latitude, site_longitude, latitude, longitude)

    spatial_risk = None
    if distance is not None and distance >= 0:
        spatial_risk = classify_distance(distance, tables.spatial_risk_bands)

    lsoa = record.get("lsoa")
    if not isinstance(lsoa, Mapping):
        lsoa = {}
    planning_reference = _text(record.get("planningReference"))

    return Allocation(
        planning_reference=planning_reference,
        local_planning_authority=_text(record.get("localPlanningAuthority")),
        distance=distance,
        spatial_risk=spatial_risk,
        habitats=parse_parcels(record.get("habitats"), tables, is_improvement=True,
                               owner=f"{owner} allocation {planning_reference}") or {},
        area_units=_to_number(record.get("areaUnits")) or 0.0,
        hedgerow_units=_to_number(record.get("hedgerowUnits")) or 0.0,
        watercourse_units=_to_number(record.get("watercourseUnits")) or 0.0,
        imd_decile=_to_int(lsoa.get("IMDDecile")),
        imd_score=_to_number(lsoa.get("IMDScore")),
        latitude=latitude,
        longitude=longitude,
    )


# ================= Sites =================

def parse_site(record: Mapping[str, Any], tables: ReferenceTables) -> Site:
    """Build a Site from one register record."""
    reference = _text(record.get("referenceNumber"))
    if not reference:
        raise ValueError("Site record has no referenceNumber")

    latitude = _to_number(record.get("latitude"))
    longitude = _to_number(record.get("longitude"))
    lsoa = record.get("lsoa")
    if not isinstance(lsoa, Mapping):
        lsoa = {}

    allocations = []
    for a in record.get("allocations") or ():
        if not isinstance(a, Mapping):
            logger.warning(f"Skipping malformed allocation on {reference}: {a!r}")
            continue
        allocations.append(parse_allocation(a, tables, latitude, longitude, owner=reference))

    return Site(
        reference_number=reference,
        site_size=_to_number(record.get("siteSize")) or 0.0,
        habitats=parse_parcels(record.get("habitats"), tables, owner=reference),
        improvements=parse_parcels(record.get("improvements"), tables, is_improvement=True,
                                   owner=reference),
        allocations=tuple(allocations),
        responsible_bodies=_responsible_bodies(record.get("responsibleBodies")),
        lpa_name=_name_of(record.get("lpaArea")),
        nca_name=_name_of(record.get("nationalCharacterArea")),
        lnrs_name=_name_of(record.get("lnrs")),
        lsoa_name=_name_of(lsoa),
        imd_decile=_to_int(lsoa.get("IMDDecile")),
        imd_score=_to_number(lsoa.get("IMDScore")),
        latitude=latitude,
        longitude=longitude,
    )


def parse_register(records: Iterable[Mapping[str, Any]], tables: ReferenceTables) -> List[Site]:
    """Build every site of a register snapshot; records without a reference are skipped."""
    sites = []
    for i, record in enumerate(records):
        if not isinstance(record, Mapping):
            logger.warning(f"Skipping register record {i}: not an object")
            continue
        try:
            sites.append(parse_site(record, tables))
        except ValueError as e:
            logger.warning(f"Skipping register record {i}: {e}")
    logger.info(f"Parsed {len(sites)} sites from register snapshot")
    return sites
