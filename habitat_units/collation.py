"""
Habitat Collator

Groups scored parcels from every site into summary rows keyed by
(module, type, distinctiveness), with:
- sub-rows by condition (and intervention type for improvements)
- sparse site back-references (site index + per-site subtotal) for drill-down
- allocated fraction and HU gain for improvement rows

Single pass: running totals accumulate per group key, then each group is
finalised into a CollatedHabitatRow.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .formula import MISSING_CONDITION
from .models import (
    MODULES,
    CollatedHabitatRow,
    HabitatParcel,
    Site,
    SiteShare,
    SubRow,
    iter_parcels,
)


RowKey = Tuple[str, str, Optional[str]]
SubRowKey = Tuple[str, Optional[str]]


@dataclass
class _GroupTotals:
    """Running totals for one (module, type, distinctiveness) group"""
    broad_habitat: str = ""
    parcels: int = 0
    size: float = 0.0
    hus: float = 0.0
    allocated_size: float = 0.0
    sub_rows: Dict[SubRowKey, SubRow] = field(default_factory=dict)
    site_sizes: Dict[int, float] = field(default_factory=dict)
    site_allocated: Dict[int, float] = field(default_factory=dict)


def _row_sort_key(key: RowKey):
    module, habitat_type, distinctiveness = key
    module_order = MODULES.index(module) if module in MODULES else len(MODULES)
    return module_order, habitat_type, distinctiveness or ""


def site_parcels(sites: Sequence[Site], improvements: bool = False) -> Iterator[Tuple[int, HabitatParcel]]:
    """(site index, parcel) pairs for baseline or improvement parcels of every site."""
    for index, site in enumerate(sites):
        block = site.improvements if improvements else site.habitats
        for parcel in iter_parcels(block):
            yield index, parcel


def allocation_parcels(sites: Sequence[Site]) -> Iterator[Tuple[int, HabitatParcel]]:
    """(site index, parcel) pairs for the habitats consumed by every allocation."""
    for index, site in enumerate(sites):
        for allocation in site.allocations:
            for parcel in iter_parcels(allocation.habitats):
                yield index, parcel


def collate_habitats(entries: Iterable[Tuple[int, HabitatParcel]],
                     is_improvement: bool = False,
                     matched_baseline_hus: Optional[Mapping[Tuple[str, str], float]] = None
                     ) -> List[CollatedHabitatRow]:
    """
    Collate (site index, scored parcel) pairs into summary rows.

    Args:
        entries: parcels with the index of the site they belong to
        is_improvement: fill the allocated fraction and HU gain columns
        matched_baseline_hus: baseline HUs matched to each improvement
            (module, type), subtracted from the row HUs for the HU gain

    Parcels of types missing from the reference tables are still counted
    (they carry 0 HUs from scoring).
    """
    groups: Dict[RowKey, _GroupTotals] = {}

    for site_index, parcel in entries:
        key = (parcel.module, parcel.type, parcel.distinctiveness)
        group = groups.get(key)
        if group is None:
            group = groups[key] = _GroupTotals(broad_habitat=parcel.broad_habitat)

        group.parcels += 1
        group.size += parcel.size
        group.hus += parcel.hus

        condition = parcel.condition or MISSING_CONDITION
        intervention = parcel.intervention_type if is_improvement else None
        sub_key = (condition, intervention)
        sub_row = group.sub_rows.get(sub_key)
        if sub_row is None:
            sub_row = group.sub_rows[sub_key] = SubRow(condition=condition, intervention_type=intervention)
        sub_row.parcels += 1
        sub_row.size += parcel.size
        sub_row.hus += parcel.hus

        group.site_sizes[site_index] = group.site_sizes.get(site_index, 0.0) + parcel.size

        if is_improvement:
            allocated = min(parcel.allocated_size or 0.0, parcel.size)
            group.allocated_size += allocated
            group.site_allocated[site_index] = group.site_allocated.get(site_index, 0.0) + allocated

    matched = matched_baseline_hus or {}
    rows = []
    for key in sorted(groups, key=_row_sort_key):
        module, habitat_type, distinctiveness = key
        group = groups[key]

        sites = [
            SiteShare(site_index=i, subtotal=subtotal, allocated=group.site_allocated.get(i, 0.0))
            for i, subtotal in group.site_sizes.items()
        ]
        sites.sort(key=lambda s: (-s.subtotal, s.site_index))

        sub_rows = sorted(group.sub_rows.values(),
                          key=lambda s: (-s.size, s.condition, s.intervention_type or ""))

        row = CollatedHabitatRow(
            module=module,
            type=habitat_type,
            distinctiveness=distinctiveness,
            broad_habitat=group.broad_habitat,
            parcels=group.parcels,
            size=group.size,
            hus=group.hus,
            sites=sites,
            sub_rows=sub_rows,
        )
        if is_improvement:
            row.allocated = group.allocated_size / group.size if group.size > 0 else 0.0
            row.hu_gain = group.hus - matched.get((module, habitat_type), 0.0)
        rows.append(row)

    return rows


def rows_by_module(rows: Iterable[CollatedHabitatRow]) -> Dict[str, List[CollatedHabitatRow]]:
    """Split collated rows into one list per module (every module present)."""
    grouped = {module: [] for module in MODULES}
    for row in rows:
        grouped.setdefault(row.module, []).append(row)
    return grouped


# ================= Tabular export =================

ROW_COLUMNS = ["module", "type", "broad_habitat", "distinctiveness", "parcels",
               "size", "hus", "allocated", "hu_gain", "sites"]

SUB_ROW_COLUMNS = ["module", "type", "distinctiveness", "condition", "intervention_type",
                   "parcels", "size", "hus"]


def rows_to_frame(rows: Iterable[CollatedHabitatRow]) -> pd.DataFrame:
    """One line per collated row; `sites` is the number of contributing sites."""
    records = [
        {
            "module": r.module,
            "type": r.type,
            "broad_habitat": r.broad_habitat,
            "distinctiveness": r.distinctiveness,
            "parcels": r.parcels,
            "size": r.size,
            "hus": r.hus,
            "allocated": r.allocated,
            "hu_gain": r.hu_gain,
            "sites": len(r.sites),
        }
        for r in rows
    ]
    return pd.DataFrame(records, columns=ROW_COLUMNS)


def sub_rows_to_frame(rows: Iterable[CollatedHabitatRow]) -> pd.DataFrame:
    """One line per sub-row, flattened under its parent row."""
    records = [
        {
            "module": r.module,
            "type": r.type,
            "distinctiveness": r.distinctiveness,
            "condition": s.condition,
            "intervention_type": s.intervention_type,
            "parcels": s.parcels,
            "size": s.size,
            "hus": s.hus,
        }
        for r in rows
        for s in r.sub_rows
    ]
    return pd.DataFrame(records, columns=SUB_ROW_COLUMNS)
