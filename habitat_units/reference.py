"""
Reference tables for the HU formula.

Static lookups loaded once from CSV at start-up and read-only afterwards:
- habitats.csv          habitat type -> broad habitat, module, distinctiveness band,
                        creation / enhancement difficulty band, artificial flag
- distinctiveness.csv   distinctiveness band -> score
- conditions.csv        condition label -> score and ordinal rank (N/A labels unranked)
- difficulty.csv        difficulty band -> factor
- temporal_risk.csv     years to target -> factor ("30+" caps the table)
- time_to_target.csv    (habitat type or broad habitat, condition) -> years
- spatial_risk.csv      distance band -> factor

Lookups that miss raise ReferenceDataError; callers that must not fail
(the HU formula) catch it and score 0.
"""

import logging
import math
import os
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

import pandas as pd

from .config import get_settings
from .errors import ReferenceDataError
from .spatial_risk import SpatialRiskBand, validate_bands

logger = logging.getLogger(__name__)


LABEL_SEPARATOR = " - "
MAX_TEMPORAL_YEARS = 30
CAPPED_YEARS_KEY = f"{MAX_TEMPORAL_YEARS}+"

@dataclass(frozen=True)
class HabitatInfo:
    """Catalog entry for one habitat type"""
    name: str
    broad_habitat: str
    module: str
    distinctiveness: str
    creation_difficulty: str
    enhancement_difficulty: str
    artificial: bool = False


def split_habitat_label(label: str) -> Tuple[str, str]:
    """
    Split a register label of the form "<Broad habitat> - <Type>".
    Returns ("", label) when there is no separator.
    """
    text = str(label).strip()
    if LABEL_SEPARATOR in text:
        broad, name = text.split(LABEL_SEPARATOR, 1)
        return broad.strip(), name.strip()
    return "", text


def normalise_years(years) -> str:
    """Normalise a time-to-target value to a temporal risk table key."""
    if years is None:
        raise ValueError("Time to target is missing")
    if isinstance(years, str):
        text = years.strip()
        if text.endswith("+"):
            return CAPPED_YEARS_KEY
        years = float(text)
    if math.isnan(years):
        raise ValueError("Time to target is NaN")
    whole = max(0, int(math.ceil(years - 1e-9)))
    if whole > MAX_TEMPORAL_YEARS:
        return CAPPED_YEARS_KEY
    return str(whole)


@dataclass(frozen=True)
class ReferenceTables:
    """Immutable lookup tables shared (read-only) by every computation"""
    habitats: Mapping[str, HabitatInfo]
    distinctiveness_scores: Mapping[str, float]
    condition_scores: Mapping[str, float]
    condition_ranks: Mapping[str, int]
    difficulty_factors: Mapping[str, float]
    temporal_risk_factors: Mapping[str, float]
    times_to_target: Mapping[Tuple[str, str], str]
    spatial_risk_bands: Tuple[SpatialRiskBand, ...]

    # ---------- habitat catalog ----------

    def habitat(self, label: str) -> HabitatInfo:
        """Catalog entry for a habitat label (full name, or the part after "<broad> - ")."""
        text = str(label).strip()
        info = self.habitats.get(text)
        if info is None:
            _, name = split_habitat_label(text)
            info = self.habitats.get(name)
        if info is None:
            raise ReferenceDataError("habitats", text)
        return info

    def has_habitat(self, label: str) -> bool:
        try:
            self.habitat(label)
        except ReferenceDataError:
            return False
        return True

    def resolve_type(self, label: str) -> Tuple[str, str]:
        """
        Canonical (type, broad habitat) for a register label.
        Unknown labels are split on the separator and kept as-is otherwise.
        """
        try:
            info = self.habitat(label)
            return info.name, info.broad_habitat
        except ReferenceDataError:
            broad, name = split_habitat_label(label)
            return name, broad

    def broad_habitat(self, label: str) -> str:
        return self.resolve_type(label)[1]

    def is_artificial(self, label: str) -> bool:
        try:
            return self.habitat(label).artificial
        except ReferenceDataError:
            return False

    # ---------- multipliers ----------

    def distinctiveness_band(self, label: str) -> str:
        return self.habitat(label).distinctiveness

    def distinctiveness_score(self, label: str) -> float:
        band = self.distinctiveness_band(label)
        try:
            return self.distinctiveness_scores[band]
        except KeyError:
            raise ReferenceDataError("distinctiveness", band) from None

    def condition_score(self, condition: str) -> float:
        key = str(condition).strip()
        try:
            return self.condition_scores[key]
        except KeyError:
            raise ReferenceDataError("conditions", key) from None

    def condition_rank(self, condition: Optional[str]) -> Optional[int]:
        """Ordinal rank of a condition (higher is better); None for N/A or unknown labels."""
        if condition is None:
            return None
        return self.condition_ranks.get(str(condition).strip())

    def is_condition_upgrade(self, from_condition: Optional[str], to_condition: Optional[str]) -> bool:
        before = self.condition_rank(from_condition)
        after = self.condition_rank(to_condition)
        return before is not None and after is not None and after > before

    def time_to_target(self, label: str, condition: str) -> str:
        """Years to reach target condition, by habitat type then by broad habitat."""
        name, broad = self.resolve_type(label)
        key_condition = str(condition).strip()
        for key in ((name, key_condition), (broad, key_condition)):
            if key in self.times_to_target:
                return self.times_to_target[key]
        raise ReferenceDataError("time_to_target", (name, key_condition))

    def temporal_risk(self, years) -> float:
        try:
            key = normalise_years(years)
        except ValueError:
            raise ReferenceDataError("temporal_risk", years) from None
        try:
            return self.temporal_risk_factors[key]
        except KeyError:
            raise ReferenceDataError("temporal_risk", key) from None

    def difficulty_factor(self, label: str, intervention_type: Optional[str] = None) -> float:
        info = self.habitat(label)
        if intervention_type is not None and str(intervention_type).strip().lower().startswith("enhance"):
            band = info.enhancement_difficulty
        else:
            band = info.creation_difficulty
        try:
            return self.difficulty_factors[band]
        except KeyError:
            raise ReferenceDataError("difficulty", band) from None


# ================= Loading =================

def _read_csv(data_dir: str, filename: str) -> pd.DataFrame:
    path = os.path.join(data_dir, filename)
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    except Exception as e:
        logger.error(f"Error reading reference table {path}: {e}")
        raise RuntimeError(f"Failed to load reference table {path}: {e}")
    df.columns = [c.strip() for c in df.columns]
    return df.apply(lambda col: col.str.strip())


def _to_float(value: str) -> Optional[float]:
    number = pd.to_numeric(value, errors="coerce")
    return None if pd.isna(number) else float(number)


def _load_habitats(data_dir: str) -> Dict[str, HabitatInfo]:
    df = _read_csv(data_dir, "habitats.csv")
    habitats = {}
    for _, row in df.iterrows():
        name = row["habitat_name"]
        if not name:
            continue
        habitats[name] = HabitatInfo(
            name=name,
            broad_habitat=row["broad_habitat"],
            module=row["module"],
            distinctiveness=row["distinctiveness"],
            creation_difficulty=row["creation_difficulty"],
            enhancement_difficulty=row["enhancement_difficulty"],
            artificial=row["artificial"].lower() in ("true", "yes", "1"),
        )
    return habitats


def _load_scores(data_dir: str, filename: str, key_col: str, value_col: str) -> Dict[str, float]:
    df = _read_csv(data_dir, filename)
    scores = {}
    for _, row in df.iterrows():
        value = _to_float(row[value_col])
        if row[key_col] and value is not None:
            scores[row[key_col]] = value
    return scores


def _load_condition_ranks(data_dir: str) -> Dict[str, int]:
    df = _read_csv(data_dir, "conditions.csv")
    ranks = {}
    for _, row in df.iterrows():
        rank = _to_float(row["rank"])
        if rank is not None:
            ranks[row["condition"]] = int(rank)
    return ranks


def _load_times_to_target(data_dir: str) -> Dict[Tuple[str, str], str]:
    df = _read_csv(data_dir, "time_to_target.csv")
    times = {}
    for _, row in df.iterrows():
        times[(row["habitat"], row["condition"])] = normalise_years(row["years"])
    return times


def _load_spatial_risk_bands(data_dir: str) -> Tuple[SpatialRiskBand, ...]:
    df = _read_csv(data_dir, "spatial_risk.csv")
    bands = [
        SpatialRiskBand(
            category=row["category"],
            max_distance_km=_to_float(row["max_distance_km"]),
            factor=float(row["factor"]),
        )
        for _, row in df.iterrows()
    ]
    return validate_bands(bands)


def load_reference_tables(data_dir: Optional[str] = None) -> ReferenceTables:
    """Load every reference table from a directory of CSV files."""
    if data_dir is None:
        data_dir = get_settings().reference_data_dir

    tables = ReferenceTables(
        habitats=MappingProxyType(_load_habitats(data_dir)),
        distinctiveness_scores=MappingProxyType(
            _load_scores(data_dir, "distinctiveness.csv", "distinctiveness", "score")),
        condition_scores=MappingProxyType(
            _load_scores(data_dir, "conditions.csv", "condition", "score")),
        condition_ranks=MappingProxyType(_load_condition_ranks(data_dir)),
        difficulty_factors=MappingProxyType(
            _load_scores(data_dir, "difficulty.csv", "difficulty", "factor")),
        temporal_risk_factors=MappingProxyType(
            _load_scores(data_dir, "temporal_risk.csv", "years", "factor")),
        times_to_target=MappingProxyType(_load_times_to_target(data_dir)),
        spatial_risk_bands=_load_spatial_risk_bands(data_dir),
    )
    logger.info(f"Loaded {len(tables.habitats)} habitat types from {data_dir}")
    return tables


@lru_cache(maxsize=1)
def get_reference_tables() -> ReferenceTables:
    """Reference tables from the configured directory (loaded once)."""
    return load_reference_tables()
