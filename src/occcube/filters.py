"""
Module: filters.py
Project: GBIF occurrence cubes (occcube)

Description:
Record-level quality filters applied while loading a GBIF download:
  1. required fields must be present (id, coordinates, taxon),
  2. records flagged with a blacklisted GBIF issue are removed,
  3. records with a blacklisted occurrence status are removed,
  4. optional basisOfRecord whitelist and year range.
Removals are counted per reason, and the kept records update the
summary counters (species, taxa, countries, basis of record, years).
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import pandas as pd

REQUIRED_FIELDS = ["gbifID", "decimalLatitude", "decimalLongitude", "taxonKey", "scientificName"]

ISSUE_BLACKLIST = [
    "ZERO_COORDINATE",
    "COORDINATE_OUT_OF_RANGE",
    "COORDINATE_INVALID",
    "COUNTRY_COORDINATE_MISMATCH",
]

OCCURRENCE_STATUS_BLACKLIST = ["ABSENT", "EXCLUDED"]

NUMERIC_FIELDS = [
    "gbifID", "decimalLatitude", "decimalLongitude", "coordinateUncertaintyInMeters",
    "taxonKey", "speciesKey", "year",
]

# GBIF separates multiple issues with ';'
ISSUE_SEPARATOR = ";"


@dataclass
class FilterRules:
    required_fields: List[str] = field(default_factory=lambda: list(REQUIRED_FIELDS))
    issue_blacklist: List[str] = field(default_factory=lambda: list(ISSUE_BLACKLIST))
    status_blacklist: List[str] = field(default_factory=lambda: list(OCCURRENCE_STATUS_BLACKLIST))
    allowed_basis: Optional[List[str]] = None
    year_min: Optional[int] = None
    year_max: Optional[int] = None


@dataclass
class FilterStats:
    """Counters collected while filtering, used for the summary report."""
    total_records: int = 0
    filtered_records: int = 0
    removed: Counter = field(default_factory=Counter)
    species_counter: Counter = field(default_factory=Counter)
    taxon_counter: Counter = field(default_factory=Counter)
    country_counter: Counter = field(default_factory=Counter)
    basis_counter: Counter = field(default_factory=Counter)
    year_counter: Counter = field(default_factory=Counter)

    @property
    def retention_ratio(self) -> float:
        return (self.filtered_records / self.total_records * 100) if self.total_records > 0 else 0.0

    def update(self, kept: pd.DataFrame):
        self.filtered_records += len(kept)
        if kept.empty:
            return
        self.species_counter.update(kept["scientificName"].dropna())
        self.taxon_counter.update(int(k) for k in kept["taxonKey"].dropna())
        if "countryCode" in kept.columns:
            self.country_counter.update(kept["countryCode"].dropna())
        if "basisOfRecord" in kept.columns:
            self.basis_counter.update(kept["basisOfRecord"].dropna())
        if "year" in kept.columns:
            self.year_counter.update(int(y) for y in kept["year"].dropna())


def has_blacklisted_issue(issues: pd.Series, blacklist: List[str]) -> pd.Series:
    """True for records whose ';'-separated issue list contains a blacklisted issue."""
    if not blacklist:
        return pd.Series(False, index=issues.index)
    blacklisted = set(blacklist)
    return issues.fillna("").astype(str).map(
        lambda value: any(i.strip() in blacklisted for i in value.split(ISSUE_SEPARATOR) if i)
    ).astype(bool)


def apply_filters(
    chunk: pd.DataFrame,
    rules: FilterRules,
    stats: Optional[FilterStats] = None,
) -> Tuple[pd.DataFrame, FilterStats]:
    """Return the records of `chunk` that pass all rules, and the updated stats."""
    stats = stats if stats is not None else FilterStats()
    stats.total_records += len(chunk)

    # 1. Drop rows missing critical fields (these must always exist)
    absent = [c for c in rules.required_fields if c not in chunk.columns]
    if absent:
        raise KeyError(f"Required columns missing from occurrence data: {', '.join(absent)}")
    complete = chunk.dropna(subset=rules.required_fields)
    stats.removed["missing required field"] += len(chunk) - len(complete)
    chunk = complete.copy()

    # 2. Convert fields to numeric where needed
    for col in ("decimalLatitude", "decimalLongitude", "coordinateUncertaintyInMeters"):
        if col in chunk.columns:
            chunk[col] = pd.to_numeric(chunk[col], errors="coerce")
    for col in ("gbifID", "taxonKey", "speciesKey", "year"):
        if col in chunk.columns:
            chunk[col] = pd.to_numeric(chunk[col], errors="coerce").astype("Int64")

    # Values that are not numbers count as missing
    numeric_required = [c for c in rules.required_fields if c in NUMERIC_FIELDS]
    unparsable = chunk[numeric_required].isna().any(axis=1)
    stats.removed["missing required field"] += int(unparsable.sum())
    chunk = chunk[~unparsable]

    # 3. Build boolean masks per rule (counted in order of application)
    mask = pd.Series(True, index=chunk.index)

    if "issue" in chunk.columns:
        flagged = has_blacklisted_issue(chunk["issue"], rules.issue_blacklist)
        stats.removed["blacklisted issue"] += int((mask & flagged).sum())
        mask &= ~flagged

    if "occurrenceStatus" in chunk.columns and rules.status_blacklist:
        status = chunk["occurrenceStatus"].fillna("").astype(str).str.upper()
        flagged = status.isin(rules.status_blacklist)
        stats.removed["blacklisted occurrence status"] += int((mask & flagged).sum())
        mask &= ~flagged

    if rules.allowed_basis is not None and "basisOfRecord" in chunk.columns:
        flagged = ~chunk["basisOfRecord"].isin(rules.allowed_basis)
        stats.removed["basis of record"] += int((mask & flagged).sum())
        mask &= ~flagged

    if (rules.year_min is not None or rules.year_max is not None) and "year" in chunk.columns:
        # strict removal of records without a valid year when year filtering is active
        flagged = chunk["year"].isna()
        if rules.year_min is not None:
            flagged |= chunk["year"].fillna(rules.year_min) < rules.year_min
        if rules.year_max is not None:
            flagged |= chunk["year"].fillna(rules.year_max) > rules.year_max
        flagged = flagged.astype(bool)
        stats.removed["year range"] += int((mask & flagged).sum())
        mask &= ~flagged

    kept = chunk[mask]
    stats.update(kept)
    return kept, stats
