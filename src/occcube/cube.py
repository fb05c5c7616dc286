"""
Module: cube.py
Project: GBIF occurrence cubes (occcube)

Description:
Aggregates grid-assigned occurrences to a species cube: one row per
(year, eeaCellCode, speciesKey) with the number of occurrences and the
minimum coordinate uncertainty in the group.

Input:
- OccurrenceStore after grid assignment (read only)

Output:
- DataFrame with columns year, eeaCellCode, speciesKey, n,
  minCoordinateUncertaintyInMeters

Notes:
Occurrences without a species key (absent, or 0 for taxa above species
rank) are not part of the cube. They are counted separately, as are
records without a year or a cell code.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, NamedTuple, Tuple

import pandas as pd

from occcube.config import DEFAULT_CHUNK_SIZE
from occcube.errors import AggregationKeyError
from occcube.store import (
    CELL_COL,
    ID_COL,
    SPECIES_KEY_COL,
    UNCERTAINTY_COL,
    YEAR_COL,
    OccurrenceStore,
)

logger = logging.getLogger(__name__)

NO_SPECIES_KEY = 0

COUNT_COL = "n"
MIN_UNCERTAINTY_COL = "minCoordinateUncertaintyInMeters"
CUBE_COLUMNS = [YEAR_COL, CELL_COL, SPECIES_KEY_COL, COUNT_COL, MIN_UNCERTAINTY_COL]

GROUP_COLUMNS = [YEAR_COL, CELL_COL, SPECIES_KEY_COL]


def _is_missing(value) -> bool:
    return value is None or value is pd.NA or (isinstance(value, float) and value != value)


class CubeKey(NamedTuple):
    """Grouping key of one cube row."""
    year: int
    eea_cell_code: str
    species_key: int

    @classmethod
    def from_values(cls, year, eea_cell_code, species_key) -> "CubeKey":
        """Build a key; raises AggregationKeyError if a field cannot be used."""
        if _is_missing(species_key):
            raise AggregationKeyError(SPECIES_KEY_COL, "absent")
        if int(species_key) == NO_SPECIES_KEY:
            raise AggregationKeyError(SPECIES_KEY_COL, "zero")
        if _is_missing(year):
            raise AggregationKeyError(YEAR_COL, "absent")
        if _is_missing(eea_cell_code) or eea_cell_code == "":
            raise AggregationKeyError(CELL_COL, "absent")
        return cls(int(year), str(eea_cell_code), int(species_key))


@dataclass
class CubeCell:
    """Running aggregate of one cube row."""
    n: int = 0
    min_uncertainty: float = float("inf")

    def add(self, n: int, min_uncertainty: float):
        self.n += int(n)
        if min_uncertainty is not None and not _is_missing(min_uncertainty):
            self.min_uncertainty = min(self.min_uncertainty, float(min_uncertainty))


@dataclass
class AggregationSummary:
    """Record counts of a cube aggregation."""
    records_seen: int = 0
    records_in_cube: int = 0
    excluded: Counter = field(default_factory=Counter)

    @property
    def records_excluded(self) -> int:
        return sum(self.excluded.values())

    @property
    def species_key_absent(self) -> int:
        return self.excluded[f"{SPECIES_KEY_COL}:absent"]

    @property
    def species_key_zero(self) -> int:
        return self.excluded[f"{SPECIES_KEY_COL}:zero"]

    def to_dict(self):
        return {
            "records_seen": self.records_seen,
            "records_in_cube": self.records_in_cube,
            "records_excluded": self.records_excluded,
            "excluded": dict(self.excluded),
        }


class SpeciesCubeAggregator:
    """Folds chunks of enriched records into cube cells."""

    def __init__(self):
        self.cells: Dict[CubeKey, CubeCell] = {}
        self.summary = AggregationSummary()

    def add_chunk(self, chunk: pd.DataFrame):
        """Pre-group a chunk with pandas and fold the partial groups in."""
        if chunk.empty:
            return
        self.summary.records_seen += len(chunk)

        partial = (
            chunk.groupby(GROUP_COLUMNS, dropna=False)[UNCERTAINTY_COL]
            .agg(["size", "min"])
            .reset_index()
        )
        for year, cell_code, species_key, n, min_unc in partial.itertuples(index=False, name=None):
            try:
                key = CubeKey.from_values(year, cell_code, species_key)
            except AggregationKeyError as e:
                self.summary.excluded[e.label] += int(n)
                continue
            self.cells.setdefault(key, CubeCell()).add(n, min_unc)
            self.summary.records_in_cube += int(n)

    def to_frame(self) -> pd.DataFrame:
        rows = [
            (
                key.year,
                key.eea_cell_code,
                key.species_key,
                cell.n,
                cell.min_uncertainty if cell.min_uncertainty != float("inf") else None,
            )
            for key, cell in sorted(self.cells.items())
        ]
        cube = pd.DataFrame(rows, columns=CUBE_COLUMNS)
        cube[YEAR_COL] = cube[YEAR_COL].astype("Int64")
        cube[SPECIES_KEY_COL] = cube[SPECIES_KEY_COL].astype("Int64")
        cube[COUNT_COL] = cube[COUNT_COL].astype("Int64")
        cube[MIN_UNCERTAINTY_COL] = cube[MIN_UNCERTAINTY_COL].astype("float64")
        return cube


def aggregate_records(frame: pd.DataFrame) -> Tuple[pd.DataFrame, AggregationSummary]:
    """Aggregate an in-memory DataFrame of enriched records."""
    aggregator = SpeciesCubeAggregator()
    aggregator.add_chunk(frame)
    return aggregator.to_frame(), aggregator.summary


def aggregate_chunks(chunks: Iterable[pd.DataFrame]) -> Tuple[pd.DataFrame, AggregationSummary]:
    aggregator = SpeciesCubeAggregator()
    for chunk in chunks:
        aggregator.add_chunk(chunk)
    return aggregator.to_frame(), aggregator.summary


def build_species_cube(
    store: OccurrenceStore,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Tuple[pd.DataFrame, AggregationSummary]:
    """Aggregate the whole store to the species cube, chunk by chunk."""
    columns = [ID_COL, YEAR_COL, CELL_COL, SPECIES_KEY_COL, UNCERTAINTY_COL]
    cube, summary = aggregate_chunks(store.iter_chunks(chunk_size, columns=columns))

    logger.info(
        f"Species cube: {len(cube)} rows from {summary.records_in_cube} of "
        f"{summary.records_seen} records"
    )
    if summary.species_key_absent or summary.species_key_zero:
        logger.info(
            f"Occurrences without species key excluded: {summary.species_key_absent} absent, "
            f"{summary.species_key_zero} above species rank (speciesKey = 0)"
        )
    other = summary.records_excluded - summary.species_key_absent - summary.species_key_zero
    if other:
        logger.warning(f"{other} records without year or grid cell excluded from the cube")
    return cube, summary
