"""
Module: helpers/cube_summary.py
Project: GBIF occurrence cubes (occcube)

Notes:
Splits a species cube into structured summary tables for quick
analysis and visualization:
- occurrences per species (with number of cells and years)
- occurrences per year
- occurrences per grid cell
"""

import logging
from pathlib import Path
from typing import Dict

import pandas as pd

from occcube.cube import COUNT_COL
from occcube.store import CELL_COL, SPECIES_KEY_COL, YEAR_COL

logger = logging.getLogger(__name__)


def summarize_cube(cube: pd.DataFrame) -> Dict[str, pd.DataFrame]:
    """Return summary tables keyed by 'species', 'year' and 'cell'."""
    summaries = {}

    # ============================================================
    # SPECIES SUMMARY
    # ============================================================
    summaries["species"] = (
        cube.groupby(SPECIES_KEY_COL)
        .agg(
            occurrences=(COUNT_COL, "sum"),
            n_cells=(CELL_COL, "nunique"),
            n_years=(YEAR_COL, "nunique"),
        )
        .reset_index()
        .sort_values(["occurrences", SPECIES_KEY_COL], ascending=[False, True])
        .reset_index(drop=True)
    )

    # ============================================================
    # YEAR SUMMARY
    # ============================================================
    summaries["year"] = (
        cube.groupby(YEAR_COL)
        .agg(occurrences=(COUNT_COL, "sum"), n_species=(SPECIES_KEY_COL, "nunique"))
        .reset_index()
        .sort_values(YEAR_COL)
        .reset_index(drop=True)
    )

    # ============================================================
    # CELL SUMMARY
    # ============================================================
    summaries["cell"] = (
        cube.groupby(CELL_COL)
        .agg(occurrences=(COUNT_COL, "sum"), n_species=(SPECIES_KEY_COL, "nunique"))
        .reset_index()
        .sort_values(["occurrences", CELL_COL], ascending=[False, True])
        .reset_index(drop=True)
    )
    return summaries


def write_summaries(cube: pd.DataFrame, results_dir: Path, prefix: str) -> Dict[str, Path]:
    """Write each summary table to <results_dir>/<prefix>_<name>_summary.csv."""
    results_dir = Path(results_dir)
    results_dir.mkdir(parents=True, exist_ok=True)

    paths = {}
    for name, table in summarize_cube(cube).items():
        path = results_dir / f"{prefix}_{name}_summary.csv"
        table.to_csv(path, index=False)
        logger.info(f"{name.capitalize()} summary saved to: {path}")
        paths[name] = path
    return paths
