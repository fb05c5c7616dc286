"""
Module: export.py
Project: GBIF occurrence cubes (occcube)

Description:
Writes the species cube and the taxonomic compendium as comma-separated
files. Missing values are written as NA, so that a missing value is never
confused with 0.
"""

import logging
from pathlib import Path

import pandas as pd

from occcube.compendium import COMPENDIUM_COLUMNS
from occcube.cube import COUNT_COL, CUBE_COLUMNS
from occcube.store import SPECIES_KEY_COL, YEAR_COL

logger = logging.getLogger(__name__)

NA_MARKER = "NA"


def cast_int_columns(df: pd.DataFrame, columns) -> pd.DataFrame:
    """
    Convert numeric columns (e.g. years, counts) to nullable integer (Int64)
    so that values are stored as plain integers in the CSV (e.g. 1998, not 1998.0).
    """
    for col in columns:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce").astype("Int64")
    return df


def write_cube_csv(cube: pd.DataFrame, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    cube = cast_int_columns(cube[CUBE_COLUMNS].copy(), [YEAR_COL, SPECIES_KEY_COL, COUNT_COL])
    cube.to_csv(path, index=False, na_rep=NA_MARKER)
    logger.info(f"Species cube ({len(cube)} rows) saved to: {path}")
    return path


def write_compendium_csv(compendium: pd.DataFrame, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    compendium = cast_int_columns(compendium[COMPENDIUM_COLUMNS].copy(), [SPECIES_KEY_COL])
    compendium.to_csv(path, index=False, na_rep=NA_MARKER)
    logger.info(f"Compendium ({len(compendium)} rows) saved to: {path}")
    return path
