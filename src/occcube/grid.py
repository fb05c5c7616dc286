"""
Module: grid.py
Project: GBIF occurrence cubes (occcube)

Description:
Maps planar (x, y) points to identifiers of fixed-size square grid
cells, following the EEA reference grid naming, e.g. 1kmE3929N3103 for
the 1 km cell whose lower-left corner is at (3929000, 3103000).
"""

import math
import re
from typing import List, Tuple

import numpy as np

from occcube.config import DEFAULT_CELL_SIZE

CELL_CODE_PATTERN = re.compile(r"^(\d+)(km|m)E(-?\d+)N(-?\d+)$")


def check_cell_size(cell_size) -> int:
    """Cell size as a positive whole number of meters."""
    size = int(cell_size)
    if size != cell_size:
        raise ValueError(f"cell_size must be a whole number of meters, got {cell_size}")
    if size <= 0:
        raise ValueError(f"cell_size must be > 0, got {cell_size}")
    return size


def resolution_label(cell_size: int) -> str:
    """1000 -> '1km', 10000 -> '10km', 250 -> '250m'."""
    cell_size = check_cell_size(cell_size)
    if cell_size % 1000 == 0:
        return f"{cell_size // 1000}km"
    return f"{cell_size}m"


def grid_cell_code(x: float, y: float, cell_size: int = DEFAULT_CELL_SIZE) -> str:
    """Cell identifier of the point (x, y) for square cells of `cell_size` meters."""
    if not (math.isfinite(x) and math.isfinite(y)):
        raise ValueError(f"cannot assign a grid cell to ({x}, {y})")
    cell_size = check_cell_size(cell_size)
    label = resolution_label(cell_size)
    east = math.floor(x / cell_size)
    north = math.floor(y / cell_size)
    return f"{label}E{east}N{north}"


def assign_grid_cells(x, y, cell_size: int = DEFAULT_CELL_SIZE) -> List[str]:
    """Vectorized grid_cell_code over arrays of x and y."""
    x = np.asarray(x, dtype="float64")
    y = np.asarray(y, dtype="float64")
    if x.shape != y.shape:
        raise ValueError("x and y must have the same length")
    if x.size and not (np.isfinite(x).all() and np.isfinite(y).all()):
        raise ValueError("cannot assign grid cells to non-finite coordinates")

    cell_size = check_cell_size(cell_size)
    label = resolution_label(cell_size)
    east = np.floor(x / cell_size).astype("int64")
    north = np.floor(y / cell_size).astype("int64")
    return [f"{label}E{e}N{n}" for e, n in zip(east.tolist(), north.tolist())]


def parse_cell_code(code: str) -> Tuple[int, int, int]:
    """Return (cell_size, east, north) from a cell identifier."""
    match = CELL_CODE_PATTERN.match(code)
    if not match:
        raise ValueError(f"Not a grid cell code: {code!r}")
    size, unit, east, north = match.groups()
    cell_size = int(size) * (1000 if unit == "km" else 1)
    return cell_size, int(east), int(north)
