"""
Module: sampling.py
Project: GBIF occurrence cubes (occcube)

Description:
Draws a random point uniformly within the uncertainty disk of each
occurrence, in planar coordinates.

For a disk of radius r the sampled distance from the center is r * sqrt(u)
with u ~ U[0, 1); using r * u would concentrate points near the center.

Notes:
The random generator is always passed in explicitly. For a chunk of n
records the draw order is: n angles, then n radial fractions. Output is
reproducible for a fixed seed only if records are processed in the same
order and with the same chunk size.
"""

import math
from typing import Tuple

import numpy as np


def make_rng(seed: int) -> np.random.Generator:
    """Generator for a whole run; one sequential stream shared by all chunks."""
    return np.random.default_rng(seed)


def chunk_rng(seed: int, chunk_index: int) -> np.random.Generator:
    """
    Independent sub-stream for one chunk, derived from the master seed and
    the chunk index. Allows chunks to be processed out of order.
    """
    if chunk_index < 0:
        raise ValueError(f"chunk_index must be >= 0, got {chunk_index}")
    return np.random.default_rng(np.random.SeedSequence(entropy=seed, spawn_key=(chunk_index,)))


def sample_point(x: float, y: float, radius: float, rng: np.random.Generator) -> Tuple[float, float]:
    """Random point uniformly distributed in the disk of `radius` around (x, y)."""
    if not math.isfinite(radius) or radius <= 0:
        raise ValueError(f"radius must be a positive finite number, got {radius}")
    theta = rng.uniform(0.0, 2.0 * math.pi)
    u = rng.uniform(0.0, 1.0)
    r = radius * math.sqrt(u)
    return x + r * math.cos(theta), y + r * math.sin(theta)


def sample_points(x, y, radius, rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorized sample_point over arrays of equal length."""
    x = np.asarray(x, dtype="float64")
    y = np.asarray(y, dtype="float64")
    radius = np.asarray(radius, dtype="float64")
    if not (x.shape == y.shape == radius.shape):
        raise ValueError("x, y and radius must have the same length")
    if radius.size and (~np.isfinite(radius) | (radius <= 0)).any():
        raise ValueError("all radii must be positive finite numbers")

    n = x.size
    theta = rng.uniform(0.0, 2.0 * np.pi, size=n)
    u = rng.uniform(0.0, 1.0, size=n)
    r = radius * np.sqrt(u)
    return x + r * np.cos(theta), y + r * np.sin(theta)
