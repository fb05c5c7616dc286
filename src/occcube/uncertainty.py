"""
Module: uncertainty.py
Project: GBIF occurrence cubes (occcube)

Description:
Replaces missing or zero coordinate uncertainty with a fixed default
radius (1000 m unless configured otherwise). After normalization every
record has a strictly positive uncertainty, which the sampler needs.
"""

import math
import warnings
from typing import Optional, Tuple

import pandas as pd

from occcube.config import DEFAULT_UNCERTAINTY
from occcube.errors import MissingUncertaintyWarning


def normalize_uncertainty_value(value: Optional[float], default: float = DEFAULT_UNCERTAINTY) -> float:
    """Return value if it is present and > 0, otherwise the default radius."""
    if default <= 0:
        raise ValueError(f"default uncertainty must be > 0, got {default}")
    if value is None or value is pd.NA:
        return float(default)
    value = float(value)
    if math.isnan(value) or value <= 0:
        return float(default)
    return value


def normalize_uncertainty(
    values: pd.Series,
    default: float = DEFAULT_UNCERTAINTY,
    warn: bool = True,
) -> Tuple[pd.Series, int]:
    """
    Vectorized normalization of a column of uncertainties.

    Returns the normalized float Series and the number of substituted
    values. When values were substituted a single MissingUncertaintyWarning
    is emitted for the batch.
    """
    if default <= 0:
        raise ValueError(f"default uncertainty must be > 0, got {default}")

    numeric = pd.to_numeric(values, errors="coerce").astype("float64")
    missing = numeric.isna() | (numeric <= 0)
    n_replaced = int(missing.sum())

    normalized = numeric.mask(missing, float(default))

    if warn and n_replaced:
        warnings.warn(
            f"{n_replaced} records without a positive coordinate uncertainty; "
            f"using the default of {default} m",
            MissingUncertaintyWarning,
            stacklevel=2,
        )
    return normalized, n_replaced
