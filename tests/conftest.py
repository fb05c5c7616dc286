"""Shared fixtures for the occcube test suite."""

import os
import sys

import pandas as pd
import pytest

# Add src to sys.path to ensure we can import the package if it's not installed
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from occcube.config import CubeConfig  # noqa: E402
from occcube.store import OccurrenceStore  # noqa: E402


@pytest.fixture
def config(tmp_path):
    """Small-chunk configuration writing under tmp_path."""
    return CubeConfig(
        country="BE",
        chunk_size=3,
        seed=42,
        data_dir=tmp_path / "data",
        results_dir=tmp_path / "results",
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def sample_records():
    """Occurrences around Brussels, Ghent and Antwerp."""
    return pd.DataFrame(
        {
            "gbifID": [101, 102, 103, 104, 105, 106, 107],
            "decimalLatitude": [50.85, 50.85, 51.05, 51.22, 50.85, 50.86, 51.05],
            "decimalLongitude": [4.35, 4.35, 3.72, 4.40, 4.35, 4.36, 3.72],
            "coordinateUncertaintyInMeters": [None, 500.0, 0.0, 30.0, 1000.0, 250.0, None],
            "speciesKey": pd.array([9999, 9999, 2480528, 2480528, None, 0, 9999], dtype="Int64"),
            "taxonKey": pd.array([9999, 9999, 2480528, 7788776, 1234, 5678, 4444], dtype="Int64"),
            "scientificName": [
                "Anas platyrhynchos Linnaeus, 1758",
                "Anas platyrhynchos Linnaeus, 1758",
                "Corvus corone Linnaeus, 1758",
                "Corvus corone cornix Linnaeus, 1758",
                "Aves",
                "Anatidae",
                "Anas boschas Linnaeus, 1758",
            ],
            "year": pd.array([2020, 2020, 2019, 2021, 2020, 2020, 2020], dtype="Int64"),
            "kingdom": ["Animalia"] * 7,
            "taxonRank": ["SPECIES", "SPECIES", "SPECIES", "SUBSPECIES", "CLASS", "FAMILY", "SPECIES"],
            "countryCode": ["BE"] * 7,
        }
    )


@pytest.fixture
def store(tmp_path, sample_records):
    """Occurrence store loaded with sample_records."""
    with OccurrenceStore(tmp_path / "occ.sqlite") as s:
        s.append(sample_records)
        yield s
