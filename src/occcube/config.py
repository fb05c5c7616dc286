"""
Module: config.py
Project: GBIF occurrence cubes (occcube)

Description:
Run configuration for the cube pipeline. Every value that changes the
content of the cube is explicit here: the CRS pair, the default
uncertainty radius, the grid cell size, the chunk size and the random
seed. Chunk size is part of the reproducibility contract (random numbers
are drawn chunk by chunk), not only a performance setting.

Notes:
GBIF credentials are read from environment variables only:
  - GBIF_USER
  - GBIF_PASSWORD
  - GBIF_EMAIL
so that nothing sensitive ends up in configuration files.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


# ----------------------------------------------------------------------
# Defaults
# ----------------------------------------------------------------------
DEFAULT_COUNTRY = "BE"
DEFAULT_SOURCE_CRS = "EPSG:4326"   # WGS84, degrees
DEFAULT_TARGET_CRS = "EPSG:3035"   # ETRS89-extended / LAEA Europe, meters
DEFAULT_UNCERTAINTY = 1000.0       # meters
DEFAULT_CELL_SIZE = 1000           # meters
DEFAULT_CHUNK_SIZE = 100_000       # rows per chunk
DEFAULT_SEED = 1000


@dataclass
class CubeConfig:
    """Configuration of one cube run."""
    country: str = DEFAULT_COUNTRY
    source_crs: str = DEFAULT_SOURCE_CRS
    target_crs: str = DEFAULT_TARGET_CRS
    default_uncertainty: float = DEFAULT_UNCERTAINTY
    cell_size: int = DEFAULT_CELL_SIZE
    chunk_size: int = DEFAULT_CHUNK_SIZE
    seed: int = DEFAULT_SEED

    data_dir: Path = Path("data")
    results_dir: Path = Path("results")
    log_dir: Path = Path("logs")

    raw_dir: Path = field(init=False)
    db_path: Path = field(init=False)

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        self.results_dir = Path(self.results_dir)
        self.log_dir = Path(self.log_dir)
        self.raw_dir = self.data_dir / "raw"
        self.db_path = self.data_dir / "interim" / f"{self.country.lower()}_occurrences.sqlite"

        self.default_uncertainty = float(self.default_uncertainty)
        self.cell_size = int(self.cell_size)
        self.chunk_size = int(self.chunk_size)
        self.seed = int(self.seed)

        if self.default_uncertainty <= 0:
            raise ValueError(f"default_uncertainty must be > 0, got {self.default_uncertainty}")
        if self.cell_size <= 0:
            raise ValueError(f"cell_size must be > 0, got {self.cell_size}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {self.chunk_size}")
        if self.seed < 0:
            raise ValueError(f"seed must be >= 0, got {self.seed}")
        if not self.source_crs or not self.target_crs:
            raise ValueError("source_crs and target_crs must both be set")
        if self.source_crs == self.target_crs:
            raise ValueError("source_crs and target_crs must differ")

    # Output files
    @property
    def cube_csv(self) -> Path:
        return self.results_dir / f"{self.country.lower()}_species_cube.csv"

    @property
    def compendium_csv(self) -> Path:
        return self.results_dir / f"{self.country.lower()}_species_compendium.csv"

    @property
    def report_file(self) -> Path:
        return self.results_dir / f"{self.country.lower()}_filter_report.txt"

    def ensure_directories(self):
        """Create all data, result and log directories."""
        for path in [self.raw_dir, self.db_path.parent, self.results_dir, self.log_dir]:
            path.mkdir(parents=True, exist_ok=True)

    def fingerprint(self) -> Dict[str, Any]:
        """Values that determine the cell assignment of every record."""
        return {
            "source_crs": self.source_crs,
            "target_crs": self.target_crs,
            "default_uncertainty": self.default_uncertainty,
            "cell_size": self.cell_size,
            "chunk_size": self.chunk_size,
            "seed": self.seed,
        }

    def replace(self, **changes) -> "CubeConfig":
        """Return a copy with some values overridden (None values are ignored)."""
        values = {f.name: getattr(self, f.name) for f in fields(self) if f.init}
        values.update({k: v for k, v in changes.items() if v is not None})
        return CubeConfig(**values)

    @classmethod
    def from_env(cls) -> "CubeConfig":
        """Load configuration from OCCCUBE_* environment variables."""
        return cls(
            country=os.environ.get("OCCCUBE_COUNTRY", DEFAULT_COUNTRY),
            source_crs=os.environ.get("OCCCUBE_SOURCE_CRS", DEFAULT_SOURCE_CRS),
            target_crs=os.environ.get("OCCCUBE_TARGET_CRS", DEFAULT_TARGET_CRS),
            default_uncertainty=float(os.environ.get("OCCCUBE_DEFAULT_UNCERTAINTY", DEFAULT_UNCERTAINTY)),
            cell_size=int(os.environ.get("OCCCUBE_CELL_SIZE", DEFAULT_CELL_SIZE)),
            chunk_size=int(os.environ.get("OCCCUBE_CHUNK_SIZE", DEFAULT_CHUNK_SIZE)),
            seed=int(os.environ.get("OCCCUBE_SEED", DEFAULT_SEED)),
            data_dir=Path(os.environ.get("OCCCUBE_DATA_DIR", "data")),
            results_dir=Path(os.environ.get("OCCCUBE_RESULTS_DIR", "results")),
            log_dir=Path(os.environ.get("OCCCUBE_LOG_DIR", "logs")),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "CubeConfig":
        """Load configuration from a YAML file with top-level keys named like the fields."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")

        allowed = {f.name for f in fields(cls) if f.init}
        unknown = sorted(set(data) - allowed)
        if unknown:
            raise ValueError(f"Unknown configuration keys in {path}: {', '.join(unknown)}")
        return cls(**data)


@dataclass
class GbifCredentials:
    """GBIF account used for occurrence download requests."""
    user: str
    password: str
    email: str

    @classmethod
    def from_env(cls) -> Optional["GbifCredentials"]:
        """Read GBIF_USER / GBIF_PASSWORD / GBIF_EMAIL; None if any is missing."""
        user = os.getenv("GBIF_USER")
        password = os.getenv("GBIF_PASSWORD")
        email = os.getenv("GBIF_EMAIL")
        if not user or not password or not email:
            return None
        return cls(user=user, password=password, email=email)
