"""
Module: load.py
Project: GBIF occurrence cubes (occcube)

Description:
Loads a GBIF occurrence download (ZIP archive) into the occurrence store.
The occurrence table inside the ZIP is read in chunks to avoid loading
the full dataset into memory. For each chunk we:
  1. keep only the columns needed downstream,
  2. apply the quality filters (occcube.filters),
  3. append the kept records to the SQLite store.
A plain-text summary report of the filtering is written at the end.

Input:
- GBIF download ZIP (SIMPLE_CSV: <key>.csv, or DWCA: occurrence.txt)

Output:
- OccurrenceStore populated with filtered records
- Filter summary report (text)
"""

import csv
import logging
import zipfile
from pathlib import Path
from typing import Iterator, Optional

import pandas as pd

from occcube.config import DEFAULT_CHUNK_SIZE
from occcube.filters import FilterRules, FilterStats, apply_filters
from occcube.store import RECORD_COLUMNS, OccurrenceStore

logger = logging.getLogger(__name__)

# Store columns plus the fields the filters look at
COLUMNS_KEEP = RECORD_COLUMNS + ["issue"]

DWCA_OCCURRENCE_FILE = "occurrence.txt"


def find_occurrence_file(archive: zipfile.ZipFile) -> str:
    """Name of the occurrence table inside a GBIF download archive."""
    names = archive.namelist()
    if DWCA_OCCURRENCE_FILE in names:
        return DWCA_OCCURRENCE_FILE
    csv_files = [n for n in names if n.endswith(".csv")]
    if len(csv_files) == 1:
        return csv_files[0]
    raise FileNotFoundError(
        f"No occurrence table found in the ZIP file (expected {DWCA_OCCURRENCE_FILE} or one .csv file)"
    )


def read_occurrence_chunks(zip_path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[pd.DataFrame]:
    """Yield chunks of the tab-separated occurrence table inside the ZIP."""
    zip_path = Path(zip_path)
    if not zip_path.exists():
        raise FileNotFoundError(f"GBIF download not found: {zip_path}")

    with zipfile.ZipFile(str(zip_path), "r") as z:
        inner = find_occurrence_file(z)
        logger.info(f"Reading {inner} from {zip_path.name} in chunks of {chunk_size} rows")
        with z.open(inner) as f:
            for chunk in pd.read_csv(
                f,
                sep="\t",
                usecols=lambda c: c in COLUMNS_KEEP,
                dtype=str,
                quoting=csv.QUOTE_NONE,
                chunksize=chunk_size,
                low_memory=False,
            ):
                yield chunk


def load_occurrences(
    zip_path: Path,
    store: OccurrenceStore,
    rules: Optional[FilterRules] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> FilterStats:
    """Filter the download chunk by chunk and append the kept records to the store."""
    rules = rules or FilterRules()
    stats = FilterStats()

    for i, chunk in enumerate(read_occurrence_chunks(zip_path, chunk_size)):
        kept, stats = apply_filters(chunk, rules, stats)
        store.append(kept)
        logger.info(f"Chunk {i}: {len(kept)} of {len(chunk)} records kept")

    logger.info(
        f"Loaded {stats.filtered_records} of {stats.total_records} records "
        f"({stats.retention_ratio:.2f}% retained)"
    )
    for reason, count in stats.removed.most_common():
        logger.info(f"  removed ({reason}): {count}")
    return stats


# ----------------------------------------------------------------------
# Generate textual summary report
# ----------------------------------------------------------------------
# Build a human-readable summary of:
#   - filter configuration,
#   - record retention ratio and removals per reason,
#   - species and taxonKey richness,
#   - temporal coverage (year range and distribution),
#   - geographic coverage (countries),
#   - basisOfRecord distribution.

def write_filter_report(path: Path, stats: FilterStats, rules: FilterRules, source: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as report:
        report.write("GBIF DATA SUMMARY REPORT\n\n")
        report.write(f"Dataset: {Path(source).name}\n")
        report.write("=" * 60 + "\n\n")

        # ==============================
        # Filter configuration summary
        # ==============================
        report.write("Filter configuration\n")
        report.write("--------------------\n")
        report.write(f"Required non-null fields: {', '.join(rules.required_fields)}\n")
        report.write(f"Issue blacklist: {rules.issue_blacklist}\n")
        report.write(f"occurrenceStatus blacklist: {rules.status_blacklist}\n")
        if rules.allowed_basis is not None:
            report.write(f"basisOfRecord filter: {rules.allowed_basis}\n")
        else:
            report.write("basisOfRecord filter: none\n")
        if rules.year_min is not None or rules.year_max is not None:
            report.write("Temporal filter (year):\n")
            report.write(f"  YEAR_MIN = {rules.year_min}\n")
            report.write(f"  YEAR_MAX = {rules.year_max}\n")
        else:
            report.write("Temporal filter (year): none (all years kept)\n")
        report.write("\n")

        # ==============================
        # Dataset summary
        # ==============================
        report.write(f"Total records (raw): {stats.total_records}\n")
        report.write(f"Records after filtering: {stats.filtered_records}\n")
        report.write(f"Unique species: {len(stats.species_counter)}\n")
        report.write(f"Unique taxonKeys: {len(stats.taxon_counter)}\n\n")
        report.write(f"Retention ratio after filtering: {stats.retention_ratio:.2f}%\n\n")

        report.write("Removed records per reason:\n")
        for reason, count in stats.removed.most_common():
            report.write(f"  {reason}: {count}\n")
        report.write("\n")

        if stats.year_counter:
            years = sorted(stats.year_counter)
            report.write(f"Year range: {years[0]} to {years[-1]}\n")
        else:
            report.write("Year range: no valid years\n")
        report.write(f"Geographic coverage: {len(stats.country_counter)} unique countries\n\n")

        # Basis of Record
        total_basis = sum(stats.basis_counter.values())
        report.write("Basis of Record distribution:\n")
        for b, count in stats.basis_counter.most_common():
            percent = (count / total_basis) * 100 if total_basis > 0 else 0
            report.write(f"  {b}: {count} ({percent:.2f}%)\n")
        report.write("\n")

        # Top species
        report.write("Top 10 species by number of occurrences:\n")
        for name, count in stats.species_counter.most_common(10):
            report.write(f"  {name}: {count}\n")
        report.write("\n")

        # Year distribution (ALL years)
        report.write("Occurrences by year (all years):\n")
        for y, count in sorted(stats.year_counter.items()):
            report.write(f"  {y}: {count}\n")

    logger.info(f"Report saved to: {path}")
    return path
