"""
Module: compendium.py
Project: GBIF occurrence cubes (occcube)

Description:
Builds the taxonomic compendium of a species cube: for every species key,
the list of taxa (the accepted species itself, synonyms, infraspecific
taxa) whose occurrences were counted under that key, together with the
name, rank, taxonomic status and kingdom of the species.

Input:
- OccurrenceStore (read only)
- A taxonomy lookup, by default the GBIF species API

Output:
- DataFrame with columns speciesKey, species, rank, taxonomicStatus,
  kingdom, includes

Notes:
A species key is treated the same way whether or not it also occurs as
the taxon key of its own records (species seen only through synonyms or
subspecies). Species whose lookup fails are left out of the compendium
and counted; this is never fatal.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pandas as pd
import requests

from occcube.config import DEFAULT_CHUNK_SIZE
from occcube.cube import NO_SPECIES_KEY
from occcube.errors import ExternalLookupFailure
from occcube.store import ID_COL, NAME_COL, SPECIES_KEY_COL, TAXON_KEY_COL, OccurrenceStore

logger = logging.getLogger(__name__)

GBIF_SPECIES_URL = "https://api.gbif.org/v1/species/{key}"

HEADERS = {
    "User-Agent": "occcube/0.1 (GBIF occurrence cubes)",
    "Accept": "application/json",
}

COMPENDIUM_COLUMNS = [SPECIES_KEY_COL, "species", "rank", "taxonomicStatus", "kingdom", "includes"]

INCLUDES_SEPARATOR = " | "


@dataclass(frozen=True)
class TaxonInfo:
    """Taxonomic data of one GBIF backbone taxon."""
    key: int
    scientific_name: str
    rank: Optional[str] = None
    taxonomic_status: Optional[str] = None
    kingdom: Optional[str] = None

    @classmethod
    def from_gbif(cls, data: dict) -> "TaxonInfo":
        return cls(
            key=int(data["key"]),
            scientific_name=data.get("scientificName"),
            rank=data.get("rank"),
            taxonomic_status=data.get("taxonomicStatus"),
            kingdom=data.get("kingdom"),
        )


# ----------------------------------------------------------------------
# Taxonomy lookup (GBIF species API)
# ----------------------------------------------------------------------

@dataclass
class GbifTaxonomyLookup:
    """Client for the GBIF species API with retries and a per-key cache.

    Attributes:
        session: HTTP session used for all requests.
        max_retries: Maximum number of attempts per key.
        base_backoff: Base delay in seconds for exponential backoff.
        timeout: Request timeout in seconds.
    """

    session: requests.Session = field(default_factory=requests.Session)
    max_retries: int = 5
    base_backoff: float = 2.0
    timeout: float = 60.0
    _cache: Dict[int, TaxonInfo] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self.session.headers.update(HEADERS)

    def lookup(self, key: int) -> TaxonInfo:
        """Return taxonomic data of `key`; raises ExternalLookupFailure."""
        key = int(key)
        if key in self._cache:
            return self._cache[key]

        url = GBIF_SPECIES_URL.format(key=key)
        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                response = self.session.get(url, timeout=self.timeout)
            except requests.RequestException as e:
                if last_attempt:
                    raise ExternalLookupFailure(key, f"network error: {e}") from e
                logger.warning(f"Network error for taxon {key}: {e}. Retrying...")
                time.sleep(self.base_backoff * (2 ** attempt))
                continue

            if response.status_code == 429 or response.status_code >= 500:
                if last_attempt:
                    break
                sleep_time = self.base_backoff * (2 ** attempt)
                logger.warning(
                    f"GBIF species API returned {response.status_code} for {key}. "
                    f"Retrying in {sleep_time}s..."
                )
                time.sleep(sleep_time)
                continue

            if response.status_code == 404:
                raise ExternalLookupFailure(key, "unknown taxon key")
            if response.status_code != 200:
                raise ExternalLookupFailure(key, f"HTTP {response.status_code}")

            try:
                info = TaxonInfo.from_gbif(response.json())
            except (ValueError, KeyError) as e:
                raise ExternalLookupFailure(key, f"invalid response: {e}") from e
            self._cache[key] = info
            return info

        raise ExternalLookupFailure(key, "max retries exceeded")


# ----------------------------------------------------------------------
# Compendium
# ----------------------------------------------------------------------

@dataclass
class CompendiumSummary:
    species: int = 0
    rows: int = 0
    missing_lookups: List[int] = field(default_factory=list)

    def to_dict(self):
        return {
            "species": self.species,
            "rows": self.rows,
            "missing_lookups": len(self.missing_lookups),
        }


def collect_included_taxa(
    store: OccurrenceStore,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Dict[int, Dict[int, str]]:
    """
    Map every species key to the distinct taxa observed under it:
    {speciesKey: {taxonKey: scientificName}}. Records without a species
    key (absent or 0) are skipped.
    """
    included: Dict[int, Dict[int, str]] = {}
    columns = [ID_COL, SPECIES_KEY_COL, TAXON_KEY_COL, NAME_COL]
    for chunk in store.iter_chunks(chunk_size, columns=columns):
        chunk = chunk.dropna(subset=[SPECIES_KEY_COL, TAXON_KEY_COL])
        chunk = chunk[chunk[SPECIES_KEY_COL] != NO_SPECIES_KEY]
        pairs = chunk.drop_duplicates(subset=[SPECIES_KEY_COL, TAXON_KEY_COL])
        for species_key, taxon_key, name in pairs[
            [SPECIES_KEY_COL, TAXON_KEY_COL, NAME_COL]
        ].itertuples(index=False, name=None):
            taxa = included.setdefault(int(species_key), {})
            # first name seen for a taxon key wins
            taxa.setdefault(int(taxon_key), None if pd.isna(name) else str(name))
    return included


def format_includes(taxa: Dict[int, str]) -> str:
    """'taxonKey: scientificName' entries sorted by taxon key, joined by ' | '."""
    entries = []
    for taxon_key in sorted(taxa):
        name = taxa[taxon_key]
        entries.append(f"{taxon_key}: {name}" if name else str(taxon_key))
    return INCLUDES_SEPARATOR.join(entries)


def build_compendium(
    store: OccurrenceStore,
    lookup,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Tuple[pd.DataFrame, CompendiumSummary]:
    """
    One compendium row per species key. `lookup` is any object with a
    lookup(key) -> TaxonInfo method raising ExternalLookupFailure.
    """
    included = collect_included_taxa(store, chunk_size)
    summary = CompendiumSummary(species=len(included))

    rows = []
    for species_key in sorted(included):
        try:
            info = lookup.lookup(species_key)
        except ExternalLookupFailure as e:
            logger.warning(f"No taxonomic data for species {species_key}: {e.reason}")
            summary.missing_lookups.append(species_key)
            continue
        rows.append(
            (
                species_key,
                info.scientific_name,
                info.rank,
                info.taxonomic_status,
                info.kingdom,
                format_includes(included[species_key]),
            )
        )

    compendium = pd.DataFrame(rows, columns=COMPENDIUM_COLUMNS)
    compendium[SPECIES_KEY_COL] = compendium[SPECIES_KEY_COL].astype("Int64")
    summary.rows = len(compendium)

    logger.info(f"Compendium: {summary.rows} of {summary.species} species")
    if summary.missing_lookups:
        logger.warning(f"{len(summary.missing_lookups)} species left out after failed lookups")
    return compendium, summary
