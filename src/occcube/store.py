"""
Module: store.py
Project: GBIF occurrence cubes (occcube)

Description:
SQLite-backed store for filtered GBIF occurrences. It holds one row per
record (keyed by gbifID), hands out bounded chunks in a stable order
(ascending gbifID) and accepts the computed grid cell codes back, keyed
by record identity.

Notes:
- Chunks are read with keyset pagination (gbifID > last seen id), so the
  order is stable and independent of insertion order.
- update_cells() writes a whole chunk, plus optional metadata such as the
  resume cursor, in a single transaction.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Sequence

import pandas as pd

logger = logging.getLogger(__name__)

TABLE = "occurrence"
META_TABLE = "metadata"

ID_COL = "gbifID"
LAT_COL = "decimalLatitude"
LON_COL = "decimalLongitude"
UNCERTAINTY_COL = "coordinateUncertaintyInMeters"
SPECIES_KEY_COL = "speciesKey"
TAXON_KEY_COL = "taxonKey"
NAME_COL = "scientificName"
YEAR_COL = "year"
CELL_COL = "eeaCellCode"

# Column name -> SQLite type. Order defines the table layout.
SCHEMA = {
    ID_COL: "INTEGER PRIMARY KEY",
    LAT_COL: "REAL NOT NULL",
    LON_COL: "REAL NOT NULL",
    UNCERTAINTY_COL: "REAL",
    SPECIES_KEY_COL: "INTEGER",
    TAXON_KEY_COL: "INTEGER",
    NAME_COL: "TEXT",
    YEAR_COL: "INTEGER",
    "kingdom": "TEXT",
    "taxonRank": "TEXT",
    "taxonomicStatus": "TEXT",
    "countryCode": "TEXT",
    "basisOfRecord": "TEXT",
    "occurrenceStatus": "TEXT",
    CELL_COL: "TEXT",
}

RECORD_COLUMNS = [c for c in SCHEMA if c != CELL_COL]
INTEGER_COLUMNS = [c for c, t in SCHEMA.items() if t.startswith("INTEGER")]
REAL_COLUMNS = [c for c, t in SCHEMA.items() if t.startswith("REAL")]

# Smaller than any gbifID, used as the start of keyset pagination.
_FIRST_ID = -(2 ** 63)


class OccurrenceStore:
    """Keyed store of occurrence records backed by a SQLite file."""

    def __init__(self, path):
        self.path = Path(path) if str(path) != ":memory:" else path
        if isinstance(self.path, Path):
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.path))
        self.create_schema()

    def __enter__(self) -> "OccurrenceStore":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self.conn.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------
    def create_schema(self):
        """Create the occurrence and metadata tables if they do not exist."""
        columns = ",\n    ".join(f'"{name}" {sql_type}' for name, sql_type in SCHEMA.items())
        with self.conn:
            self.conn.execute(f"CREATE TABLE IF NOT EXISTS {TABLE} (\n    {columns}\n)")
            self.conn.execute(
                f"CREATE TABLE IF NOT EXISTS {META_TABLE} (key TEXT PRIMARY KEY, value TEXT)"
            )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------
    def append(self, frame: pd.DataFrame) -> int:
        """
        Insert records. Columns not part of the schema are dropped, missing
        optional columns are stored as NULL. Returns the number of rows.
        """
        if frame.empty:
            return 0
        missing = [c for c in (ID_COL, LAT_COL, LON_COL) if c not in frame.columns]
        if missing:
            raise KeyError(f"Cannot store records without columns: {', '.join(missing)}")

        records = frame.reindex(columns=RECORD_COLUMNS)
        with self.conn:
            records.to_sql(TABLE, self.conn, if_exists="append", index=False)
        logger.debug(f"Stored {len(records)} records in {self.path}")
        return len(records)

    def count(self) -> int:
        return self.conn.execute(f"SELECT COUNT(*) FROM {TABLE}").fetchone()[0]

    def count_unassigned(self) -> int:
        """Number of records that do not carry a grid cell code yet."""
        query = f"SELECT COUNT(*) FROM {TABLE} WHERE {CELL_COL} IS NULL"
        return self.conn.execute(query).fetchone()[0]

    def iter_chunks(
        self,
        chunk_size: int,
        columns: Optional[Sequence[str]] = None,
        after: Optional[int] = None,
    ) -> Iterator[pd.DataFrame]:
        """
        Yield DataFrames of at most chunk_size records in ascending gbifID
        order. With `after`, iteration starts strictly after that gbifID.
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {chunk_size}")

        columns = list(columns) if columns else list(SCHEMA)
        unknown = [c for c in columns if c not in SCHEMA]
        if unknown:
            raise KeyError(f"Unknown store columns: {', '.join(unknown)}")
        if ID_COL not in columns:
            columns = [ID_COL] + columns

        select = ", ".join(f'"{c}"' for c in columns)
        query = (
            f"SELECT {select} FROM {TABLE} "
            f"WHERE {ID_COL} > ? ORDER BY {ID_COL} LIMIT ?"
        )

        last_id = _FIRST_ID if after is None else int(after)
        while True:
            chunk = pd.read_sql_query(query, self.conn, params=(last_id, int(chunk_size)))
            if chunk.empty:
                return
            chunk = _coerce_types(chunk)
            last_id = int(chunk[ID_COL].iloc[-1])
            yield chunk
            if len(chunk) < chunk_size:
                return

    def fetch(self, ids: Sequence[int]) -> pd.DataFrame:
        """Return the stored records with the given gbifIDs, ordered by gbifID."""
        ids = [int(i) for i in ids]
        if not ids:
            return pd.DataFrame(columns=list(SCHEMA))
        placeholders = ", ".join("?" for _ in ids)
        query = f"SELECT * FROM {TABLE} WHERE {ID_COL} IN ({placeholders}) ORDER BY {ID_COL}"
        return _coerce_types(pd.read_sql_query(query, self.conn, params=ids))

    def update_cells(self, frame: pd.DataFrame, meta: Optional[Dict[str, Any]] = None) -> int:
        """
        Write grid cell codes and normalized uncertainties back by gbifID.

        The record updates and the metadata entries are committed together;
        if anything fails the whole write is rolled back.
        """
        rows = list(
            zip(
                frame[CELL_COL].tolist(),
                [float(v) for v in frame[UNCERTAINTY_COL].tolist()],
                [int(v) for v in frame[ID_COL].tolist()],
            )
        )
        with self.conn:
            self.conn.executemany(
                f"UPDATE {TABLE} SET {CELL_COL} = ?, {UNCERTAINTY_COL} = ? WHERE {ID_COL} = ?",
                rows,
            )
            for key, value in (meta or {}).items():
                self._write_meta(key, value)
        return len(rows)

    def reset_cells(self):
        """Remove all derived cell codes and the assignment cursor."""
        with self.conn:
            self.conn.execute(f"UPDATE {TABLE} SET {CELL_COL} = NULL")
            self.conn.execute(f"DELETE FROM {META_TABLE} WHERE key LIKE 'assignment.%'")

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------
    def get_meta(self, key: str, default=None):
        row = self.conn.execute(
            f"SELECT value FROM {META_TABLE} WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return default
        return json.loads(row[0])

    def set_meta(self, key: str, value):
        with self.conn:
            self._write_meta(key, value)

    def _write_meta(self, key: str, value):
        self.conn.execute(
            f"INSERT OR REPLACE INTO {META_TABLE} (key, value) VALUES (?, ?)",
            (key, json.dumps(value)),
        )


def _coerce_types(frame: pd.DataFrame) -> pd.DataFrame:
    """Restore nullable integer columns that SQLite returns as floats."""
    for col in frame.columns:
        if col in INTEGER_COLUMNS:
            frame[col] = pd.to_numeric(frame[col], errors="coerce").astype("Int64")
        elif col in REAL_COLUMNS:
            frame[col] = pd.to_numeric(frame[col], errors="coerce").astype("float64")
    return frame
