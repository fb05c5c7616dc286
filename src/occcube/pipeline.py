"""
Module: pipeline.py
Project: GBIF occurrence cubes (occcube)

Description:
Chunked grid assignment. Reads the occurrence store in fixed-size chunks
(ascending gbifID) and, for each chunk:
  1. normalizes coordinate uncertainty (default radius for null/zero),
  2. reprojects (lon, lat) to the planar grid CRS,
  3. samples a random point inside the uncertainty disk,
  4. derives the grid cell code of the sampled point,
  5. writes cell codes and uncertainties back to the store.

Notes:
- Chunks are processed strictly in order; the random generator is one
  sequential stream handed from chunk to chunk.
- Each chunk is committed in one transaction together with the resume
  cursor and the generator state. A failing chunk aborts the run; chunks
  committed before it stay in the store.
- A resumed run continues from the stored cursor with the stored
  generator state and produces the same cells as an uninterrupted run.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np

from occcube.config import CubeConfig
from occcube.errors import ProjectionError
from occcube.grid import assign_grid_cells
from occcube.projection import Projector
from occcube.sampling import make_rng, sample_points
from occcube.store import (
    CELL_COL,
    ID_COL,
    LAT_COL,
    LON_COL,
    UNCERTAINTY_COL,
    OccurrenceStore,
)
from occcube.uncertainty import normalize_uncertainty

logger = logging.getLogger(__name__)

# Metadata keys persisted with every committed chunk
META_CURSOR = "assignment.cursor"
META_CHUNK_INDEX = "assignment.chunk_index"
META_RNG_STATE = "assignment.rng_state"
META_FINGERPRINT = "assignment.fingerprint"
META_COMPLETE = "assignment.complete"


@dataclass
class AssignmentSummary:
    """Counts reported at the end of a grid assignment run."""
    seed: int
    chunk_size: int
    chunks_processed: int = 0
    records_processed: int = 0
    uncertainty_replaced: int = 0
    resumed_from: Optional[int] = None
    elapsed_seconds: float = 0.0

    def to_dict(self):
        return {
            "seed": self.seed,
            "chunk_size": self.chunk_size,
            "chunks_processed": self.chunks_processed,
            "records_processed": self.records_processed,
            "uncertainty_replaced": self.uncertainty_replaced,
            "resumed_from": self.resumed_from,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


class GridAssignmentPipeline:
    """Assigns every record in an OccurrenceStore to a grid cell."""

    def __init__(
        self,
        store: OccurrenceStore,
        config: CubeConfig,
        rng: Optional[np.random.Generator] = None,
        projector: Optional[Projector] = None,
    ):
        self.store = store
        self.config = config
        self.rng = rng if rng is not None else make_rng(config.seed)
        self.projector = projector or Projector(config.source_crs, config.target_crs)

    def run(self, resume: bool = False) -> AssignmentSummary:
        """Process all (remaining) chunks. Returns an AssignmentSummary."""
        started = time.monotonic()
        summary = AssignmentSummary(seed=self.config.seed, chunk_size=self.config.chunk_size)
        fingerprint = self.config.fingerprint()

        cursor = None
        chunk_index = 0
        if resume:
            cursor, chunk_index = self._restore(fingerprint)
            summary.resumed_from = cursor
        else:
            self.store.reset_cells()
            self.store.set_meta(META_FINGERPRINT, fingerprint)

        logger.info(
            f"Grid assignment started: seed={self.config.seed}, chunk size={self.config.chunk_size}, "
            f"{self.config.source_crs} -> {self.config.target_crs}, cell size={self.config.cell_size} m"
        )
        if cursor is not None:
            logger.info(f"Resuming after gbifID {cursor} (chunk {chunk_index})")

        columns = [ID_COL, LAT_COL, LON_COL, UNCERTAINTY_COL]
        for chunk in self.store.iter_chunks(self.config.chunk_size, columns=columns, after=cursor):
            n_replaced = self.process_chunk(chunk, chunk_index)

            summary.chunks_processed += 1
            summary.records_processed += len(chunk)
            summary.uncertainty_replaced += n_replaced
            logger.info(
                f"Chunk {chunk_index}: {len(chunk)} records assigned "
                f"(gbifID {chunk[ID_COL].iloc[0]} to {chunk[ID_COL].iloc[-1]}), "
                f"{n_replaced} default uncertainties"
            )
            chunk_index += 1

        self.store.set_meta(META_COMPLETE, True)
        summary.elapsed_seconds = time.monotonic() - started
        logger.info(
            f"Grid assignment completed: {summary.records_processed} records in "
            f"{summary.chunks_processed} chunks ({summary.elapsed_seconds:.1f} s)"
        )
        return summary

    def process_chunk(self, chunk, chunk_index: int) -> int:
        """
        Normalize, project, sample and assign one chunk, then commit it.
        Returns the number of substituted uncertainties.
        """
        ids = chunk[ID_COL].to_numpy()
        first_id, last_id = ids[0], ids[-1]

        uncertainty, n_replaced = normalize_uncertainty(
            chunk[UNCERTAINTY_COL], default=self.config.default_uncertainty
        )
        if n_replaced:
            logger.debug(f"Chunk {chunk_index}: {n_replaced} missing or zero uncertainties replaced")

        try:
            x, y = self.projector.project(
                chunk[LON_COL].to_numpy(dtype="float64"),
                chunk[LAT_COL].to_numpy(dtype="float64"),
                ids=ids,
            )
        except ProjectionError as e:
            error = e.with_chunk(chunk_index, first_id, last_id)
            logger.error(f"Grid assignment aborted: {error}")
            raise error from e

        sx, sy = sample_points(x, y, uncertainty.to_numpy(), self.rng)

        result = chunk[[ID_COL]].copy()
        result[UNCERTAINTY_COL] = uncertainty.to_numpy()
        result[CELL_COL] = assign_grid_cells(sx, sy, self.config.cell_size)

        self.store.update_cells(
            result,
            meta={
                META_CURSOR: int(last_id),
                META_CHUNK_INDEX: chunk_index + 1,
                META_RNG_STATE: self.rng.bit_generator.state,
            },
        )
        return n_replaced

    def _restore(self, fingerprint):
        """Load cursor and generator state of an interrupted run."""
        stored = self.store.get_meta(META_FINGERPRINT)
        if stored is None:
            raise ValueError("No previous grid assignment to resume in this store")
        if stored != fingerprint:
            raise ValueError(
                f"Cannot resume: run configuration changed (stored {stored}, current {fingerprint})"
            )

        cursor = self.store.get_meta(META_CURSOR)
        chunk_index = self.store.get_meta(META_CHUNK_INDEX, 0)
        state = self.store.get_meta(META_RNG_STATE)
        if state is not None:
            self.rng.bit_generator.state = state
        return cursor, chunk_index


def assign_cells(
    store: OccurrenceStore,
    config: CubeConfig,
    rng: Optional[np.random.Generator] = None,
    resume: bool = False,
) -> AssignmentSummary:
    """Run the chunked grid assignment over a store."""
    return GridAssignmentPipeline(store, config, rng=rng).run(resume=resume)
