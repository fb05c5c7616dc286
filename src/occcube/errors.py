"""
Module: errors.py
Project: GBIF occurrence cubes (occcube)

Description:
Exception and warning types shared by the cube pipeline.

Notes:
- ProjectionError is fatal for a run and carries the chunk context.
- MissingUncertaintyWarning is informational only; the default radius is
  substituted and processing continues.
- AggregationKeyError marks a record that cannot be placed in the cube;
  such records are counted, never fatal.
- ExternalLookupFailure is raised by taxonomy lookups and is retryable by
  the caller.
"""

from typing import Optional, Sequence


class OccCubeError(Exception):
    """Base class for errors raised by occcube."""


class ProjectionError(OccCubeError):
    """A batch of coordinates could not be reprojected."""

    def __init__(
        self,
        message: str,
        record_ids: Optional[Sequence] = None,
        chunk_index: Optional[int] = None,
        first_id=None,
        last_id=None,
    ):
        self.message = message
        self.record_ids = list(record_ids) if record_ids is not None else []
        self.chunk_index = chunk_index
        self.first_id = first_id
        self.last_id = last_id
        super().__init__(str(self))

    def with_chunk(self, chunk_index: int, first_id, last_id) -> "ProjectionError":
        """Return a copy annotated with the boundaries of the failing chunk."""
        return ProjectionError(
            self.message,
            record_ids=self.record_ids,
            chunk_index=chunk_index,
            first_id=first_id,
            last_id=last_id,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.chunk_index is not None:
            parts.append(
                f"chunk {self.chunk_index} (gbifID {self.first_id} to {self.last_id})"
            )
        if self.record_ids:
            shown = ", ".join(str(i) for i in self.record_ids[:10])
            more = len(self.record_ids) - 10
            if more > 0:
                shown += f" and {more} more"
            parts.append(f"failing records: {shown}")
        return "; ".join(parts)


class MissingUncertaintyWarning(UserWarning):
    """Coordinate uncertainty was missing or zero and the default was used."""


class AggregationKeyError(OccCubeError, KeyError):
    """A record misses a field required to build its cube key."""

    def __init__(self, field: str, reason: str = "absent"):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}:{reason}")

    @property
    def label(self) -> str:
        return f"{self.field}:{self.reason}"

    def __str__(self) -> str:
        return f"cannot build cube key: {self.field} is {self.reason}"


class ExternalLookupFailure(OccCubeError):
    """The taxonomy service could not provide data for a key."""

    def __init__(self, key, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"taxonomy lookup failed for key {key}: {reason}")


class DownloadError(OccCubeError):
    """The GBIF occurrence download could not be requested or retrieved."""
