"""
Module: projection.py
Project: GBIF occurrence cubes (occcube)

Description:
Reprojects geographic coordinates (degrees) to the planar grid CRS
(meters). The CRS pair is fixed per Projector instance; changing it
changes every downstream cell assignment.

Notes:
Batches are reprojected as a whole. A single invalid coordinate fails the
batch with a ProjectionError listing the offending record ids.
"""

from typing import Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
from pyproj import CRS
from pyproj.exceptions import CRSError

from occcube.config import DEFAULT_SOURCE_CRS, DEFAULT_TARGET_CRS
from occcube.errors import ProjectionError


class Projector:
    """Vectorized reprojection from a geographic to a projected CRS."""

    def __init__(self, source_crs: str = DEFAULT_SOURCE_CRS, target_crs: str = DEFAULT_TARGET_CRS):
        try:
            self.source_crs = CRS.from_user_input(source_crs)
            self.target_crs = CRS.from_user_input(target_crs)
        except CRSError as e:
            raise ProjectionError(f"Invalid CRS definition: {e}") from e

        if not self.target_crs.is_projected:
            raise ProjectionError(f"Target CRS {target_crs} is not a projected CRS")

    def __repr__(self) -> str:
        return f"Projector({self.source_crs.to_string()} -> {self.target_crs.to_string()})"

    def project(
        self,
        lon: Sequence[float],
        lat: Sequence[float],
        ids: Optional[Sequence] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Reproject (lon, lat) pairs to planar (x, y) in meters.

        Raises ProjectionError if any input is not finite, lies outside
        the valid range of a geographic source CRS, or reprojects to a
        non-finite value.
        """
        lon = np.asarray(lon, dtype="float64")
        lat = np.asarray(lat, dtype="float64")
        if lon.shape != lat.shape:
            raise ProjectionError(
                f"Longitude and latitude batches differ in length ({lon.size} vs {lat.size})"
            )
        ids = np.arange(lon.size) if ids is None else np.asarray(ids)

        if lon.size == 0:
            return np.empty(0), np.empty(0)

        invalid = ~np.isfinite(lon) | ~np.isfinite(lat)
        if self.source_crs.is_geographic:
            with np.errstate(invalid="ignore"):
                invalid |= (np.abs(lat) > 90) | (np.abs(lon) > 180)
        if invalid.any():
            raise ProjectionError(
                f"{int(invalid.sum())} coordinates outside the domain of {self.source_crs.to_string()}",
                record_ids=ids[invalid].tolist(),
            )

        points = gpd.GeoSeries(gpd.points_from_xy(lon, lat), crs=self.source_crs)
        projected = points.to_crs(self.target_crs)
        x = projected.x.to_numpy(dtype="float64")
        y = projected.y.to_numpy(dtype="float64")

        failed = ~np.isfinite(x) | ~np.isfinite(y)
        if failed.any():
            raise ProjectionError(
                f"{int(failed.sum())} coordinates could not be reprojected to "
                f"{self.target_crs.to_string()}",
                record_ids=ids[failed].tolist(),
            )
        return x, y
