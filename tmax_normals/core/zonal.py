"""
Zonal averaging of gridded daily climatologies.

Averages a (dayofyear, lat, lon) climatology over polygons such as states,
counties or provinces, producing one daily curve per polygon. Polygons must
already be in the grid's longitude/latitude coordinates.
"""

import logging
import warnings
from typing import Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import xarray as xr
from rasterio.features import rasterize
from rasterio.transform import from_origin

logger = logging.getLogger(__name__)


def _grid_geometry(lats: np.ndarray, lons: np.ndarray) -> Tuple[float, float, float, float]:
    """Return (west, north, lon_spacing, lat_spacing) from cell-centre coordinates."""
    if len(lats) < 2 or len(lons) < 2:
        raise ValueError("Zonal averaging needs at least two latitudes and two longitudes")

    lon_spacing = float(np.abs(np.diff(lons)).mean())
    lat_spacing = float(np.abs(np.diff(lats)).mean())
    west = float(lons.min()) - lon_spacing / 2
    north = float(lats.max()) + lat_spacing / 2
    return west, north, lon_spacing, lat_spacing


def polygon_mask(geometry, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """
    Boolean (lat, lon) mask of grid cells whose centres fall inside ``geometry``.

    The mask is laid out in the order of ``lats`` and ``lons`` as given,
    whichever direction they run.
    """
    west, north, lon_spacing, lat_spacing = _grid_geometry(lats, lons)
    transform = from_origin(west, north, lon_spacing, lat_spacing)

    mask = rasterize(
        [(geometry, 1)],
        out_shape=(len(lats), len(lons)),
        transform=transform,
        fill=0,
        dtype='uint8'
    ).astype(bool)

    # Rasterized rows run north to south and columns west to east
    if lats[0] < lats[-1]:
        mask = mask[::-1, :]
    if lons[0] > lons[-1]:
        mask = mask[:, ::-1]
    return mask


def _nearest_cell_mask(geometry, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """Mask selecting the cell nearest to the polygon centroid, empty if it lies off-grid."""
    mask = np.zeros((len(lats), len(lons)), dtype=bool)
    _, _, lon_spacing, lat_spacing = _grid_geometry(lats, lons)

    centroid = geometry.centroid
    lon_diff = np.abs(lons - centroid.x)
    lat_diff = np.abs(lats - centroid.y)
    lon_idx = int(np.argmin(lon_diff))
    lat_idx = int(np.argmin(lat_diff))

    if lon_diff[lon_idx] <= 0.75 * lon_spacing and lat_diff[lat_idx] <= 0.75 * lat_spacing:
        mask[lat_idx, lon_idx] = True
    return mask


def zonal_daily_means(cube: xr.DataArray,
                      polygons: gpd.GeoDataFrame,
                      id_column: str,
                      day_dim: str = "dayofyear",
                      lat_name: str = "lat",
                      lon_name: str = "lon") -> pd.DataFrame:
    """
    Average a daily climatology over each polygon.

    Args:
        cube: Climatology with ``day_dim``, ``lat_name`` and ``lon_name`` dims.
        polygons: Polygons in the grid's lon/lat coordinates.
        id_column: Column identifying each polygon.

    Returns:
        pandas.DataFrame with columns:
            - id: Polygon identifier
            - dayofyear: Day-of-year index
            - value: NaN-aware mean over the polygon's cells
            - pixel_count: Number of grid cells assigned to the polygon
    """
    if id_column not in polygons.columns:
        raise ValueError(f"Column '{id_column}' not found in polygons")

    ordered = cube.transpose(day_dim, lat_name, lon_name)
    values = ordered.values
    lats = ordered[lat_name].values
    lons = ordered[lon_name].values
    days = ordered[day_dim].values

    frames = []
    fallback_count = 0

    for _, row in polygons.iterrows():
        geometry = row['geometry']
        if geometry is None or geometry.is_empty:
            continue

        mask = polygon_mask(geometry, lats, lons)
        if not mask.any():
            mask = _nearest_cell_mask(geometry, lats, lons)
            if mask.any():
                fallback_count += 1

        pixel_count = int(mask.sum())
        if pixel_count:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", category=RuntimeWarning)
                daily = np.nanmean(values[:, mask], axis=1)
        else:
            daily = np.full(len(days), np.nan)

        frames.append(pd.DataFrame({
            'id': row[id_column],
            'dayofyear': days,
            'value': daily,
            'pixel_count': pixel_count,
        }))

    if fallback_count:
        logger.info(f"{fallback_count} polygons used the nearest grid cell to their centroid")

    if not frames:
        return pd.DataFrame(columns=['id', 'dayofyear', 'value', 'pixel_count'])

    result = pd.concat(frames, ignore_index=True)
    logger.info(f"Computed daily means for {len(frames)} polygons")
    return result
