#!/usr/bin/env python3
"""
Map and frame rendering for daily climatologies.

Renders single-day maps, one PNG frame per day for animations (using a colour
scale shared by every frame), pixel curves comparing raw and smoothed
series, and colour-classed choropleths of polygon means.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend
import matplotlib.pyplot as plt
from matplotlib.colors import BoundaryNorm
import geopandas as gpd
import numpy as np
import xarray as xr

logger = logging.getLogger(__name__)

MONTH_STARTS_NOLEAP = [1, 32, 60, 91, 121, 152, 182, 213, 244, 274, 305, 335]
MONTH_LABELS = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
                'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']


def shared_color_limits(cube: xr.DataArray, percentile: float = 1.0):
    """Robust (vmin, vmax) over the whole cube so frames share one scale."""
    values = np.asarray(cube.values, dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return 0.0, 1.0
    vmin, vmax = np.percentile(values, [percentile, 100 - percentile])
    if vmin == vmax:
        vmax = vmin + 1.0
    return float(vmin), float(vmax)


def render_day_map(cube: xr.DataArray,
                   day: int,
                   output_path: Union[str, Path],
                   day_dim: str = "dayofyear",
                   cmap: str = "RdYlBu_r",
                   vmin: Optional[float] = None,
                   vmax: Optional[float] = None,
                   title: Optional[str] = None,
                   units: Optional[str] = None,
                   dpi: int = 100) -> Path:
    """
    Render one day-of-year of a climatology as a map.

    Returns:
        Path of the written image
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    field = cube.sel({day_dim: day})
    units = units if units is not None else cube.attrs.get('units', '°C')

    fig, ax = plt.subplots(figsize=(10, 6))
    mesh = field.plot.pcolormesh(ax=ax, x='lon', y='lat', cmap=cmap, vmin=vmin, vmax=vmax,
                                 add_colorbar=False)
    cbar = fig.colorbar(mesh, ax=ax, shrink=0.8)
    cbar.set_label(units)

    ax.set_title(title or f"{cube.name or 'tmax'} - day {day}")
    ax.set_xlabel('Longitude')
    ax.set_ylabel('Latitude')
    ax.set_aspect('equal')

    fig.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    return output_path


def render_animation_frames(cube: xr.DataArray,
                            output_dir: Union[str, Path],
                            days: Optional[Iterable[int]] = None,
                            step: int = 1,
                            day_dim: str = "dayofyear",
                            cmap: str = "RdYlBu_r",
                            vmin: Optional[float] = None,
                            vmax: Optional[float] = None,
                            prefix: str = "frame",
                            dpi: int = 100) -> List[Path]:
    """
    Render one PNG per day-of-year with a colour scale shared by all frames.

    Args:
        cube: Climatology with a ``day_dim`` dimension.
        output_dir: Directory for the frames.
        days: Days to render; all days of the cube if None.
        step: Keep every ``step``-th day.

    Returns:
        Frame paths in day order, named ``{prefix}_{day:03d}.png``.
    """
    if step < 1:
        raise ValueError(f"step must be >= 1, got {step}")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if days is None:
        days = cube[day_dim].values
    days = [int(d) for d in days][::step]

    if vmin is None or vmax is None:
        auto_min, auto_max = shared_color_limits(cube)
        vmin = auto_min if vmin is None else vmin
        vmax = auto_max if vmax is None else vmax

    frames = []
    for day in days:
        frame_path = output_dir / f"{prefix}_{day:03d}.png"
        render_day_map(cube, day, frame_path, day_dim=day_dim, cmap=cmap,
                       vmin=vmin, vmax=vmax, dpi=dpi)
        frames.append(frame_path)

    logger.info(f"Rendered {len(frames)} frames to {output_dir}")
    return frames


def plot_pixel_series(raw: Sequence[float],
                      smoothed: Sequence[float],
                      output_path: Union[str, Path],
                      title: str = "Daily climatology",
                      units: str = "°C",
                      dpi: int = 100) -> Path:
    """Plot a raw daily climatology and its smoothed curve for one pixel."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    raw = np.asarray(raw, dtype=float)
    smoothed = np.asarray(smoothed, dtype=float)
    days = np.arange(1, len(raw) + 1)

    fig, ax = plt.subplots(figsize=(10, 4))
    ax.plot(days, raw, color='lightgray', linewidth=0.8, label='Daily mean')
    ax.plot(days, smoothed, color='firebrick', linewidth=2, label='Smoothed')
    ax.set_xticks(MONTH_STARTS_NOLEAP)
    ax.set_xticklabels(MONTH_LABELS)
    ax.set_xlim(1, len(raw))
    ax.set_ylabel(units)
    ax.set_title(title)
    ax.legend(loc='upper left')
    ax.grid(True, alpha=0.3)

    fig.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    return output_path


def render_zonal_choropleth(polygons: gpd.GeoDataFrame,
                            values,
                            output_path: Union[str, Path],
                            bins: Sequence[float],
                            id_column: Optional[str] = None,
                            cmap: str = "RdYlBu_r",
                            title: Optional[str] = None,
                            dpi: int = 100) -> Path:
    """
    Colour-classed choropleth of per-polygon values.

    Args:
        polygons: Polygons to draw.
        values: Sequence aligned with ``polygons`` or, with ``id_column``, a
            mapping / Series keyed by polygon id.
        bins: Class boundaries (at least two, increasing).
    """
    bins = list(bins)
    if len(bins) < 2 or any(b >= a for a, b in zip(bins[1:], bins[:-1])):
        raise ValueError("bins must contain at least two increasing boundaries")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    gdf = polygons.copy()
    if id_column is not None:
        gdf['value'] = gdf[id_column].map(dict(values))
    else:
        gdf['value'] = np.asarray(values, dtype=float)

    colormap = plt.get_cmap(cmap)
    norm = BoundaryNorm(bins, colormap.N, extend='both')

    fig, ax = plt.subplots(figsize=(10, 6))
    gdf.plot(column='value', ax=ax, cmap=colormap, norm=norm, edgecolor='black',
             linewidth=0.3, legend=True, missing_kwds={'color': 'lightgray'})
    ax.set_title(title or 'Zonal mean')
    ax.set_axis_off()

    fig.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    return output_path
