"""
Tmax Normals - Smoothed daily maximum-temperature climatologies.

A package for turning daily temperature rasters (PRISM, STEAD) into
per-pixel daily climatologies, smoothing them across the year with a
circular LOWESS, and rendering the result as maps and animation frames.
"""

__version__ = "0.1.0"

from .core.seasonal_smoother import smooth_seasonal_series
from .core.grid_smoother import GridSmoother, GridSmoothingConfig, smooth_grid
from .core.climatology import DayOfYearConvention, compute_daily_climatology

__all__ = [
    "smooth_seasonal_series",
    "GridSmoother",
    "GridSmoothingConfig",
    "smooth_grid",
    "DayOfYearConvention",
    "compute_daily_climatology",
]
