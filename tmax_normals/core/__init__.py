"""
Core climatology processing modules.

This package contains the seasonal smoother, the grid-wide smoothing engine,
daily climatology calculation and zonal averaging.
"""

# Errors
from .exceptions import (
    SeasonalSmoothingError,
    InvalidBandwidthError,
    LengthMismatchError,
    NumericNonConvergenceError,
    ConfigurationError,
)

# Single-series smoothing
from .seasonal_smoother import (
    DEFAULT_BANDWIDTH,
    smooth_seasonal_series,
    effective_window_days,
    triple_series,
    extract_center,
)

# Grid-wide smoothing
from .grid_smoother import (
    GridSmoothingConfig,
    GridSmoothingResult,
    GridSmoother,
    PixelFailure,
    create_grid_smoother,
    smooth_grid,
    smooth_pixel_block,
)

# Daily climatology
from .climatology import (
    DayOfYearConvention,
    calendar_day_of_year,
    assign_day_of_year,
    compute_daily_climatology,
    climatology_length,
)

__all__ = [
    # Errors
    'SeasonalSmoothingError',
    'InvalidBandwidthError',
    'LengthMismatchError',
    'NumericNonConvergenceError',
    'ConfigurationError',

    # Single-series smoothing
    'DEFAULT_BANDWIDTH',
    'smooth_seasonal_series',
    'effective_window_days',
    'triple_series',
    'extract_center',

    # Grid-wide smoothing
    'GridSmoothingConfig',
    'GridSmoothingResult',
    'GridSmoother',
    'PixelFailure',
    'create_grid_smoother',
    'smooth_grid',
    'smooth_pixel_block',

    # Daily climatology
    'DayOfYearConvention',
    'calendar_day_of_year',
    'assign_day_of_year',
    'compute_daily_climatology',
    'climatology_length',
]
