#!/usr/bin/env python3
"""
Daily Climatology Calculations

Turns a multi-year stack of daily rasters into a per-pixel daily climatology:
the mean of every pixel for each day-of-year across the years in the stack.

Days are aligned by calendar date, not by position in the year, so index 1 is
always January 1 and every later index names the same calendar day in every
year. Two conventions are supported:

- ``noleap``: 365 days, February 29 observations are dropped
- ``all_leap``: 366 days, February 29 is day 60 and only leap years feed it
"""

import logging
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd
import xarray as xr

logger = logging.getLogger(__name__)


class DayOfYearConvention(str, Enum):
    """Day-of-year calendar convention."""
    NOLEAP = "noleap"
    ALL_LEAP = "all_leap"


def climatology_length(convention) -> int:
    """Number of days in a climatology for ``convention``."""
    convention = DayOfYearConvention(convention)
    return 365 if convention == DayOfYearConvention.NOLEAP else 366


def is_feb29(times) -> np.ndarray:
    """Boolean mask of February 29 timestamps."""
    index = pd.DatetimeIndex(times)
    return np.asarray((index.month == 2) & (index.day == 29))


def calendar_day_of_year(times, convention=DayOfYearConvention.NOLEAP) -> np.ndarray:
    """
    Day-of-year index aligned on calendar date.

    Under ``noleap`` February 29 maps to 60, the same index as March 1;
    callers are expected to drop those timestamps first.
    """
    convention = DayOfYearConvention(convention)
    index = pd.DatetimeIndex(times)

    day_of_year = np.asarray(index.dayofyear, dtype=int)
    leap_year = np.asarray(index.is_leap_year)
    after_february = np.asarray(index.month > 2)

    if convention == DayOfYearConvention.NOLEAP:
        return np.where(leap_year & after_february, day_of_year - 1, day_of_year)
    return np.where(~leap_year & after_february, day_of_year + 1, day_of_year)


def assign_day_of_year(da: xr.DataArray,
                       convention=DayOfYearConvention.NOLEAP,
                       time_dim: str = "time") -> xr.DataArray:
    """Attach a ``dayofyear`` coordinate along ``time_dim``, dropping Feb 29 for noleap."""
    if time_dim not in da.dims:
        raise ValueError(f"No '{time_dim}' dimension found in {da.dims}")

    convention = DayOfYearConvention(convention)

    if convention == DayOfYearConvention.NOLEAP:
        feb29 = is_feb29(da[time_dim].values)
        if feb29.any():
            logger.debug(f"Dropping {int(feb29.sum())} February 29 time steps")
            da = da.isel({time_dim: ~feb29})

    day_of_year = calendar_day_of_year(da[time_dim].values, convention)
    return da.assign_coords(dayofyear=(time_dim, day_of_year))


def compute_daily_climatology(da: xr.DataArray,
                              convention=DayOfYearConvention.NOLEAP,
                              start_year: Optional[int] = None,
                              end_year: Optional[int] = None,
                              min_years: int = 1,
                              time_dim: str = "time") -> xr.DataArray:
    """
    Compute the mean of every pixel for each day-of-year.

    Args:
        da: Daily data with a datetime ``time_dim`` dimension.
        convention: Day-of-year convention (``noleap`` or ``all_leap``).
        start_year: First year to include (inclusive).
        end_year: Last year to include (inclusive).
        min_years: Minimum number of valid samples for a day to be kept;
            days with fewer become missing.
        time_dim: Name of the time dimension.

    Returns:
        DataArray with ``dayofyear`` replacing ``time_dim``, covering
        1..365 or 1..366 in order.
    """
    convention = DayOfYearConvention(convention)
    n_days = climatology_length(convention)

    if start_year is not None or end_year is not None:
        years = pd.DatetimeIndex(da[time_dim].values).year
        keep = np.ones(len(years), dtype=bool)
        if start_year is not None:
            keep &= years >= start_year
        if end_year is not None:
            keep &= years <= end_year
        da = da.isel({time_dim: keep})

    if da.sizes[time_dim] == 0:
        raise ValueError(f"No time steps left between {start_year} and {end_year}")

    da = assign_day_of_year(da, convention, time_dim=time_dim)

    climatology = da.groupby("dayofyear").mean(dim=time_dim, skipna=True)
    counts = da.notnull().groupby("dayofyear").sum(dim=time_dim)
    climatology = climatology.where(counts >= min_years)

    climatology = climatology.reindex(dayofyear=np.arange(1, n_days + 1))

    years = pd.DatetimeIndex(da[time_dim].values).year
    climatology.name = da.name
    climatology.attrs = dict(da.attrs)
    climatology.attrs.update({
        'climatology_start_year': int(years.min()),
        'climatology_end_year': int(years.max()),
        'day_of_year_convention': convention.value,
        'min_years': int(min_years),
    })

    logger.info(f"Computed {n_days}-day climatology from {da.sizes[time_dim]} daily fields "
                f"({int(years.min())}-{int(years.max())})")
    return climatology
