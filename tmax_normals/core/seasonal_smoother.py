#!/usr/bin/env python3
"""
Circular Seasonal Smoothing for Daily Climatology Series

Smooths a per-pixel daily climatology (one sample per day-of-year) with a
robust locally-weighted regression (LOWESS) while treating the year as
periodic: day n is followed by day 1.

The series is tripled ([x, x, x]), smoothed as an ordinary non-periodic
sequence, and the middle copy is returned. Every output day therefore has a
full neighbourhood of real samples on both sides, including the days around
the December -> January boundary.

The bandwidth is the fraction of the *tripled* sequence (3n samples) used as
each local neighbourhood, so the effective window in days is
``bandwidth * 3n``.
"""

import logging
from typing import Optional

import numpy as np
from statsmodels.nonparametric.smoothers_lowess import lowess

from tmax_normals.core.exceptions import (
    InvalidBandwidthError,
    LengthMismatchError,
    NumericNonConvergenceError,
)

logger = logging.getLogger(__name__)

DEFAULT_BANDWIDTH = 1.0 / 32.0
DEFAULT_ITERATIONS = 3

# Smallest neighbourhood that still supports a local linear fit
MIN_NEIGHBOURS = 3

# Robustness passes are skipped once the residual MAD falls below this
# fraction of the mean absolute signal (classical LOWESS convergence check)
MAD_CONVERGENCE_RATIO = 1e-7


def validate_bandwidth(bandwidth: float) -> float:
    """Return ``bandwidth`` as a float, raising if it lies outside (0, 1]."""
    try:
        value = float(bandwidth)
    except (TypeError, ValueError):
        raise InvalidBandwidthError(f"Bandwidth must be a number, got {bandwidth!r}") from None

    if not np.isfinite(value) or value <= 0.0 or value > 1.0:
        raise InvalidBandwidthError(f"Bandwidth must lie in (0, 1], got {value}")
    return value


def effective_window_days(bandwidth: float, n: int) -> float:
    """Width of the smoothing neighbourhood in days for a series of length ``n``."""
    return validate_bandwidth(bandwidth) * 3 * n


def triple_series(series: np.ndarray) -> np.ndarray:
    """Concatenate a series with itself three times: [x, x, x]."""
    series = np.asarray(series, dtype=float)
    return np.concatenate([series, series, series])


def extract_center(tripled: np.ndarray, n: int) -> np.ndarray:
    """Return the middle copy (positions n .. 2n-1) of a tripled series."""
    if len(tripled) != 3 * n:
        raise ValueError(f"Expected {3 * n} samples in tripled series, got {len(tripled)}")
    return np.array(tripled[n:2 * n], dtype=float)


def _lowess_fit(values: np.ndarray, bandwidth: float, iterations: int) -> np.ndarray:
    """Fit LOWESS over a sequence indexed 0..len-1, NaN where input is missing."""
    positions = np.arange(len(values), dtype=float)

    fitted = lowess(
        values, positions,
        frac=bandwidth,
        it=0,
        delta=0.0,
        is_sorted=True,
        missing='drop',
        return_sorted=False,
    )
    if iterations <= 0:
        return fitted

    valid = np.isfinite(values)
    residuals = np.abs(values[valid] - fitted[valid])
    scale = np.mean(np.abs(values[valid]))
    if np.median(residuals) <= MAD_CONVERGENCE_RATIO * scale:
        # Fit is already exact for most samples, robustness weights would be degenerate
        return fitted

    return lowess(
        values, positions,
        frac=bandwidth,
        it=iterations,
        delta=0.0,
        is_sorted=True,
        missing='drop',
        return_sorted=False,
    )


def smooth_seasonal_series(series,
                           bandwidth: float = DEFAULT_BANDWIDTH,
                           iterations: int = DEFAULT_ITERATIONS,
                           expected_length: Optional[int] = None) -> np.ndarray:
    """
    Smooth a daily climatology series with a circular (year-wrapping) LOWESS.

    Args:
        series: Samples indexed by day-of-year (index 0 is January 1). NaN
            marks a missing sample.
        bandwidth: Fraction of the tripled series (3n samples) used for each
            local fit. Must lie in (0, 1].
        iterations: Number of robustness iterations.
        expected_length: Length the series must have, if given.

    Returns:
        A new array with the same length as ``series``. An all-missing input
        is returned unchanged (as a copy).

    Raises:
        InvalidBandwidthError: If ``bandwidth`` is outside (0, 1].
        LengthMismatchError: If ``len(series) != expected_length``.
        NumericNonConvergenceError: If the fit yields non-finite values where
            the input was valid.
    """
    bandwidth = validate_bandwidth(bandwidth)

    values = np.array(series, dtype=float).ravel()
    n = len(values)

    if expected_length is not None and n != expected_length:
        raise LengthMismatchError(n, expected_length)

    valid = np.isfinite(values)
    if not valid.any():
        return values

    tripled = triple_series(values)

    # Too few valid samples for a local linear fit: interpolation limit
    if int(bandwidth * 3 * valid.sum() + 1e-10) < MIN_NEIGHBOURS:
        logger.debug(f"Neighbourhood below {MIN_NEIGHBOURS} samples, returning series unchanged")
        return values

    try:
        fitted = _lowess_fit(tripled, bandwidth, iterations)
    except (ValueError, ZeroDivisionError, FloatingPointError, np.linalg.LinAlgError) as e:
        raise NumericNonConvergenceError(f"LOWESS fit failed: {e}") from e

    smoothed = extract_center(fitted, n)

    if not np.all(np.isfinite(smoothed[valid])):
        raise NumericNonConvergenceError(
            f"LOWESS produced {int((~np.isfinite(smoothed[valid])).sum())} non-finite values"
        )

    # Missing days stay missing
    smoothed[~valid] = np.nan
    return smoothed
