"""
Shared fixtures for the tmax_normals test suite.

All data is synthetic: small grids of daily climatology series built from
sinusoids, steps and seeded noise.
"""

import numpy as np
import pytest
import xarray as xr


N_DAYS = 365


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Keep TMAX_* variables and user config files out of every test."""
    for name in ("TMAX_INPUT_DIR", "TMAX_OUTPUT_DIR", "TMAX_BANDWIDTH",
                 "TMAX_MAX_WORKERS", "TMAX_LOG_LEVEL", "TMAX_LOG_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def noisy_seasonal_series(rng):
    """A 365-day sinusoidal Tmax climatology with weather noise."""
    days = np.arange(N_DAYS)
    signal = 20.0 + 10.0 * np.sin(2 * np.pi * days / N_DAYS)
    return signal + rng.normal(0.0, 1.0, N_DAYS)


@pytest.fixture
def mixed_grid(rng):
    """2x2 grid: all-missing, constant, and two different noisy series."""
    days = np.arange(N_DAYS)
    cube = np.empty((2, 2, N_DAYS))
    cube[0, 0] = np.nan
    cube[0, 1] = 15.0
    cube[1, 0] = 25.0 + 8.0 * np.cos(2 * np.pi * days / N_DAYS) + rng.normal(0.0, 1.5, N_DAYS)
    cube[1, 1] = 12.0 - 6.0 * np.sin(2 * np.pi * days / N_DAYS) + rng.normal(0.0, 0.5, N_DAYS)
    return cube


@pytest.fixture
def climatology_dataarray(mixed_grid):
    """The mixed grid as a (dayofyear, lat, lon) DataArray."""
    return xr.DataArray(
        np.moveaxis(mixed_grid, -1, 0),
        dims=("dayofyear", "lat", "lon"),
        coords={
            "dayofyear": np.arange(1, N_DAYS + 1),
            "lat": [40.0, 40.5],
            "lon": [-105.0, -104.5],
        },
        name="tmax",
        attrs={"units": "degC"},
    )
