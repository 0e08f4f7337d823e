"""
Tests for the grid-wide smoothing driver.
"""

import multiprocessing

import numpy as np
import pytest
import xarray as xr

from tmax_normals.contracts import GridSmoothingSummary
from tmax_normals.core.exceptions import InvalidBandwidthError, NumericNonConvergenceError
from tmax_normals.core.grid_smoother import (
    STATUS_ALL_MISSING,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SMOOTHED,
    GridSmoother,
    GridSmoothingConfig,
    smooth_grid,
    smooth_pixel_block,
)
from tmax_normals.core.seasonal_smoother import smooth_seasonal_series


class TestGridSmoothingConfig:

    def test_defaults(self):
        config = GridSmoothingConfig()
        assert config.bandwidth == pytest.approx(1 / 32)
        assert config.iterations == 3
        assert config.max_workers == 1

    def test_auto_detect_workers(self):
        config = GridSmoothingConfig(max_workers=0)
        assert config.max_workers >= 1

    def test_invalid_pixels_per_task(self):
        with pytest.raises(ValueError):
            GridSmoothingConfig(pixels_per_task=0)


class TestSmoothPixelBlock:

    def test_statuses(self, mixed_grid):
        block = mixed_grid.reshape(-1, mixed_grid.shape[-1])
        smoothed, status, failures = smooth_pixel_block(block, 1 / 32, 3, None)

        assert smoothed.shape == block.shape
        assert list(status) == [STATUS_ALL_MISSING, STATUS_SMOOTHED, STATUS_SMOOTHED, STATUS_SMOOTHED]
        assert failures == []
        assert np.isnan(smoothed[0]).all()
        np.testing.assert_allclose(smoothed[1], 15.0, atol=1e-8)

    def test_length_mismatch_isolated(self, mixed_grid):
        block = mixed_grid.reshape(-1, mixed_grid.shape[-1])
        smoothed, status, failures = smooth_pixel_block(block, 1 / 32, 3, 366)

        assert (status == STATUS_FAILED).all()
        assert len(failures) == 4
        assert failures[0][1] == "LengthMismatchError"
        assert np.isnan(smoothed).all()

    def test_unexpected_error_isolated(self, monkeypatch, mixed_grid):
        import tmax_normals.core.grid_smoother as module

        def broken(series, **kwargs):
            if np.nanmean(series) > 20.0:
                raise RuntimeError("regression blew up")
            return smooth_seasonal_series(series, **kwargs)

        monkeypatch.setattr(module, "smooth_seasonal_series", broken)
        block = mixed_grid.reshape(-1, mixed_grid.shape[-1])
        smoothed, status, failures = smooth_pixel_block(block, 1 / 32, 3, None)

        assert list(status) == [STATUS_ALL_MISSING, STATUS_SMOOTHED, STATUS_FAILED, STATUS_SMOOTHED]
        assert failures == [(2, "RuntimeError", "regression blew up")]
        assert np.isnan(smoothed[2]).all()
        assert not np.isnan(smoothed[3]).any()


class TestGridSmoother:

    def test_matches_single_series_smoother(self, mixed_grid):
        result = GridSmoother(GridSmoothingConfig(pixels_per_task=1)).smooth(mixed_grid)

        assert result.data.shape == mixed_grid.shape
        for i in range(2):
            for j in range(2):
                expected = smooth_seasonal_series(mixed_grid[i, j])
                np.testing.assert_array_equal(result.data[i, j], expected)

    def test_status_counts(self, mixed_grid):
        result = smooth_grid(mixed_grid)

        assert result.status.shape == (2, 2)
        assert result.status[0, 0] == STATUS_ALL_MISSING
        assert result.total_pixels == 4
        assert result.smoothed_pixels == 3
        assert result.all_missing_pixels == 1
        assert result.failed_pixels == 0
        assert result.skipped_pixels == 0
        assert not result.cancelled

    def test_input_untouched(self, mixed_grid):
        original = mixed_grid.copy()
        smooth_grid(mixed_grid)
        np.testing.assert_array_equal(mixed_grid, original)

    def test_invalid_bandwidth_raised_before_work(self, mixed_grid):
        calls = []
        smoother = GridSmoother(GridSmoothingConfig(bandwidth=1.5),
                                progress_callback=lambda done, total: calls.append(done))
        with pytest.raises(InvalidBandwidthError):
            smoother.smooth(mixed_grid)
        assert calls == []

    def test_empty_day_axis_rejected(self):
        with pytest.raises(ValueError):
            smooth_grid(np.empty((2, 2, 0)))

    def test_failed_pixel_isolated(self, monkeypatch, mixed_grid):
        import tmax_normals.core.grid_smoother as module

        def flaky(series, **kwargs):
            if np.nanmean(series) > 20.0:
                raise NumericNonConvergenceError("did not converge")
            return smooth_seasonal_series(series, **kwargs)

        monkeypatch.setattr(module, "smooth_seasonal_series", flaky)
        result = GridSmoother(GridSmoothingConfig(pixels_per_task=3)).smooth(mixed_grid)

        # Only pixel (1, 0) has a mean above 20
        assert result.status[1, 0] == STATUS_FAILED
        assert np.isnan(result.data[1, 0]).all()
        assert result.failed_pixels == 1
        assert result.smoothed_pixels == 2
        assert result.failures[0].index == (1, 0)
        assert result.failures[0].error_type == "NumericNonConvergenceError"
        np.testing.assert_allclose(result.data[0, 1], 15.0, atol=1e-8)

    def test_progress_callback(self, mixed_grid):
        calls = []
        smoother = GridSmoother(GridSmoothingConfig(pixels_per_task=1),
                                progress_callback=lambda done, total: calls.append((done, total)))
        smoother.smooth(mixed_grid)
        assert calls == [(1, 4), (2, 4), (3, 4), (4, 4)]

    def test_cancel_stops_dispatch(self, mixed_grid):
        smoother = GridSmoother(GridSmoothingConfig(pixels_per_task=1))

        def cancel_after_first(done, total):
            if done == 1:
                smoother.cancel()

        smoother.progress_callback = cancel_after_first
        result = smoother.smooth(mixed_grid)

        assert result.cancelled
        assert result.status[0, 0] == STATUS_ALL_MISSING
        assert result.skipped_pixels == 3
        assert (result.status.ravel()[1:] == STATUS_PENDING).all()
        assert np.isnan(result.data[1]).all()

    def test_cancel_flag_reset_between_runs(self, mixed_grid):
        smoother = GridSmoother()
        smoother.cancel()
        result = smoother.smooth(mixed_grid)
        assert not result.cancelled
        assert result.skipped_pixels == 0

    def test_parallel_matches_serial(self, mixed_grid):
        serial = smooth_grid(mixed_grid, max_workers=1)
        parallel = smooth_grid(mixed_grid, max_workers=2, pixels_per_task=1)

        np.testing.assert_array_equal(parallel.data, serial.data)
        np.testing.assert_array_equal(parallel.status, serial.status)

    @pytest.mark.parametrize("max_workers", [1, 2])
    def test_unexpected_error_costs_one_pixel(self, monkeypatch, mixed_grid, max_workers):
        if max_workers > 1 and multiprocessing.get_start_method() != "fork":
            pytest.skip("patched module state only reaches workers under fork")

        import tmax_normals.core.grid_smoother as module

        def broken(series, **kwargs):
            if np.nanmean(series) > 20.0:
                raise RuntimeError("regression blew up")
            return smooth_seasonal_series(series, **kwargs)

        monkeypatch.setattr(module, "smooth_seasonal_series", broken)
        result = GridSmoother(GridSmoothingConfig(max_workers=max_workers, pixels_per_task=4)).smooth(mixed_grid)

        assert result.status[1, 0] == STATUS_FAILED
        assert result.failed_pixels == 1
        assert result.smoothed_pixels == 2
        assert result.all_missing_pixels == 1
        assert len(result.failures) == 1
        assert result.failures[0].index == (1, 0)
        assert result.failures[0].error_type == "RuntimeError"
        np.testing.assert_array_equal(result.data[1, 1], smooth_seasonal_series(mixed_grid[1, 1]))

    def test_parallel_cancel_stops_dispatch(self, mixed_grid):
        grid = np.tile(mixed_grid, (2, 2, 1))
        smoother = GridSmoother(GridSmoothingConfig(max_workers=2, pixels_per_task=1))
        smoother.progress_callback = lambda done, total: smoother.cancel()

        result = smoother.smooth(grid)
        serial = smooth_grid(grid)

        # Two blocks per worker are in flight before the first one completes
        assert result.cancelled
        assert result.skipped_pixels == 16 - 4
        processed = result.status != STATUS_PENDING
        np.testing.assert_array_equal(result.status[processed], serial.status[processed])
        np.testing.assert_array_equal(result.data[processed], serial.data[processed])
        assert np.isnan(result.data[~processed]).all()

    @pytest.mark.parametrize("max_workers", [1, 2])
    def test_callback_error_propagates(self, mixed_grid, max_workers):
        def failing_callback(done, total):
            raise ValueError("callback failed")

        smoother = GridSmoother(GridSmoothingConfig(max_workers=max_workers, pixels_per_task=1),
                                progress_callback=failing_callback)
        with pytest.raises(ValueError, match="callback failed"):
            smoother.smooth(mixed_grid)

    def test_one_dimensional_grid(self, noisy_seasonal_series):
        result = smooth_grid(noisy_seasonal_series)
        assert result.data.shape == (365,)
        assert result.total_pixels == 1
        np.testing.assert_array_equal(result.data, smooth_seasonal_series(noisy_seasonal_series))


class TestSmoothDataArray:

    def test_coords_and_attrs(self, climatology_dataarray):
        smoothed, result = GridSmoother().smooth_dataarray(climatology_dataarray)

        assert smoothed.dims == climatology_dataarray.dims
        xr.testing.assert_equal(smoothed['lat'], climatology_dataarray['lat'])
        assert smoothed.name == "tmax"
        assert smoothed.attrs['units'] == "degC"
        assert smoothed.attrs['smoothing_method'] == "circular_lowess"
        assert smoothed.attrs['smoothing_window_days'] == pytest.approx(1 / 32 * 3 * 365)
        assert result.smoothed_pixels == 3

    def test_values_follow_pixel_layout(self, climatology_dataarray, mixed_grid):
        smoothed, _ = GridSmoother().smooth_dataarray(climatology_dataarray)
        expected = smooth_seasonal_series(mixed_grid[1, 1])
        np.testing.assert_array_equal(smoothed.isel(lat=1, lon=1).values, expected)

    def test_missing_dim(self, climatology_dataarray):
        with pytest.raises(ValueError):
            GridSmoother().smooth_dataarray(climatology_dataarray, dim="time")


class TestSummary:

    def test_summary_contract(self, mixed_grid):
        result = smooth_grid(mixed_grid)
        summary = result.summary(source="clim.nc")

        assert isinstance(summary, GridSmoothingSummary)
        assert summary.shape == (2, 2, 365)
        assert summary.parameters.series_length == 365
        assert summary.success_rate == 1.0
        assert summary.source == "clim.nc"

    def test_summary_truncates_failures(self, mixed_grid):
        result = GridSmoother(GridSmoothingConfig(expected_length=366)).smooth(mixed_grid)
        summary = result.summary(max_failures=2)

        assert summary.failed_pixels == 4
        assert len(summary.failures) == 2
        assert summary.success_rate == 0.0
