#!/usr/bin/env python3
"""
Grid-wide Seasonal Smoothing Engine

Applies the circular seasonal smoother to every pixel of a gridded daily
climatology. Pixels are independent, so the grid is split into blocks of
pixels that are smoothed by a fixed-size process pool:

- The pool is created for a single ``smooth()`` call and shut down afterwards
- Each block writes into its own slice of a pre-allocated output array
- Output is assembled by pixel index, never by completion order
- A failing pixel becomes all-missing and is recorded; the rest continue
- ``cancel()`` stops dispatching new blocks, in-flight blocks finish normally
"""

import logging
import multiprocessing as mp
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np
import psutil
import xarray as xr

from tmax_normals.contracts import (
    GridSmoothingSummary,
    PixelFailureContract,
    SmoothingParametersContract,
)
from tmax_normals.core.exceptions import SeasonalSmoothingError
from tmax_normals.core.seasonal_smoother import (
    DEFAULT_BANDWIDTH,
    DEFAULT_ITERATIONS,
    smooth_seasonal_series,
    validate_bandwidth,
)
from tmax_normals.utils.rich_progress import RichProgressTracker

logger = logging.getLogger(__name__)

# Per-pixel status codes stored in GridSmoothingResult.status
STATUS_PENDING = 0
STATUS_SMOOTHED = 1
STATUS_ALL_MISSING = 2
STATUS_FAILED = 3


# =============================================================================
# CONFIGURATION AND RESULTS
# =============================================================================

@dataclass
class GridSmoothingConfig:
    """Configuration for smoothing a whole grid."""

    # Smoother settings
    bandwidth: float = DEFAULT_BANDWIDTH
    iterations: int = DEFAULT_ITERATIONS
    expected_length: Optional[int] = None  # None: no length check

    # Worker pool
    max_workers: int = 1  # 1 runs in-process, 0 auto-detects
    pixels_per_task: int = 2048
    memory_per_worker_gb: float = 1.0

    # Progress and monitoring
    progress_interval: int = 10  # blocks between progress log lines
    use_rich_progress: bool = False
    max_reported_failures: int = 20

    def __post_init__(self):
        """Validate and optimize configuration."""
        if self.pixels_per_task < 1:
            raise ValueError(f"pixels_per_task must be >= 1, got {self.pixels_per_task}")

        if self.max_workers <= 0:
            self.max_workers = self._auto_detect_optimal_workers()

    def _auto_detect_optimal_workers(self) -> int:
        """Auto-detect number of workers based on system resources."""
        cpu_count = mp.cpu_count()
        memory_gb = psutil.virtual_memory().total / (1024**3)

        max_workers_by_memory = max(1, int(memory_gb / self.memory_per_worker_gb))
        max_workers_by_cpu = max(1, cpu_count - 1)

        optimal_workers = min(max_workers_by_memory, max_workers_by_cpu)

        logger.info(f"Auto-detected optimal workers: {optimal_workers} "
                    f"(CPU limit: {max_workers_by_cpu}, Memory limit: {max_workers_by_memory})")

        return optimal_workers


@dataclass
class PixelFailure:
    """A pixel whose series could not be smoothed."""
    index: Tuple[int, ...]
    error_type: str
    message: str


@dataclass
class GridSmoothingResult:
    """Smoothed grid plus per-pixel bookkeeping."""
    data: np.ndarray
    status: np.ndarray
    bandwidth: float
    iterations: int
    failures: List[PixelFailure] = field(default_factory=list)
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.data.shape

    @property
    def total_pixels(self) -> int:
        return int(self.status.size)

    @property
    def smoothed_pixels(self) -> int:
        return int(np.count_nonzero(self.status == STATUS_SMOOTHED))

    @property
    def all_missing_pixels(self) -> int:
        return int(np.count_nonzero(self.status == STATUS_ALL_MISSING))

    @property
    def failed_pixels(self) -> int:
        return int(np.count_nonzero(self.status == STATUS_FAILED))

    @property
    def skipped_pixels(self) -> int:
        return int(np.count_nonzero(self.status == STATUS_PENDING))

    def summary(self, max_failures: int = 20, source: Optional[str] = None) -> GridSmoothingSummary:
        """Build the serializable summary contract for this run."""
        return GridSmoothingSummary(
            shape=self.shape,
            total_pixels=self.total_pixels,
            smoothed_pixels=self.smoothed_pixels,
            all_missing_pixels=self.all_missing_pixels,
            failed_pixels=self.failed_pixels,
            skipped_pixels=self.skipped_pixels,
            cancelled=self.cancelled,
            elapsed_seconds=self.elapsed_seconds,
            parameters=SmoothingParametersContract(
                bandwidth=self.bandwidth,
                iterations=self.iterations,
                series_length=self.shape[-1],
            ),
            failures=[
                PixelFailureContract(index=f.index, error_type=f.error_type, message=f.message)
                for f in self.failures[:max_failures]
            ],
            source=source,
        )


# =============================================================================
# WORKER TASK
# =============================================================================

def smooth_pixel_block(block: np.ndarray,
                       bandwidth: float,
                       iterations: int,
                       expected_length: Optional[int]) -> Tuple[np.ndarray, np.ndarray, List[Tuple[int, str, str]]]:
    """
    Smooth a block of pixel series (rows of ``block``).

    Multiprocessing-safe: module level, no shared state, inputs are copies.

    Returns:
        Tuple of (smoothed block, status codes, failures) where failures are
        (row within block, error type, message).
    """
    smoothed = np.full(block.shape, np.nan)
    status = np.full(block.shape[0], STATUS_PENDING, dtype=np.int8)
    failures = []

    for row in range(block.shape[0]):
        series = block[row]
        try:
            smoothed[row] = smooth_seasonal_series(
                series,
                bandwidth=bandwidth,
                iterations=iterations,
                expected_length=expected_length,
            )
        except SeasonalSmoothingError as e:
            failures.append((row, type(e).__name__, str(e)))
            status[row] = STATUS_FAILED
            continue
        except Exception as e:
            # Anything else raised by the regression still only costs this pixel
            logger.debug(f"Unexpected {type(e).__name__} while smoothing row {row}", exc_info=True)
            failures.append((row, type(e).__name__, str(e)))
            status[row] = STATUS_FAILED
            continue

        if np.isnan(series).all():
            status[row] = STATUS_ALL_MISSING
        else:
            status[row] = STATUS_SMOOTHED

    return smoothed, status, failures


# =============================================================================
# GRID SMOOTHER
# =============================================================================

class GridSmoother:
    """
    Smooths every pixel of a grid with the circular seasonal smoother.

    The worker pool is owned by this object and only exists while
    :meth:`smooth` runs.
    """

    def __init__(self,
                 config: Optional[GridSmoothingConfig] = None,
                 progress_callback: Optional[Callable[[int, int], None]] = None,
                 rich_tracker: Optional[RichProgressTracker] = None):
        self.config = config or GridSmoothingConfig()
        self.progress_callback = progress_callback
        self.rich_tracker = rich_tracker
        self._cancel_event = threading.Event()
        self._start_time = None

        logger.info(f"Initialized GridSmoother with {self.config.max_workers} workers, "
                    f"bandwidth={self.config.bandwidth:.5f}")

    def cancel(self):
        """Stop dispatching new pixel blocks. Blocks already running complete."""
        logger.info("Cancellation requested, no further pixel blocks will be dispatched")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def smooth(self, cube) -> GridSmoothingResult:
        """
        Smooth every pixel of ``cube``.

        Args:
            cube: Array of shape (..., n) whose last axis is day-of-year.
                NaN marks missing samples.

        Returns:
            GridSmoothingResult with an output array of the same shape.

        Raises:
            InvalidBandwidthError: If the configured bandwidth is outside (0, 1].
            ValueError: If ``cube`` has no day-of-year axis.
        """
        bandwidth = validate_bandwidth(self.config.bandwidth)

        data = np.asarray(cube, dtype=float)
        if data.ndim < 1 or data.shape[-1] == 0:
            raise ValueError(f"Grid must have a non-empty day-of-year axis, got shape {data.shape}")

        spatial_shape = data.shape[:-1]
        n_days = data.shape[-1]
        pixels = data.reshape(-1, n_days)
        n_pixels = pixels.shape[0]

        output = np.full(pixels.shape, np.nan)
        status = np.full(n_pixels, STATUS_PENDING, dtype=np.int8)
        failures: List[PixelFailure] = []

        blocks = [
            (start, min(start + self.config.pixels_per_task, n_pixels))
            for start in range(0, n_pixels, self.config.pixels_per_task)
        ]

        self._cancel_event.clear()
        self._start_time = time.time()

        logger.info(f"Smoothing {n_pixels} pixels x {n_days} days in {len(blocks)} blocks "
                    f"using {self.config.max_workers} workers")

        task_name = None
        if self.rich_tracker:
            task_name = self.rich_tracker.add_task("smooth", "Smoothing pixels", total=n_pixels)

        def store(block_range: Tuple[int, int], smoothed, block_status, block_failures):
            start, stop = block_range
            output[start:stop] = smoothed
            status[start:stop] = block_status
            for row, error_type, message in block_failures:
                pixel_index = np.unravel_index(start + row, spatial_shape) if spatial_shape else ()
                index = tuple(int(i) for i in pixel_index)
                logger.warning(f"Pixel {index} could not be smoothed ({error_type}): {message}")
                failures.append(PixelFailure(index=index, error_type=error_type, message=message))

            done = int(np.count_nonzero(status != STATUS_PENDING))
            if self.rich_tracker and task_name:
                self.rich_tracker.update_task(task_name, advance=stop - start, failed=len(block_failures))
            if self.progress_callback:
                self.progress_callback(done, n_pixels)

        args = (bandwidth, self.config.iterations, self.config.expected_length)

        if self.config.max_workers == 1:
            self._run_serial(pixels, blocks, args, store)
        else:
            self._run_parallel(pixels, blocks, args, store)

        elapsed = time.time() - self._start_time

        result = GridSmoothingResult(
            data=output.reshape(data.shape),
            status=status.reshape(spatial_shape),
            bandwidth=bandwidth,
            iterations=self.config.iterations,
            failures=failures,
            cancelled=self.cancelled,
            elapsed_seconds=elapsed,
        )

        if self.rich_tracker and task_name:
            self.rich_tracker.complete_task(task_name, "cancelled" if result.cancelled else "completed")

        self._log_final_summary(result)
        return result

    def smooth_dataarray(self, da: xr.DataArray, dim: str = "dayofyear") -> Tuple[xr.DataArray, GridSmoothingResult]:
        """
        Smooth a DataArray along its day-of-year dimension.

        Dimension order, coordinates and attributes are preserved; smoothing
        parameters are recorded in the attributes.
        """
        if dim not in da.dims:
            raise ValueError(f"Dimension '{dim}' not found in {da.dims}")

        spatial_dims = [d for d in da.dims if d != dim]
        ordered = da.transpose(*spatial_dims, dim)

        result = self.smooth(ordered.values)

        smoothed = ordered.copy(data=result.data).transpose(*da.dims)
        smoothed.attrs = dict(da.attrs)
        smoothed.attrs.update({
            'smoothing_method': 'circular_lowess',
            'smoothing_bandwidth': result.bandwidth,
            'smoothing_iterations': result.iterations,
            'smoothing_window_days': result.bandwidth * 3 * da.sizes[dim],
        })
        return smoothed, result

    def _run_serial(self, pixels: np.ndarray, blocks, args, store):
        """Smooth blocks in the calling process."""
        for i, block_range in enumerate(blocks):
            if self.cancelled:
                break
            start, stop = block_range
            store(block_range, *smooth_pixel_block(pixels[start:stop], *args))
            if (i + 1) % self.config.progress_interval == 0:
                self._log_progress(i + 1, len(blocks))

    def _run_parallel(self, pixels: np.ndarray, blocks, args, store):
        """Smooth blocks on a process pool that lives only for this call."""
        block_iter: Iterator[Tuple[int, int]] = iter(blocks)
        in_flight: Dict[Future, Tuple[int, int]] = {}
        max_in_flight = self.config.max_workers * 2
        completed = 0

        with ProcessPoolExecutor(max_workers=self.config.max_workers) as executor:

            def dispatch():
                while len(in_flight) < max_in_flight and not self.cancelled:
                    block_range = next(block_iter, None)
                    if block_range is None:
                        return
                    start, stop = block_range
                    future = executor.submit(smooth_pixel_block, pixels[start:stop].copy(), *args)
                    in_flight[future] = block_range

            dispatch()
            while in_flight:
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    block_range = in_flight.pop(future)
                    completed += 1
                    try:
                        block_result = future.result()
                    except Exception as e:
                        # Worker died or the block could not be returned: isolate it
                        start, stop = block_range
                        logger.error(f"Pixel block {start}-{stop} failed: {e}")
                        rows = stop - start
                        block_result = (
                            np.full((rows, pixels.shape[1]), np.nan),
                            np.full(rows, STATUS_FAILED, dtype=np.int8),
                            [(row, type(e).__name__, str(e)) for row in range(rows)],
                        )
                    store(block_range, *block_result)

                    if completed % self.config.progress_interval == 0:
                        self._log_progress(completed, len(blocks))
                dispatch()

    def _log_progress(self, completed: int, total: int):
        """Log progress information."""
        if self._start_time:
            elapsed_time = time.time() - self._start_time
            current_memory = psutil.virtual_memory().percent
            avg_time_per_block = elapsed_time / completed if completed > 0 else 0

            logger.info(f"Progress: {completed}/{total} blocks "
                        f"(avg: {avg_time_per_block:.2f}s/block, memory: {current_memory:.1f}%)")

    def _log_final_summary(self, result: GridSmoothingResult):
        """Log final processing summary."""
        logger.info("=== Smoothing Summary ===")
        logger.info(f"Smoothed: {result.smoothed_pixels}/{result.total_pixels} pixels")
        logger.info(f"All-missing passed through: {result.all_missing_pixels} pixels")
        logger.info(f"Total time: {result.elapsed_seconds:.1f} seconds")

        if result.failed_pixels:
            logger.warning(f"Failed: {result.failed_pixels} pixels, "
                           f"first: {[f.index for f in result.failures[:5]]}")
        if result.cancelled:
            logger.warning(f"Cancelled: {result.skipped_pixels} pixels were not dispatched")


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def create_grid_smoother(bandwidth: float = DEFAULT_BANDWIDTH,
                         max_workers: int = 1,
                         use_rich_progress: bool = False,
                         **kwargs) -> GridSmoother:
    """
    Create a configured grid smoother.

    Args:
        bandwidth: Fraction of the tripled series used per local fit
        max_workers: Number of worker processes (0 auto-detects, 1 runs in-process)
        use_rich_progress: Whether to show rich progress bars
        **kwargs: Additional GridSmoothingConfig options
    """
    config = GridSmoothingConfig(bandwidth=bandwidth, max_workers=max_workers,
                                 use_rich_progress=use_rich_progress, **kwargs)
    tracker = RichProgressTracker() if use_rich_progress else None
    return GridSmoother(config, rich_tracker=tracker)


def smooth_grid(cube,
                bandwidth: float = DEFAULT_BANDWIDTH,
                max_workers: int = 1,
                **kwargs) -> GridSmoothingResult:
    """Smooth every pixel of ``cube`` (day-of-year on the last axis)."""
    smoother = create_grid_smoother(bandwidth=bandwidth, max_workers=max_workers, **kwargs)
    if smoother.rich_tracker:
        with smoother.rich_tracker:
            return smoother.smooth(cube)
    return smoother.smooth(cube)
