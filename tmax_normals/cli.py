#!/usr/bin/env python3
"""
Tmax Normals - Command Line Interface

Builds smoothed daily maximum-temperature climatologies from daily rasters.

Usage Examples:
    # Daily climatology from a directory of PRISM rasters
    tmax-normals climatology --input-dir data/prism_tmax --start-year 1991 --end-year 2020

    # Smooth every pixel with 6 worker processes
    tmax-normals smooth output/climatology/tmax_climatology.nc --max-workers 6

    # Daily means per polygon
    tmax-normals zonal output/climatology/tmax_smoothed.nc --polygons states.gpkg --id-column NAME

    # One PNG frame per week
    tmax-normals render output/climatology/tmax_smoothed.nc --step 7

    # Write a sample configuration file
    tmax-normals create-config
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from tmax_normals.config import ClimateConfig, LoggingConfig, create_sample_config
from tmax_normals.core.climatology import climatology_length, compute_daily_climatology
from tmax_normals.core.exceptions import ConfigurationError, SeasonalSmoothingError
from tmax_normals.core.grid_smoother import GridSmoother, GridSmoothingConfig
from tmax_normals.utils.io_util import (
    DailyRasterFileHandler,
    open_climatology,
    save_climatology,
    stack_daily_rasters,
)
from tmax_normals.utils.rich_progress import RichProgressTracker

logger = logging.getLogger("tmax_normals")


def setup_logging(logging_config: LoggingConfig):
    """Configure root logging from the logging settings."""
    handlers = []
    if logging_config.console_output:
        handlers.append(logging.StreamHandler())
    if logging_config.log_file:
        handlers.append(logging.FileHandler(logging_config.log_file))
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=getattr(logging, logging_config.level.upper(), logging.INFO),
        format=logging_config.format,
        handlers=handlers,
        force=True,
    )


def climatology_command(args, config: ClimateConfig) -> bool:
    """Stack daily rasters and compute the daily climatology."""
    input_dir = Path(args.input_dir) if args.input_dir else config.paths.input_data_dir
    pattern = args.pattern or config.paths.file_pattern

    handler = DailyRasterFileHandler(input_dir, pattern=pattern)
    if args.start_year is not None and args.end_year is not None:
        files = handler.get_files_for_period(args.start_year, args.end_year)
    else:
        files = handler.list_files()

    if not files:
        logger.error(f"❌ No dated raster files found in {input_dir}")
        return False

    logger.info(f"📁 Found {len(files)} daily rasters in {input_dir}")

    cube = stack_daily_rasters(files, variable=args.variable or config.paths.variable,
                               nodata=config.paths.nodata)
    climatology = compute_daily_climatology(
        cube,
        convention=args.convention or config.smoothing.day_convention,
        start_year=args.start_year,
        end_year=args.end_year,
        min_years=config.smoothing.min_years,
    )

    output = Path(args.output) if args.output else config.paths.climatology_dir / "tmax_climatology.nc"
    save_climatology(climatology, output, compression_level=config.processing.compression_level)
    logger.info(f"💾 Daily climatology written to {output}")
    return True


def default_smoothed_path(input_path: Path) -> Path:
    """tmax_climatology.nc -> tmax_smoothed.nc, anything else gets a _smoothed suffix."""
    stem = input_path.stem
    if "climatology" in stem:
        return input_path.with_name(stem.replace("climatology", "smoothed") + ".nc")
    return input_path.with_name(f"{stem}_smoothed.nc")


def smooth_command(args, config: ClimateConfig) -> bool:
    """Smooth every pixel of a daily climatology."""
    climatology = open_climatology(args.input, variable=args.variable)

    grid_config = GridSmoothingConfig(
        bandwidth=args.bandwidth if args.bandwidth is not None else config.smoothing.bandwidth,
        iterations=config.smoothing.iterations,
        expected_length=climatology_length(config.smoothing.day_convention),
        max_workers=args.max_workers if args.max_workers is not None else config.processing.max_workers,
        pixels_per_task=args.pixels_per_task or config.processing.pixels_per_task,
        progress_interval=config.processing.progress_interval,
        use_rich_progress=args.rich_progress and config.processing.use_rich_progress,
    )

    tracker = RichProgressTracker() if grid_config.use_rich_progress else None
    smoother = GridSmoother(grid_config, rich_tracker=tracker)

    start_time = time.time()
    if tracker:
        with tracker:
            smoothed, result = smoother.smooth_dataarray(climatology, dim=args.dim)
    else:
        smoothed, result = smoother.smooth_dataarray(climatology, dim=args.dim)
    duration = time.time() - start_time

    output = Path(args.output) if args.output else default_smoothed_path(Path(args.input))
    save_climatology(smoothed, output, compression_level=config.processing.compression_level)

    summary = result.summary(source=str(args.input))
    summary_path = output.with_suffix(".summary.json")
    summary_path.write_text(summary.model_dump_json(indent=2))

    logger.info(f"⏱️  Smoothed {result.total_pixels} pixels in {duration:.1f} seconds")
    logger.info(f"💾 Smoothed climatology written to {output}")

    if result.failed_pixels:
        logger.warning(f"❌ {result.failed_pixels} pixels failed and were set to missing "
                       f"(see {summary_path})")
    return True


def zonal_command(args, config: ClimateConfig) -> bool:
    """Average a climatology over polygons."""
    import geopandas as gpd
    from tmax_normals.core.zonal import zonal_daily_means

    climatology = open_climatology(args.input, variable=args.variable)
    polygons = gpd.read_file(args.polygons)

    table = zonal_daily_means(climatology, polygons, id_column=args.id_column)

    output = Path(args.output) if args.output else config.paths.output_dir / "zonal_daily_means.csv"
    output.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(output, index=False)

    logger.info(f"💾 Zonal means for {table['id'].nunique()} polygons written to {output}")
    return True


def render_command(args, config: ClimateConfig) -> bool:
    """Render one day map or a full set of animation frames."""
    from tmax_normals.visualization.maps import render_animation_frames, render_day_map

    climatology = open_climatology(args.input, variable=args.variable)
    viz = config.visualization
    output_dir = Path(args.output_dir) if args.output_dir else config.paths.frames_dir

    if args.day is not None:
        path = render_day_map(climatology, args.day, output_dir / f"day_{args.day:03d}.png",
                              cmap=viz.cmap, vmin=viz.vmin, vmax=viz.vmax, dpi=viz.dpi)
        logger.info(f"🗺️  Map written to {path}")
    else:
        frames = render_animation_frames(climatology, output_dir, step=args.step or viz.frame_step,
                                         cmap=viz.cmap, vmin=viz.vmin, vmax=viz.vmax, dpi=viz.dpi)
        logger.info(f"🗺️  {len(frames)} frames written to {output_dir}")
    return True


def create_config_command(args, config: ClimateConfig) -> bool:
    """Create a sample configuration file."""
    path = create_sample_config(Path(args.output))
    logger.info(f"✅ Sample configuration created: {path}")
    return True


COMMANDS = {
    'climatology': climatology_command,
    'smooth': smooth_command,
    'zonal': zonal_command,
    'render': render_command,
    'create-config': create_config_command,
}


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="tmax-normals",
        description="Smoothed daily maximum-temperature climatologies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--config-file', help='YAML configuration file')
    parser.add_argument('--log-level', help='Override the configured log level')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    clim_parser = subparsers.add_parser('climatology', help='Compute a daily climatology from daily rasters')
    clim_parser.add_argument('--input-dir', help='Directory of daily rasters')
    clim_parser.add_argument('--pattern', help='Glob pattern for raster files')
    clim_parser.add_argument('--variable', help='Variable name inside NetCDF files')
    clim_parser.add_argument('--start-year', type=int, help='First year (inclusive)')
    clim_parser.add_argument('--end-year', type=int, help='Last year (inclusive)')
    clim_parser.add_argument('--convention', choices=['noleap', 'all_leap'],
                             help='Day-of-year convention (365 or 366 days)')
    clim_parser.add_argument('--output', '-o', help='Output NetCDF file')

    smooth_parser = subparsers.add_parser('smooth', help='Smooth a daily climatology per pixel')
    smooth_parser.add_argument('input', help='Daily climatology NetCDF file')
    smooth_parser.add_argument('--variable', help='Variable name inside the file')
    smooth_parser.add_argument('--dim', default='dayofyear', help='Day-of-year dimension name')
    smooth_parser.add_argument('--bandwidth', type=float,
                               help='Fraction of the tripled series used per local fit')
    smooth_parser.add_argument('--max-workers', type=int,
                               help='Worker processes (1 runs in-process, 0 auto-detects)')
    smooth_parser.add_argument('--pixels-per-task', type=int, help='Pixels per worker task')
    smooth_parser.add_argument('--no-rich-progress', dest='rich_progress', action='store_false',
                               help='Disable rich progress tracking (use simple logging instead)')
    smooth_parser.add_argument('--output', '-o', help='Output NetCDF file')

    zonal_parser = subparsers.add_parser('zonal', help='Daily means over polygons')
    zonal_parser.add_argument('input', help='Climatology NetCDF file')
    zonal_parser.add_argument('--polygons', required=True, help='Vector file with polygons')
    zonal_parser.add_argument('--id-column', required=True, help='Polygon identifier column')
    zonal_parser.add_argument('--variable', help='Variable name inside the file')
    zonal_parser.add_argument('--output', '-o', help='Output CSV file')

    render_parser = subparsers.add_parser('render', help='Render maps or animation frames')
    render_parser.add_argument('input', help='Climatology NetCDF file')
    render_parser.add_argument('--variable', help='Variable name inside the file')
    render_parser.add_argument('--day', type=int, help='Render a single day-of-year')
    render_parser.add_argument('--step', type=int, help='Render every STEP-th day')
    render_parser.add_argument('--output-dir', help='Directory for images')

    config_parser = subparsers.add_parser('create-config', help='Create sample configuration file')
    config_parser.add_argument('--output', '-o', default='tmax_normals.yaml',
                               help='Output configuration file name')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with argument parsing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = ClimateConfig.load(args.config_file)
    except ConfigurationError as e:
        setup_logging(LoggingConfig())
        logger.error(f"❌ Invalid configuration: {e}")
        return 1

    if args.log_level:
        config.logging.level = args.log_level
    setup_logging(config.logging)

    logger.info(f"🚀 Starting command: {args.command}")

    try:
        success = COMMANDS[args.command](args, config)
    except KeyboardInterrupt:
        logger.info("🛑 Processing interrupted by user")
        return 1
    except (SeasonalSmoothingError, ConfigurationError, ValueError, KeyError, OSError) as e:
        logger.error(f"❌ Command '{args.command}' failed: {e}")
        return 1

    if success:
        logger.info(f"✅ Command '{args.command}' completed successfully")
        return 0

    logger.error(f"❌ Command '{args.command}' failed")
    return 1


if __name__ == "__main__":
    sys.exit(main())
