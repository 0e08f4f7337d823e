#!/usr/bin/env python3
"""
Simple I/O utilities for daily temperature rasters.

Finds daily raster files on disk (PRISM, STEAD, or anything carrying a
YYYYMMDD date in its file name), stacks them into a (time, lat, lon) cube,
and writes climatologies to NetCDF. Downloading is not handled here.
"""

import logging
import re
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import rioxarray
import xarray as xr

logger = logging.getLogger(__name__)

NETCDF_SUFFIXES = {'.nc', '.nc4', '.netcdf'}

_DATE_PATTERN = re.compile(r'(?<!\d)(\d{8})(?!\d)')


def extract_date_from_filename(file_path: Union[str, Path]) -> Optional[date]:
    """
    Extract the observation date from a daily raster filename.

    Expected formats:
    - PRISM_tmax_stable_4kmD2_YYYYMMDD_bil.bil
    - prism_tmax_us_30s_YYYYMMDD.tif
    - tmax_YYYYMMDD.nc
    """
    filename = Path(file_path).name
    for match in _DATE_PATTERN.finditer(filename):
        try:
            return datetime.strptime(match.group(1), "%Y%m%d").date()
        except ValueError:
            continue
    return None


class DailyRasterFileHandler:
    """
    File handler for a directory of daily rasters.

    Expected structure:
    data_dir/
    ├── PRISM_tmax_stable_4kmD2_19810101_bil.bil
    ├── PRISM_tmax_stable_4kmD2_19810102_bil.bil
    └── ...
    """

    def __init__(self, data_directory: Union[str, Path], pattern: str = "*"):
        self.data_dir = Path(data_directory)
        self.pattern = pattern

        if not self.data_dir.exists():
            raise FileNotFoundError(f"Data directory not found: {data_directory}")

        logger.info(f"Initialized file handler: {data_directory}")

    def list_files(self) -> List[Path]:
        """All dated files matching the pattern, sorted by date."""
        files = [
            path for path in self.data_dir.rglob(self.pattern)
            if path.is_file() and extract_date_from_filename(path) is not None
        ]
        files.sort(key=lambda p: (extract_date_from_filename(p), p.name))
        return files

    def get_files_for_period(self, start_year: int, end_year: int) -> List[Path]:
        """
        Get files for a year range.

        Args:
            start_year: Start year (inclusive)
            end_year: End year (inclusive)

        Returns:
            List of file paths sorted by date
        """
        files = [
            path for path in self.list_files()
            if start_year <= extract_date_from_filename(path).year <= end_year
        ]
        logger.debug(f"Found {len(files)} files for {start_year}-{end_year}")
        return files

    def get_available_years(self) -> Tuple[int, int]:
        """
        Get the available year range.

        Returns:
            Tuple of (start_year, end_year) or (0, 0) if no data found
        """
        years = [extract_date_from_filename(path).year for path in self.list_files()]
        if years:
            return min(years), max(years)
        return 0, 0


def _standardize_spatial_dims(da: xr.DataArray) -> xr.DataArray:
    """Rename x/y or longitude/latitude to lon/lat."""
    renames = {}
    for old, new in (('x', 'lon'), ('longitude', 'lon'), ('y', 'lat'), ('latitude', 'lat')):
        if old in da.dims and new not in da.dims:
            renames[old] = new
    return da.rename(renames) if renames else da


def open_daily_raster(file_path: Union[str, Path],
                      variable: Optional[str] = None,
                      nodata: Optional[float] = None) -> xr.DataArray:
    """
    Open one daily raster as a (lat, lon) DataArray with NaN for missing cells.

    NetCDF files are read with xarray; other formats (BIL, GeoTIFF) with
    rioxarray.
    """
    path = Path(file_path)

    if path.suffix.lower() in NETCDF_SUFFIXES:
        with xr.open_dataset(path) as ds:
            if variable is None:
                variable = list(ds.data_vars)[0]
            if variable not in ds.data_vars:
                raise KeyError(f"Variable '{variable}' not found in {path}")
            da = ds[variable].load()
    else:
        da = rioxarray.open_rasterio(path, masked=True).squeeze('band', drop=True).load()
        if variable:
            da.name = variable

    da = _standardize_spatial_dims(da)

    # Single-time NetCDF files carry a length-1 time axis
    for dim in list(da.dims):
        if dim not in ('lat', 'lon') and da.sizes[dim] == 1:
            da = da.isel({dim: 0}, drop=True)

    da = da.astype(float)
    if nodata is not None:
        da = da.where(da != nodata)

    return da


def stack_daily_rasters(files: Sequence[Union[str, Path]],
                        variable: Optional[str] = None,
                        nodata: Optional[float] = None) -> xr.DataArray:
    """
    Stack daily rasters into a (time, lat, lon) cube.

    The time coordinate comes from the dates in the file names; files without
    a date are skipped.
    """
    arrays = []
    times = []

    for file_path in files:
        file_date = extract_date_from_filename(file_path)
        if file_date is None:
            logger.warning(f"Skipping {file_path}: no date in filename")
            continue
        arrays.append(open_daily_raster(file_path, variable=variable, nodata=nodata))
        times.append(pd.Timestamp(file_date))

    if not arrays:
        raise ValueError("No dated raster files to stack")

    order = np.argsort(np.array(times, dtype='datetime64[ns]'), kind='stable')
    cube = xr.concat([arrays[i] for i in order], dim='time', join='exact')
    cube = cube.assign_coords(time=pd.DatetimeIndex([times[i] for i in order]))
    cube = cube.transpose('time', 'lat', 'lon')

    logger.info(f"Stacked {len(arrays)} daily rasters into cube {dict(cube.sizes)}")
    return cube


def open_climatology(file_path: Union[str, Path], variable: Optional[str] = None) -> xr.DataArray:
    """Load a climatology DataArray from NetCDF."""
    with xr.open_dataset(file_path) as ds:
        if variable is None:
            variable = list(ds.data_vars)[0]
        return ds[variable].load()


def save_climatology(da: xr.DataArray,
                     output_path: Union[str, Path],
                     compression_level: int = 4) -> Path:
    """
    Save a climatology to NetCDF with zlib compression.

    Returns:
        Path of the written file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    name = da.name or 'tmax'
    encoding = {name: {'zlib': True, 'complevel': compression_level}}
    da.to_dataset(name=name).to_netcdf(output_path, encoding=encoding)

    logger.info(f"Saved {name} {dict(da.sizes)} to {output_path}")
    return output_path
