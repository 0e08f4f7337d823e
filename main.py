#!/usr/bin/env python3
"""
Tmax Normals - Main Entry Point

Runs the tmax-normals command line interface from a source checkout:

    python main.py climatology --start-year 1991 --end-year 2020
    python main.py smooth output/climatology/tmax_climatology.nc --max-workers 6
"""

import sys

from tmax_normals.cli import main

if __name__ == "__main__":
    sys.exit(main())
