"""
Package entry point for python -m execution.

USAGE:
    python -m energy_forecast dashboard  # Launch web dashboard
    python -m energy_forecast report     # Print usage report
    python -m energy_forecast cache list # Inspect the response cache
"""

import sys

from energy_forecast.cli import main

if __name__ == "__main__":
    sys.exit(main())
