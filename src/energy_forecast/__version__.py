"""Version information for energy-forecast."""

__version__ = "0.3.0"
__version_date__ = "2026-10-18"

__title__ = "energy_forecast"
__description__ = "Half-hourly electricity usage dashboard with monthly forecasting"
__url__ = "https://github.com/energy-forecast/energy-forecast"

__author__ = "EnergyForecast contributors"

__license__ = "MIT"
__copyright__ = "Copyright 2025 EnergyForecast contributors"

__all__ = [
    "__version__",
    "__version_date__",
    "__title__",
    "__description__",
    "__url__",
    "__author__",
    "__license__",
    "__copyright__",
]
