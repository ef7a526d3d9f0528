"""
EnergyForecast.

PURPOSE: Browse half-hourly electricity consumption and forecast the month.
AI CONTEXT: Client for the Octopus Energy Japan (Kraken) GraphQL API with a
cached, prefetching fetch pipeline and a server-rendered dashboard.

PACKAGE STRUCTURE:
- timezone.py: UTC <-> JST conversion
- periods.py: Fetch window computation per view granularity
- cache.py: TTL cache persisted to a single JSON slot
- aggregator.py: Chart bucketing and monthly forecast
- orchestrator.py: Displayed/target/prefetch state machine
- auth.py: Token pair with single-flight refresh-and-retry
- api.py: GraphQL transport (httpx)
- application.py: Explicit dependency root and bootstrap login
- presenters.py: View models and matplotlib charts
- web/: FastAPI dashboard

QUICK START:
    # Launch dashboard
    python -m energy_forecast dashboard

    # Print a usage report
    python -m energy_forecast report --granularity month
"""

from energy_forecast.__version__ import (
    __author__,
    __copyright__,
    __description__,
    __license__,
    __title__,
    __url__,
    __version__,
    __version_date__,
)

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
