"""
CLI entry point for EnergyForecast.

PURPOSE: Command-line interface for the dashboard, text reports and cache
maintenance.
AI CONTEXT: Main entry points for package execution.

USAGE:
    # Via CLI command (after install)
    energy-forecast dashboard                   # Launch web dashboard
    energy-forecast report --granularity month  # Print usage + forecast
    energy-forecast cache list                  # Show cached windows
    energy-forecast cache clear                 # Drop the cache

    # Or as a module
    python -m energy_forecast report --date 2024-03-10
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from functools import lru_cache
from typing import TYPE_CHECKING

from .config import Config
from .errors import AuthError, InvalidDate, NetworkError, UnknownGranularity
from .models import ViewGranularity

if TYPE_CHECKING:
    from .application import EnergyForecastApp
    from .cache import PersistentCache
    from .presenters import DashboardOverview

PROG_NAME = "energy-forecast"


@lru_cache(maxsize=1)
def _get_logger() -> logging.Logger:
    """Get module logger (cached for thread safety)."""
    logging.basicConfig(level=logging.INFO)
    return logging.getLogger(__name__)


def _log(message: str, *, emoji: str = "") -> None:
    prefix = f"{emoji} " if emoji else ""
    _get_logger().info(f"{prefix}{message}")


def run_dashboard(host: str = Config.DEFAULT_HOST, port: int = Config.DEFAULT_PORT) -> None:
    """
    Launch the web dashboard.

    Blocks until the server is stopped (Ctrl+C).

    Raises:
        OSError: If port is already in use.
        ImportError: If FastAPI/uvicorn are not installed.
    """
    from .web import run_dashboard as start_web

    _log(f"Starting dashboard at http://{host}:{port}", emoji="🚀")
    if not Config.has_credentials():
        _log("ENERGY_FORECAST_* not set; log in from the browser")
    _log("Press Ctrl+C to stop")
    start_web(host=host, port=port)


def format_report(overview: DashboardOverview) -> str:
    """
    Render an overview as plain text.

    Example:
        >>> print(format_report(overview))
        ==================================================
        ENERGY FORECAST - DAY 2024-03-09
        ==================================================
        00:00-00:30      0.25 kWh
        ...
    """
    granularity = overview.granularity.value.upper()
    lines = [
        "=" * 50,
        f"ENERGY FORECAST - {granularity} {overview.period_label}",
        "=" * 50,
    ]
    for bucket in overview.buckets:
        lines.append(f"{bucket.label:<16} {bucket.value:>8.2f} kWh")
    lines.append("-" * 50)
    lines.append(f"{'Total':<16} {overview.total:>8.2f} kWh")

    if overview.forecast is not None:
        fc = overview.forecast
        lines.extend(
            [
                "",
                f"MONTHLY FORECAST ({fc.month_name})",
                f"  Daily average:    {fc.daily_average_display}",
                f"  Forecast usage:   {fc.monthly_forecast_display}",
                f"  Forecast charge:  {fc.forecast_cost_display}",
                f"  Charge so far:    {fc.current_cost_display}",
                f"  Progress:         day {fc.forecast.current_day} of {fc.forecast.days_in_month}",
            ]
        )
    return "\n".join(lines)


async def _load_overview(
    app: EnergyForecastApp,
    granularity: ViewGranularity,
    reference_date: str | None,
) -> DashboardOverview:
    """Log in with environment credentials and wait for the period to display."""
    from .presenters import DashboardPresenter

    credentials = Config.get_credentials()
    if credentials is None:
        raise AuthError(
            "Set ENERGY_FORECAST_EMAIL, ENERGY_FORECAST_PASSWORD and ENERGY_FORECAST_ACCOUNT_NUMBER"
        )
    try:
        orchestrator = await app.login(
            credentials.email,
            credentials.password,
            credentials.account_number,
            initial_date=reference_date,
            granularity=granularity,
        )
        await orchestrator.wait_for_display()
        return DashboardPresenter(app).get_overview()
    finally:
        await app.close()


def run_report(
    granularity: str = ViewGranularity.DAY.value,
    reference_date: str | None = None,
    app: EnergyForecastApp | None = None,
) -> int:
    """
    Print one period's buckets, total and (month view) forecast to stdout.

    Served from the cache when the period was fetched within the TTL.

    Args:
        granularity: day, week, month or year.
        reference_date: ISO date (YYYY-MM-DD). Default: today.
        app: Application root for testability. Default: new EnergyForecastApp.

    Returns:
        0 on success, 1 when login or the fetch failed.
    """
    from .application import EnergyForecastApp as App

    try:
        g = ViewGranularity.parse(granularity)
        app = app or App()
        overview = asyncio.run(_load_overview(app, g, reference_date))
    except (UnknownGranularity, InvalidDate) as e:
        _log(str(e), emoji="❌")
        return 2
    except (AuthError, NetworkError) as e:
        _log(f"Login failed: {e}", emoji="❌")
        return 1

    if overview.state is not None and overview.state.error:
        _log(f"Fetch failed: {overview.state.error}", emoji="❌")
        return 1
    # Note: Using print() intentionally for stdout piping support
    print(format_report(overview))
    return 0


def run_cache(action: str, cache: PersistentCache | None = None) -> int:
    """
    List or clear the persisted response cache.

    Args:
        action: "list" or "clear".
        cache: PersistentCache for testability. Default: storage from Config.

    Returns:
        0 on success.
    """
    from .cache import PersistentCache as Cache

    cache = cache or Cache()
    if action == "clear":
        count = len(cache.list_keys())
        cache.clear()
        _log(f"Cleared {count} cache entries", emoji="🧹")
        return 0

    rows = cache.status()
    if not rows:
        print("Cache is empty")
        return 0
    for row in rows:
        flag = " (expired)" if row["expired"] else ""
        print(f"{row['key']:<35} {row['age']:>8} {row['size']:>8} B{flag}")
    return 0


def main() -> int:
    """
    Main CLI entry point for EnergyForecast.

    Subcommands:
    - dashboard [--host HOST] [--port PORT]: Launch web dashboard (default)
    - report [--granularity G] [--date YYYY-MM-DD]: Print usage report
    - cache {list,clear}: Inspect or drop the response cache

    Returns:
        Exit code: 0 success, 1 login/fetch failure, 2 invalid arguments.

    Raises:
        SystemExit: On --help or argument parsing errors.
    """
    from .__version__ import __version__

    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="EnergyForecast - electricity usage dashboard and monthly forecast",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Dashboard command
    dashboard_parser = subparsers.add_parser(
        "dashboard",
        help="Launch web dashboard",
    )
    dashboard_parser.add_argument(
        "--host",
        default=Config.DEFAULT_HOST,
        help=f"Bind address (default: {Config.DEFAULT_HOST})",
    )
    dashboard_parser.add_argument(
        "--port",
        type=int,
        default=Config.DEFAULT_PORT,
        help=f"Port number (default: {Config.DEFAULT_PORT})",
    )

    # Report command
    report_parser = subparsers.add_parser(
        "report",
        help="Print usage report to stdout",
    )
    report_parser.add_argument(
        "--granularity",
        choices=[g.value for g in ViewGranularity],
        default=ViewGranularity.DAY.value,
        help="View granularity (default: day)",
    )
    report_parser.add_argument(
        "--date",
        default=None,
        help="Reference date YYYY-MM-DD (default: today)",
    )

    # Cache command
    cache_parser = subparsers.add_parser(
        "cache",
        help="Inspect or clear the response cache",
    )
    cache_parser.add_argument("action", choices=["list", "clear"])

    args = parser.parse_args()

    if args.command == "report":
        return run_report(granularity=args.granularity, reference_date=args.date)
    if args.command == "cache":
        return run_cache(args.action)
    if args.command == "dashboard":
        run_dashboard(host=args.host, port=args.port)
    else:
        # Default: dashboard on the default address
        run_dashboard()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
