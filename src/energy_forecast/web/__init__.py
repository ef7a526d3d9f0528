"""
Web dashboard module for EnergyForecast.

PURPOSE: FastAPI-based web UI with htmx for dynamic updates.
AI CONTEXT: Thin layer over EnergyForecastApp; all state lives in the
orchestrator, routes only call its setters and render presenters.

FEATURES:
- Navigable usage chart (day/week/month/year)
- Server-side chart rendering (matplotlib)
- htmx polling while a fetch is in flight
- JSON endpoints for state, forecast and cache inspection

USAGE:
    # Via CLI
    energy-forecast dashboard

    # Programmatically
    from energy_forecast.web import create_app
    app = create_app()
    # Run with uvicorn
"""

from .app import create_app, run_dashboard

__all__ = ["create_app", "run_dashboard"]
