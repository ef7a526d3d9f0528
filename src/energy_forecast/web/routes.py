"""
FastAPI routes for the EnergyForecast dashboard.

PURPOSE: Thin route handlers that delegate to the orchestrator and presenters.
AI CONTEXT: Routes never fetch directly; they call orchestrator setters and
render the resulting state. Business logic lives in presenters.

ROUTE STRUCTURE:
- / : Main dashboard page (full HTML)
- /partials/usage : htmx partial, polls itself while a fetch is in flight
- /charts/usage.png : PNG chart of the displayed period
- /actions/* : POST setters (navigate, granularity, retry, login)
- /api/* : JSON endpoints for programmatic access
"""

from __future__ import annotations

import html
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel

from ..application import EnergyForecastApp
from ..errors import AuthError, NetworkError, UnknownGranularity
from ..models import Direction, ViewGranularity
from ..presenters import ChartPresenter, DashboardPresenter

if TYPE_CHECKING:
    from ..orchestrator import FetchOrchestrator
    from ..presenters import DashboardOverview, ForecastViewModel

__all__ = [
    "router",
    "get_application",
    "get_dashboard_presenter",
    "get_chart_presenter",
]

router = APIRouter()

_HTMX_SRC = "https://unpkg.com/htmx.org@1.9.10"
_HTMX_JSON_ENC_SRC = "https://unpkg.com/htmx.org@1.9.10/dist/ext/json-enc.js"

# =============================================================================
# CSS Styles
# =============================================================================

_DASHBOARD_CSS = """
:root {
    --bg: #f8f9fa;
    --surface: #ffffff;
    --border: #dee2e6;
    --text: #212529;
    --text-muted: #6c757d;
    --primary: #0062cc;
    --danger: #dc3545;
}
* { box-sizing: border-box; margin: 0; padding: 0; }
body {
    font-family: system-ui, -apple-system, sans-serif;
    background: var(--bg);
    color: var(--text);
    line-height: 1.6;
    padding: 1rem;
}
.container { max-width: 960px; margin: 0 auto; }
header {
    display: flex;
    justify-content: space-between;
    align-items: center;
    margin-bottom: 1.5rem;
    padding-bottom: 1rem;
    border-bottom: 1px solid var(--border);
}
h1 { font-size: 1.5rem; font-weight: 600; }
.panel {
    background: var(--surface);
    border: 1px solid var(--border);
    border-radius: 0.5rem;
    padding: 1rem;
    margin-bottom: 1rem;
    box-shadow: 0 2px 4px rgba(0, 0, 0, 0.05);
}
.panel h2 { font-size: 1rem; font-weight: 500; color: var(--text-muted); margin-bottom: 0.75rem; }
.toolbar { display: flex; gap: 0.5rem; align-items: center; flex-wrap: wrap; margin-bottom: 0.75rem; }
.toolbar .period { flex: 1; text-align: center; font-weight: 600; }
button {
    border: 1px solid var(--border);
    background: var(--surface);
    border-radius: 0.25rem;
    padding: 0.25rem 0.75rem;
    cursor: pointer;
}
button.active { background: var(--primary); color: white; border-color: var(--primary); }
button.ready { border-color: var(--primary); }
.status { font-size: 0.875rem; color: var(--text-muted); }
.error { color: var(--danger); font-size: 0.875rem; }
.metric { font-size: 1.5rem; font-weight: 700; color: var(--primary); }
.metric-label { font-size: 0.875rem; color: var(--text-muted); }
.forecast-grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); gap: 1rem; }
.progress-track { margin-top: 1rem; background: #e9ecef; height: 12px; border-radius: 6px; overflow: hidden; }
.progress-fill { height: 100%; background: var(--primary); }
.chart-container { display: flex; justify-content: center; padding: 0.5rem 0; }
.chart-container img { max-width: 100%; height: auto; }
form.login { display: grid; gap: 0.5rem; max-width: 320px; }
form.login input { padding: 0.4rem; border: 1px solid var(--border); border-radius: 0.25rem; }
footer { margin-top: 2rem; color: var(--text-muted); font-size: 0.875rem; text-align: center; }
"""


class LoginRequest(BaseModel):
    """Body of POST /actions/login."""

    email: str
    password: str
    account_number: str


# =============================================================================
# Dependency Factory Functions
# =============================================================================


def get_application(request: Request) -> EnergyForecastApp:
    """Application root stored on app.state by create_app()."""
    return request.app.state.energy


def get_dashboard_presenter(
    application: Annotated[EnergyForecastApp, Depends(get_application)],
) -> DashboardPresenter:
    return DashboardPresenter(application)


def get_chart_presenter(
    presenter: Annotated[DashboardPresenter, Depends(get_dashboard_presenter)],
) -> ChartPresenter:
    return ChartPresenter(presenter)


def _require_orchestrator(application: EnergyForecastApp) -> FetchOrchestrator:
    if application.orchestrator is None:
        raise HTTPException(status_code=401, detail="Not logged in")
    return application.orchestrator


# ============================================================================
# Full Page Routes
# ============================================================================


@router.get("/", response_class=HTMLResponse)
async def dashboard_page(
    presenter: Annotated[DashboardPresenter, Depends(get_dashboard_presenter)],
) -> HTMLResponse:
    """
    Render the main dashboard page.

    Shows the usage panel when logged in, otherwise the login form.
    """
    overview = presenter.get_overview()
    return HTMLResponse(content=_render_dashboard_html(overview), media_type="text/html; charset=utf-8")


# ============================================================================
# Partial Routes (htmx)
# ============================================================================


@router.get("/partials/usage", response_class=HTMLResponse)
async def usage_partial(
    presenter: Annotated[DashboardPresenter, Depends(get_dashboard_presenter)],
) -> HTMLResponse:
    """Usage panel (toolbar, chart, forecast); swapped in place by htmx."""
    return HTMLResponse(content=_render_usage_panel(presenter.get_overview()))


@router.get("/charts/usage.png")
async def usage_chart(
    presenter: Annotated[ChartPresenter, Depends(get_chart_presenter)],
) -> Response:
    """
    Serve the displayed period as a PNG bar chart.

    Falls back to an SVG placeholder if matplotlib is not installed.
    """
    try:
        png_bytes = presenter.render_usage_chart()
        return Response(content=png_bytes, media_type="image/png")
    except ImportError:
        return Response(content=_placeholder_chart_svg("Usage"), media_type="image/svg+xml")


# ============================================================================
# Action Routes (htmx POST, return the usage partial)
# ============================================================================


@router.post("/actions/navigate/{direction}", response_class=HTMLResponse)
async def navigate_action(
    direction: str,
    application: Annotated[EnergyForecastApp, Depends(get_application)],
    presenter: Annotated[DashboardPresenter, Depends(get_dashboard_presenter)],
) -> HTMLResponse:
    """
    Move one period forward ("next") or back ("prev").

    When the neighbouring period was prefetched the returned partial
    already shows it; otherwise it shows the loading state and polls.
    """
    orchestrator = _require_orchestrator(application)
    try:
        orchestrator.navigate(Direction.parse(direction))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Unknown direction: {direction!r}") from e
    return HTMLResponse(content=_render_usage_panel(presenter.get_overview()))


@router.post("/actions/granularity/{granularity}", response_class=HTMLResponse)
async def granularity_action(
    granularity: str,
    application: Annotated[EnergyForecastApp, Depends(get_application)],
    presenter: Annotated[DashboardPresenter, Depends(get_dashboard_presenter)],
) -> HTMLResponse:
    """Switch between day, week, month and year views."""
    orchestrator = _require_orchestrator(application)
    try:
        orchestrator.set_granularity(granularity)
    except UnknownGranularity as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return HTMLResponse(content=_render_usage_panel(presenter.get_overview()))


@router.post("/actions/retry", response_class=HTMLResponse)
async def retry_action(
    application: Annotated[EnergyForecastApp, Depends(get_application)],
    presenter: Annotated[DashboardPresenter, Depends(get_dashboard_presenter)],
) -> HTMLResponse:
    """Refetch the period whose fetch failed."""
    _require_orchestrator(application).retry()
    return HTMLResponse(content=_render_usage_panel(presenter.get_overview()))


@router.post("/actions/login", response_class=HTMLResponse)
async def login_action(
    body: LoginRequest,
    application: Annotated[EnergyForecastApp, Depends(get_application)],
    presenter: Annotated[DashboardPresenter, Depends(get_dashboard_presenter)],
) -> HTMLResponse:
    """
    Log in from the dashboard form and return the refreshed page body.

    Raises:
        HTTPException: 401 when the provider rejects the credentials,
            502 when it cannot be reached.
    """
    try:
        await application.login(body.email, body.password, body.account_number)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except NetworkError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return HTMLResponse(content=_render_body(presenter.get_overview()))


# ============================================================================
# JSON API Routes
# ============================================================================


@router.get("/api/state")
async def api_state(
    presenter: Annotated[DashboardPresenter, Depends(get_dashboard_presenter)],
) -> dict[str, Any]:
    """
    Current display state with the bucketed series.

    Example:
        >>> # GET /api/state
        >>> {"authenticated": true, "state": {"granularity": "day", ...},
        ...  "period": "2024-03-09", "total": 8.4, "buckets": [...]}
    """
    overview = presenter.get_overview()
    return {
        "authenticated": overview.authenticated,
        "state": overview.state.to_dict() if overview.state else None,
        "period": overview.period_label,
        "total": overview.total,
        "buckets": [b.to_dict() for b in overview.buckets],
    }


@router.get("/api/forecast")
async def api_forecast(
    presenter: Annotated[DashboardPresenter, Depends(get_dashboard_presenter)],
) -> dict[str, Any]:
    """Monthly forecast of the displayed month (null outside the month view)."""
    overview = presenter.get_overview()
    return {"forecast": overview.forecast.to_dict() if overview.forecast else None}


@router.get("/api/cache")
async def api_cache(
    application: Annotated[EnergyForecastApp, Depends(get_application)],
) -> dict[str, Any]:
    """Cache entries with age and size."""
    entries = application.cache.status()
    return {"count": len(entries), "entries": entries}


@router.delete("/api/cache")
async def api_cache_clear(
    application: Annotated[EnergyForecastApp, Depends(get_application)],
) -> dict[str, Any]:
    """Drop every cache entry. The displayed period stays on screen."""
    cleared = len(application.cache.list_keys())
    application.cache.clear()
    return {"cleared": cleared}


# ============================================================================
# HTML Rendering
# ============================================================================


def _placeholder_chart_svg(title: str) -> bytes:
    """SVG shown instead of the chart when matplotlib is unavailable."""
    svg = f"""<svg xmlns="http://www.w3.org/2000/svg" width="400" height="200">
        <rect width="100%" height="100%" fill="#f1f5f9"/>
        <text x="50%" y="50%" text-anchor="middle" fill="#64748b" font-size="16">
            {title} Chart (install matplotlib)
        </text>
    </svg>"""
    return svg.encode("utf-8")


def _render_dashboard_html(overview: DashboardOverview) -> str:
    """
    Render the complete dashboard HTML page.

    Args:
        overview: DashboardOverview from DashboardPresenter.

    Returns:
        HTML document with embedded CSS, htmx and its json-enc extension.
    """
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>EnergyForecast</title>
    <script src="{_HTMX_SRC}"></script>
    <script src="{_HTMX_JSON_ENC_SRC}"></script>
    <style>
        {_DASHBOARD_CSS}
    </style>
</head>
<body>
{_render_body(overview)}
</body>
</html>"""


def _render_body(overview: DashboardOverview) -> str:
    if overview.state is None:
        content = _render_login_panel(overview.login_error)
    else:
        content = _render_usage_panel(overview)
    return f"""<div class="container" id="page">
        <header>
            <h1>⚡ EnergyForecast</h1>
            <span class="status">Half-hourly electricity usage</span>
        </header>
        {content}
        <footer>EnergyForecast &bull; Powered by FastAPI + htmx</footer>
    </div>"""


def _render_login_panel(error: str | None) -> str:
    error_html = f'<p class="error">{html.escape(error)}</p>' if error else ""
    return f"""<div class="panel" id="login-panel">
            <h2>Log in</h2>
            {error_html}
            <form class="login" hx-post="/actions/login" hx-ext="json-enc"
                  hx-target="#page" hx-swap="outerHTML">
                <input name="email" type="email" placeholder="E-mail" required>
                <input name="password" type="password" placeholder="Password" required>
                <input name="account_number" placeholder="Account number (A-XXXXXXXX)" required>
                <button type="submit">Log in</button>
            </form>
        </div>"""


def _render_usage_panel(overview: DashboardOverview) -> str:
    """
    Render the usage panel: toolbar, chart and (month view) forecast.

    While a fetch is in flight the panel re-requests itself every second
    until the state settles.
    """
    state = overview.state
    if state is None:
        return _render_login_panel(overview.login_error)

    settling = state.main_loading or state.next_loading or state.prev_loading
    poll = ' hx-get="/partials/usage" hx-trigger="every 1s" hx-swap="outerHTML"' if settling else ""

    granularity_buttons = "".join(
        f'<button class="{"active" if g is state.granularity else ""}" '
        f'hx-post="/actions/granularity/{g.value}" hx-target="#usage" hx-swap="outerHTML">'
        f"{g.value.capitalize()}</button>"
        for g in ViewGranularity
    )

    if state.unauthenticated:
        status_html = (
            '<p class="error">Session expired. '
            '<a href="/" hx-get="/" hx-target="body">Log in again</a></p>'
        )
    elif state.error:
        status_html = (
            f'<p class="error">{html.escape(state.error)} '
            '<button hx-post="/actions/retry" hx-target="#usage" hx-swap="outerHTML">Retry</button></p>'
        )
    elif state.main_loading:
        status_html = '<p class="status">Loading...</p>'
    else:
        status_html = f'<p class="status">Total: {overview.total_display}</p>'

    forecast_html = _render_forecast_panel(overview.forecast) if overview.forecast else ""

    return f"""<div id="usage"{poll}>
        <div class="panel">
            <div class="toolbar">{granularity_buttons}</div>
            <div class="toolbar">
                <button class="{"ready" if state.has_prev else ""}"
                        hx-post="/actions/navigate/prev" hx-target="#usage" hx-swap="outerHTML">&larr; Prev</button>
                <span class="period">{html.escape(overview.period_label)}</span>
                <button class="{"ready" if state.has_next else ""}"
                        hx-post="/actions/navigate/next" hx-target="#usage" hx-swap="outerHTML">Next &rarr;</button>
            </div>
            {status_html}
            <div class="chart-container">
                <img src="/charts/usage.png?v={overview.chart_version}" alt="Usage chart">
            </div>
        </div>
        {forecast_html}
    </div>"""


def _render_forecast_panel(forecast: ForecastViewModel) -> str:
    return f"""<div class="panel" id="forecast-panel">
            <h2>Monthly forecast ({html.escape(forecast.month_name)})</h2>
            <div class="forecast-grid">
                <div>
                    <div class="metric">{forecast.daily_average_display}</div>
                    <div class="metric-label">Daily average</div>
                </div>
                <div>
                    <div class="metric">{forecast.monthly_forecast_display}</div>
                    <div class="metric-label">Forecast usage</div>
                </div>
                <div>
                    <div class="metric">{forecast.forecast_cost_display}</div>
                    <div class="metric-label">Forecast energy charge</div>
                </div>
            </div>
            <div class="progress-track">
                <div class="progress-fill" style="width: {forecast.progress_width:.0f}%"></div>
            </div>
            <p class="status">Day {forecast.forecast.current_day} of {forecast.forecast.days_in_month}.
            So far: {forecast.current_cost_display}.</p>
        </div>"""
