"""
Presenters for the EnergyForecast dashboard.

PURPOSE: Testable layer between the orchestrator state and the HTML/PNG
output.
AI CONTEXT: Pure data transformation plus matplotlib rendering. Presenters
read the application root; they never start fetches.

DESIGN PRINCIPLES:
1. Presenters receive data, return view models (dataclasses)
2. No dependencies on a specific web framework
3. Unit-testable with a fake application root
4. Forecasts are only computed for the month view

USAGE:
    presenter = DashboardPresenter(app)
    overview = presenter.get_overview()
    png = ChartPresenter(presenter).render_usage_chart()
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from .config import Config
from .models import AggregatedBucket, MonthlyForecast, PeriodWindow, ViewGranularity

if TYPE_CHECKING:
    from .application import EnergyForecastApp
    from .orchestrator import DisplayState

__all__ = [
    "period_label",
    "ForecastViewModel",
    "DashboardOverview",
    "DashboardPresenter",
    "ChartPresenter",
]

BAR_COLOR = "#0062cc"
EMPTY_BAR_COLOR = "#cbd5e1"

# Every n-th x tick is labelled per granularity
TICK_STRIDE: dict[ViewGranularity, int] = {
    ViewGranularity.DAY: 4,
    ViewGranularity.WEEK: 1,
    ViewGranularity.MONTH: 2,
    ViewGranularity.YEAR: 1,
}


def _format_kwh(value: float) -> str:
    return f"{value:,.2f} kWh"


def _format_currency(value: float) -> str:
    """Format an amount in the configured currency, e.g. "¥12,345"."""
    if Config.CURRENCY == "JPY":
        return f"¥{value:,.0f}"
    return f"{value:,.2f} {Config.CURRENCY}"


def period_label(window: PeriodWindow) -> str:
    """
    Human-readable span of a window, inclusive of its last day.

    The year view always names the full calendar year even when the
    fetch window stops at the current half hour.

    Example:
        >>> period_label(day_window)
        '2024-03-09'
        >>> period_label(week_window)
        '2024-03-10 - 2024-03-16'
    """
    first = window.start.date()
    if window.granularity is ViewGranularity.DAY:
        return first.isoformat()
    if window.granularity is ViewGranularity.YEAR:
        return f"{first.year}-01-01 - {first.year}-12-31"
    last = (window.end - timedelta(days=1)).date()
    return f"{first.isoformat()} - {last.isoformat()}"


@dataclass
class ForecastViewModel:
    """View model for the monthly forecast panel."""

    month_name: str
    forecast: MonthlyForecast

    @property
    def daily_average_display(self) -> str:
        return f"{self.forecast.daily_average:,.2f} kWh/day"

    @property
    def monthly_forecast_display(self) -> str:
        return _format_kwh(self.forecast.monthly_forecast)

    @property
    def forecast_cost_display(self) -> str:
        return _format_currency(self.forecast.forecast_cost)

    @property
    def current_cost_display(self) -> str:
        return _format_currency(self.forecast.current_cost)

    @property
    def progress_width(self) -> float:
        """
        Progress bar width in percent, capped at 100.

        Example:
            >>> vm.forecast.progress_percentage
            112.0
            >>> vm.progress_width
            100.0
        """
        return min(self.forecast.progress_percentage, 100.0)

    def to_dict(self) -> dict[str, Any]:
        return {"month": self.month_name, **self.forecast.to_dict()}


@dataclass
class DashboardOverview:
    """Complete view model for the dashboard page."""

    authenticated: bool = False
    login_error: str | None = None
    state: DisplayState | None = None
    period_label: str = ""
    buckets: list[AggregatedBucket] = field(default_factory=list)
    total: float = 0.0
    forecast: ForecastViewModel | None = None

    @property
    def total_display(self) -> str:
        return _format_kwh(self.total)

    @property
    def granularity(self) -> ViewGranularity:
        if self.state is None:
            return ViewGranularity.DAY
        return self.state.granularity

    @property
    def is_loading(self) -> bool:
        return self.state is not None and self.state.main_loading

    @property
    def chart_version(self) -> str:
        """Token that changes whenever the displayed data changes (img cache busting)."""
        if self.state is None or self.state.displayed_window is None:
            return "empty"
        window = self.state.displayed_window
        return f"{window.granularity.value}-{window.start:%Y%m%d}-{len(self.state.displayed_series)}"


class DashboardPresenter:
    """
    Presenter for the main dashboard view.

    Turns the orchestrator's DisplayState into buckets, a total, a period
    label and (month view only) a forecast.
    """

    def __init__(self, app: EnergyForecastApp) -> None:
        """
        Initialize presenter.

        Args:
            app: Application root providing the orchestrator and aggregator.
        """
        self.app = app

    def get_overview(self) -> DashboardOverview:
        """
        Build the complete dashboard view model.

        Business context: One call gives the page everything it renders:
        the chart series for the displayed window, the label of the
        period the user navigated to, and the monthly projection.

        Returns:
            DashboardOverview. Logged-out dashboards get an overview with
            authenticated=False and no state.
        """
        orchestrator = self.app.orchestrator
        if orchestrator is None:
            return DashboardOverview(authenticated=False, login_error=self.app.login_error)

        state = orchestrator.state
        buckets = self.get_buckets(state)
        return DashboardOverview(
            authenticated=not state.unauthenticated,
            login_error=self.app.login_error if state.unauthenticated else None,
            state=state,
            period_label=period_label(state.target_window),
            buckets=buckets,
            total=self.app.aggregator.total(buckets),
            forecast=self.get_forecast(state),
        )

    def get_buckets(self, state: DisplayState) -> list[AggregatedBucket]:
        """Buckets of the displayed series (empty before the first display)."""
        window = state.displayed_window
        if window is None:
            return []
        return self.app.aggregator.bucket(list(state.displayed_series), window.granularity, window)

    def get_forecast(self, state: DisplayState) -> ForecastViewModel | None:
        """
        Monthly forecast for the displayed month.

        Returns:
            ForecastViewModel in the month view when the month has
            readings, otherwise None.
        """
        window = state.displayed_window
        if window is None or window.granularity is not ViewGranularity.MONTH:
            return None
        forecast = self.app.aggregator.forecast_month(list(state.displayed_series), window.start)
        if forecast is None:
            return None
        return ForecastViewModel(month_name=f"{window.start:%B %Y}", forecast=forecast)


class ChartPresenter:
    """
    Presenter for the usage chart image.

    Uses matplotlib for server-side chart rendering.
    Returns PNG images as bytes for htmx refresh.
    """

    def __init__(self, dashboard: DashboardPresenter) -> None:
        self.dashboard = dashboard

    def _render_empty(self, message: str) -> Any:
        import matplotlib.pyplot as plt

        fig, ax = plt.subplots(figsize=(9, 3.5))
        ax.text(0.5, 0.5, message, ha="center", va="center", fontsize=14)
        ax.set_xlim(0, 1)
        ax.set_ylim(0, 1)
        ax.axis("off")
        return fig, ax

    def render_usage_chart(self) -> bytes:
        """
        Render the displayed period as a bar chart PNG.

        One bar per bucket; zero-valued buckets are drawn in a muted color
        so gaps in the provider data stand out. X ticks use the short
        labels where buckets have them, thinned for the day and month
        views.

        Returns:
            PNG image as bytes (900x350 pixels at 100 DPI). Shows a
            placeholder when nothing is displayed yet.

        Raises:
            ImportError: If matplotlib is not installed.
        """
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        overview = self.dashboard.get_overview()
        if overview.state is None:
            fig, _ax = self._render_empty("Log in to see your usage")
        elif not overview.buckets:
            fig, _ax = self._render_empty("Loading..." if overview.is_loading else "No data")
        else:
            buckets = overview.buckets
            stride = TICK_STRIDE[overview.granularity]
            fig, ax = plt.subplots(figsize=(9, 3.5))

            values = [b.value for b in buckets]
            colors = [BAR_COLOR if v > 0 else EMPTY_BAR_COLOR for v in values]
            ax.bar(range(len(buckets)), values, color=colors)
            ax.set_ylabel("kWh")
            ax.set_title(f"{overview.period_label}  ({overview.total_display})")
            ticks = list(range(0, len(buckets), stride))
            ax.set_xticks(ticks)
            ax.set_xticklabels(
                [buckets[i].short_label or buckets[i].label for i in ticks],
                rotation=45 if overview.granularity is ViewGranularity.DAY else 0,
                ha="right" if overview.granularity is ViewGranularity.DAY else "center",
            )
            ax.spines["top"].set_visible(False)
            ax.spines["right"].set_visible(False)

        buf = io.BytesIO()
        plt.tight_layout()
        plt.savefig(buf, format="png", dpi=100, bbox_inches="tight")
        plt.close(fig)
        buf.seek(0)
        return buf.read()
