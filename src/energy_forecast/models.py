"""
Data models for EnergyForecast.

PURPOSE: Type-safe dataclasses representing core domain entities.
AI CONTEXT: These models define the data schema shared by the fetch
pipeline, the cache and the dashboard.

MODEL HIERARCHY:
- Reading: One half-hourly consumption sample from the provider
- ViewGranularity: Display aggregation level (day/week/month/year)
- PeriodWindow: Half-open fetch window [start, end) for one view
- AggregatedBucket: One bar of a chart
- MonthlyForecast: Projection of the month's usage and cost
- AuthTokens: Access/refresh token pair

SERIALIZATION:
Reading has from_api() for the provider's camelCase payload and
to_dict()/from_dict() for the cache. Timestamps stay datetimes inside
to_dict(); the cache codec writes them as UTC ISO-8601 and restores them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import InvalidDate, MalformedResponseError, UnknownGranularity
from .timezone import parse_instant, to_utc_iso

__all__ = [
    "ViewGranularity",
    "Direction",
    "Reading",
    "PeriodWindow",
    "AggregatedBucket",
    "MonthlyForecast",
    "AuthTokens",
]


class ViewGranularity(str, Enum):
    """Display aggregation level; also determines the fetch window width."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @classmethod
    def parse(cls, value: ViewGranularity | str) -> ViewGranularity:
        """
        Convert user input into a granularity.

        Args:
            value: Granularity or its string value (case-insensitive).

        Returns:
            Matching ViewGranularity.

        Raises:
            UnknownGranularity: For anything other than day/week/month/year.

        Example:
            >>> ViewGranularity.parse("Month")
            <ViewGranularity.MONTH: 'month'>
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise UnknownGranularity(value)


class Direction(str, Enum):
    """Navigation direction relative to the displayed period."""

    NEXT = "next"
    PREV = "prev"

    @classmethod
    def parse(cls, value: Direction | str) -> Direction:
        """Convert "next"/"prev" into a Direction (ValueError otherwise)."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Reading:
    """
    Consumption during the 30 minutes starting at start_at.

    Produced only at the API boundary and never mutated afterwards. value
    is kept as the provider sent it (normally a number, occasionally a
    numeric string or null); aggregation coerces it.
    """

    start_at: datetime
    value: Any
    consumption_rate_band: str | None = None
    consumption_step: float | None = None
    cost_estimate: float | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Reading:
        """
        Build a Reading from one halfHourlyReadings element.

        Args:
            payload: Dict with startAt, value, consumptionRateBand,
                consumptionStep and costEstimate keys.

        Returns:
            Reading with start_at parsed as an aware datetime.

        Raises:
            MalformedResponseError: If payload is not a mapping or
                startAt is missing or unparsable.

        Example:
            >>> r = Reading.from_api({"startAt": "2024-03-09T15:00:00Z", "value": "0.25"})
            >>> r.value
            '0.25'
        """
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"Reading is not an object: {payload!r}")
        raw_start = payload.get("startAt")
        if raw_start is None:
            raise MalformedResponseError("Reading without startAt")
        try:
            start_at = parse_instant(raw_start)
        except InvalidDate as e:
            raise MalformedResponseError(f"Reading with invalid startAt: {raw_start!r}") from e
        return cls(
            start_at=start_at,
            value=payload.get("value"),
            consumption_rate_band=payload.get("consumptionRateBand"),
            consumption_step=_optional_float(payload.get("consumptionStep")),
            cost_estimate=_optional_float(payload.get("costEstimate")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Cache representation (camelCase, startAt kept as datetime)."""
        return {
            "startAt": self.start_at,
            "value": self.value,
            "consumptionRateBand": self.consumption_rate_band,
            "consumptionStep": self.consumption_step,
            "costEstimate": self.cost_estimate,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Reading:
        """Inverse of to_dict(); also accepts startAt as a string."""
        return cls(
            start_at=parse_instant(data["startAt"]),
            value=data.get("value"),
            consumption_rate_band=data.get("consumptionRateBand"),
            consumption_step=data.get("consumptionStep"),
            cost_estimate=data.get("costEstimate"),
        )


@dataclass(frozen=True)
class PeriodWindow:
    """
    Half-open fetch window [start, end) for one view granularity.

    Two windows are equal iff start, end and granularity all match.
    Bounds are aware datetimes in the civil zone.
    """

    start: datetime
    end: datetime
    granularity: ViewGranularity

    def contains(self, instant: datetime) -> bool:
        """True if start <= instant < end."""
        return self.start <= instant < self.end

    def cache_key(self, account_number: str) -> str:
        """
        Deterministic cache key for this window's readings.

        Bounds are serialized in UTC so the key does not depend on the
        zone the window was computed in.

        Example:
            >>> window.cache_key("A-1234ABCD")
            'electricity_usage:A-1234ABCD:2024-03-08T15:00:00Z:2024-03-09T15:00:00Z:day'
        """
        return (
            f"electricity_usage:{account_number}:"
            f"{to_utc_iso(self.start)}:{to_utc_iso(self.end)}:{self.granularity.value}"
        )

    def to_dict(self) -> dict[str, str]:
        """JSON-friendly representation (UTC bounds)."""
        return {
            "from": to_utc_iso(self.start),
            "to": to_utc_iso(self.end),
            "granularity": self.granularity.value,
        }


@dataclass(frozen=True)
class AggregatedBucket:
    """One chart bar: a label, its summed value and the instant it starts at."""

    label: str
    value: float
    date: datetime
    short_label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "short_label": self.short_label,
            "value": self.value,
            "date": self.date.isoformat(),
        }


@dataclass(frozen=True)
class MonthlyForecast:
    """
    Projection of a month's consumption and energy charge.

    daily_average is either the trimmed mean of the middle five daily
    totals (six or more days with data) or month-to-date total divided by
    today's day of month.
    """

    current_total: float
    daily_average: float
    monthly_forecast: float
    days_in_month: int
    current_day: int
    progress_percentage: float
    current_cost: float
    forecast_cost: float

    def to_dict(self) -> dict[str, float | int]:
        return {
            "current_total": self.current_total,
            "daily_average": self.daily_average,
            "monthly_forecast": self.monthly_forecast,
            "days_in_month": self.days_in_month,
            "current_day": self.current_day,
            "progress_percentage": self.progress_percentage,
            "current_cost": self.current_cost,
            "forecast_cost": self.forecast_cost,
        }


@dataclass(frozen=True)
class AuthTokens:
    """Token pair returned by obtainKrakenToken."""

    token: str
    refresh_token: str

    def __repr__(self) -> str:
        return "AuthTokens(token=<redacted>, refresh_token=<redacted>)"
