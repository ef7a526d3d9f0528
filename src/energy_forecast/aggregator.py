"""
Usage aggregation for EnergyForecast.

PURPOSE: Bucket half-hourly readings into chart series and project the
month's consumption and energy charge.
AI CONTEXT: Pure functions over already-fetched readings. All bucketing is
done in the civil zone; input lists are never mutated.

BUCKETS:
    day:   48 slots, "00:00-00:30" .. "23:30-00:00"
    week:  7 days, Sunday .. Saturday
    month: one per calendar day of the month
    year:  12 months, Jan .. Dec

FORECAST:
    >= 6 days with data: trimmed mean of the middle five sorted daily totals
    otherwise:           month-to-date total / today's day of month
    monthly_forecast = daily_average * days_in_month
    forecast_cost    = monthly_forecast * unit rate (JPY/kWh)
"""

from __future__ import annotations

import calendar
import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta
from typing import Any

from .config import Config
from .models import AggregatedBucket, MonthlyForecast, PeriodWindow, Reading, ViewGranularity
from .timezone import TimeZoneConverter

__all__ = ["UsageAggregator", "coerce_value"]

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
SLOTS_PER_DAY = 24 * 60 // Config.SLOT_MINUTES


def coerce_value(value: Any) -> float:
    """
    Convert a raw reading value to a finite float.

    Non-numeric, missing, NaN and infinite values count as 0.0, so a single
    bad sample never poisons a bucket total.

    Example:
        >>> coerce_value("0.25"), coerce_value(None), coerce_value(float("nan"))
        (0.25, 0.0, 0.0)
    """
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


class UsageAggregator:
    """
    Aggregator turning readings into chart buckets and monthly forecasts.

    Business context: The provider only reports 30-minute slots. Households
    compare days by time of day, weeks by weekday and the year by month,
    and want to know before the bill arrives what the month will cost.
    """

    def __init__(
        self,
        converter: TimeZoneConverter | None = None,
        unit_rate: float | None = None,
    ) -> None:
        """
        Initialize aggregator.

        Args:
            converter: Civil zone and clock. Default: TimeZoneConverter()
            unit_rate: Energy charge per kWh. Default: Config.ELECTRICITY_RATE
        """
        self.converter = converter or TimeZoneConverter()
        self.unit_rate = Config.ELECTRICITY_RATE if unit_rate is None else unit_rate

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _localized(
        self, readings: Iterable[Reading], window: PeriodWindow | None
    ) -> list[tuple[datetime, float]]:
        """(local start, numeric value) pairs, filtered to window when given."""
        pairs = []
        for reading in readings:
            if window is not None and not window.contains(reading.start_at):
                continue
            pairs.append((self.converter.to_local(reading.start_at), coerce_value(reading.value)))
        return pairs

    def _anchor(self, pairs: Sequence[tuple[datetime, float]], window: PeriodWindow | None) -> datetime:
        """Instant the buckets are laid out around."""
        if window is not None:
            return self.converter.to_local(window.start)
        if pairs:
            return min(local for local, _ in pairs)
        return self.converter.now()

    # =========================================================================
    # BUCKETING
    # =========================================================================

    def bucket_for_day(
        self, readings: Sequence[Reading], window: PeriodWindow | None = None
    ) -> list[AggregatedBucket]:
        """
        Bucket one civil day into 48 half-hour slots.

        Args:
            readings: Half-hourly readings (any order).
            window: Fetch window; readings outside it are ignored and the
                buckets are laid out on its first day.

        Returns:
            48 buckets, label "HH:MM-HH:MM", short_label "HH:MM".
        """
        pairs = self._localized(readings, window)
        day_start = self.converter.start_of_day(self._anchor(pairs, window))
        totals = [0.0] * SLOTS_PER_DAY
        for local, value in pairs:
            if local.date() != day_start.date():
                continue
            totals[(local.hour * 60 + local.minute) // Config.SLOT_MINUTES] += value

        buckets = []
        for index, total in enumerate(totals):
            slot_start = day_start + timedelta(minutes=index * Config.SLOT_MINUTES)
            slot_end = slot_start + timedelta(minutes=Config.SLOT_MINUTES)
            buckets.append(
                AggregatedBucket(
                    label=f"{slot_start:%H:%M}-{slot_end:%H:%M}",
                    short_label=f"{slot_start:%H:%M}",
                    value=total,
                    date=slot_start,
                )
            )
        return buckets

    def bucket_for_week(
        self, readings: Sequence[Reading], window: PeriodWindow | None = None
    ) -> list[AggregatedBucket]:
        """Bucket a Sunday-based week into seven daily totals."""
        pairs = self._localized(readings, window)
        anchor = self.converter.start_of_day(self._anchor(pairs, window))
        week_start = anchor - timedelta(days=(anchor.weekday() + 1) % 7)
        totals = [0.0] * 7
        for local, value in pairs:
            offset = (local.date() - week_start.date()).days
            if 0 <= offset < 7:
                totals[offset] += value

        return [
            AggregatedBucket(
                label=WEEKDAY_NAMES[offset],
                short_label=WEEKDAY_NAMES[offset][:3],
                value=total,
                date=self.converter.local_midnight(week_start.date() + timedelta(days=offset)),
            )
            for offset, total in enumerate(totals)
        ]

    def bucket_for_month(
        self, readings: Sequence[Reading], window: PeriodWindow | None = None
    ) -> list[AggregatedBucket]:
        """Bucket a calendar month into one total per day (label "1".."31")."""
        pairs = self._localized(readings, window)
        anchor = self._anchor(pairs, window)
        days = calendar.monthrange(anchor.year, anchor.month)[1]
        totals = [0.0] * days
        for local, value in pairs:
            if (local.year, local.month) == (anchor.year, anchor.month):
                totals[local.day - 1] += value

        return [
            AggregatedBucket(
                label=str(day),
                value=totals[day - 1],
                date=self.converter.local_midnight(date(anchor.year, anchor.month, day)),
            )
            for day in range(1, days + 1)
        ]

    def bucket_for_year(
        self, readings: Sequence[Reading], window: PeriodWindow | None = None
    ) -> list[AggregatedBucket]:
        """Bucket a calendar year into twelve monthly totals ("Jan 2024"...)."""
        pairs = self._localized(readings, window)
        year = self._anchor(pairs, window).year
        totals = [0.0] * 12
        for local, value in pairs:
            if local.year == year:
                totals[local.month - 1] += value

        buckets = []
        for index, total in enumerate(totals):
            month_start = self.converter.local_midnight(date(year, index + 1, 1))
            buckets.append(
                AggregatedBucket(
                    label=f"{month_start:%b %Y}",
                    short_label=f"{month_start:%b}",
                    value=total,
                    date=month_start,
                )
            )
        return buckets

    def bucket(
        self,
        readings: Sequence[Reading],
        granularity: ViewGranularity | str,
        window: PeriodWindow | None = None,
    ) -> list[AggregatedBucket]:
        """
        Dispatch to the bucketing function of a granularity.

        Raises:
            UnknownGranularity: For anything other than day/week/month/year.
        """
        g = ViewGranularity.parse(granularity)
        if g is ViewGranularity.DAY:
            return self.bucket_for_day(readings, window)
        if g is ViewGranularity.WEEK:
            return self.bucket_for_week(readings, window)
        if g is ViewGranularity.MONTH:
            return self.bucket_for_month(readings, window)
        return self.bucket_for_year(readings, window)

    @staticmethod
    def total(buckets: Iterable[AggregatedBucket]) -> float:
        """Sum of bucket values."""
        return sum(bucket.value for bucket in buckets)

    # =========================================================================
    # FORECAST
    # =========================================================================

    def forecast_month(
        self, readings: Sequence[Reading], reference_date: date | datetime | str
    ) -> MonthlyForecast | None:
        """
        Project the consumption and energy charge of a calendar month.

        Business context: The daily average drives the projection. With at
        least TRIMMED_MEAN_MIN_DAYS days of data it is the mean of the
        middle TRIMMED_MEAN_WINDOW daily totals after sorting, which damps
        single days of unusually high or low use (a holiday away, a
        heater left on). Short histories fall back to a plain
        month-to-date average over today's day of month.

        Args:
            readings: Readings; only those in reference_date's month count.
            reference_date: Any date in the month to project.

        Returns:
            MonthlyForecast, or None when the month has no readings.

        Raises:
            InvalidDate: If reference_date is not a date.
        """
        reference = self.converter.coerce_local(reference_date)
        month = (reference.year, reference.month)

        daily_totals: dict[date, float] = defaultdict(float)
        for reading in readings:
            local = self.converter.to_local(reading.start_at)
            if (local.year, local.month) == month:
                daily_totals[local.date()] += coerce_value(reading.value)
        if not daily_totals:
            return None

        current_total = sum(daily_totals.values())
        days_in_month = calendar.monthrange(*month)[1]
        current_day = self.converter.now().day

        n = len(daily_totals)
        if n >= Config.TRIMMED_MEAN_MIN_DAYS:
            ordered = sorted(daily_totals.values(), reverse=True)
            start = (n - Config.TRIMMED_MEAN_WINDOW) // 2
            middle = ordered[start : start + Config.TRIMMED_MEAN_WINDOW]
            daily_average = sum(middle) / len(middle)
        else:
            daily_average = current_total / current_day if current_day > 0 else 0.0

        monthly_forecast = daily_average * days_in_month
        return MonthlyForecast(
            current_total=current_total,
            daily_average=daily_average,
            monthly_forecast=monthly_forecast,
            days_in_month=days_in_month,
            current_day=current_day,
            progress_percentage=current_day / days_in_month * 100,
            current_cost=current_total * self.unit_rate,
            forecast_cost=monthly_forecast * self.unit_rate,
        )
