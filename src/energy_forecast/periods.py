"""
Period boundary computation for EnergyForecast.

PURPOSE: Map (reference date, view granularity) to the fetch window and
step reference dates forward/backward by one calendar unit.
AI CONTEXT: Pure calendar arithmetic in the civil zone. No I/O.

WINDOWS (all half-open, civil zone):
    day:   [00:00 of ref - 1 day, 00:00 of ref)
    week:  [Sunday 00:00, next Sunday 00:00)
    month: [1st 00:00, 1st of next month 00:00)
    year:  [Jan 1 00:00, min(Jan 1 next year, now floored to the half hour))

The day view shows the previous calendar day because the provider
publishes a day's readings with a lag.

The current year's end moves at every half-hour boundary, so its window
(and cache key) changes twice an hour. A year fetch that settles after a
boundary no longer matches the target and is fetched once more; a
prefetched current-year slot stops matching the same way.

STEPPING:
Calendar aware. Month/year steps clamp the day of month, so
next(prev(d)) == d holds except when d is past the end of the previous
month (Mar 31 -> Feb 29 -> Mar 29). That asymmetry is accepted.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

from .config import Config
from .errors import UnknownGranularity
from .models import Direction, PeriodWindow, ViewGranularity
from .timezone import TimeZoneConverter

__all__ = ["PeriodCalculator", "add_months"]


def add_months(value: datetime, months: int) -> datetime:
    """
    Shift a datetime by whole calendar months, clamping the day.

    Example:
        >>> add_months(datetime(2024, 1, 31), 1)
        datetime.datetime(2024, 2, 29, 0, 0)
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _start_of_next_month(start: datetime) -> datetime:
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1, day=1)
    return start.replace(month=start.month + 1, day=1)


class PeriodCalculator:
    """
    Calculator for fetch windows and navigation steps.

    Stateless apart from the injected converter, which supplies the civil
    zone and "now" (needed to clamp the current year's window).
    """

    def __init__(self, converter: TimeZoneConverter | None = None) -> None:
        self.converter = converter or TimeZoneConverter()

    def window(
        self,
        reference_date: date | datetime | str,
        granularity: ViewGranularity | str,
    ) -> PeriodWindow:
        """
        Compute the fetch window for a reference date.

        Business context: The window decides which half-hour readings are
        requested from the provider and under which key the response is
        cached, so it must be deterministic for a given input.

        Args:
            reference_date: Date, aware datetime or ISO-8601 string.
                Interpreted in the civil zone.
            granularity: View granularity (enum or string).

        Returns:
            PeriodWindow with end > start.

        Raises:
            InvalidDate: If reference_date is not a date.
            UnknownGranularity: If granularity is not day/week/month/year.

        Example:
            >>> calc.window(date(2024, 3, 10), "day").to_dict()
            {'from': '2024-03-08T15:00:00Z', 'to': '2024-03-09T15:00:00Z', 'granularity': 'day'}
        """
        g = ViewGranularity.parse(granularity)
        ref = self.converter.start_of_day(self.converter.coerce_local(reference_date))

        if g is ViewGranularity.DAY:
            start = ref - timedelta(days=1)
            end = ref
        elif g is ViewGranularity.WEEK:
            # Python weekday(): Monday=0 .. Sunday=6; weeks start on Sunday
            start = ref - timedelta(days=(ref.weekday() + 1) % 7)
            end = start + timedelta(days=7)
        elif g is ViewGranularity.MONTH:
            start = ref.replace(day=1)
            end = _start_of_next_month(start)
        elif g is ViewGranularity.YEAR:
            start = ref.replace(month=1, day=1)
            end = min(start.replace(year=start.year + 1), self._now_floor())
            if end <= start:
                end = start + timedelta(minutes=Config.SLOT_MINUTES)
        else:  # pragma: no cover - parse() rejects everything else
            raise UnknownGranularity(granularity)

        return PeriodWindow(start=start, end=end, granularity=g)

    def _now_floor(self) -> datetime:
        """Current civil time floored to the start of its half-hour slot."""
        now = self.converter.now()
        minute = now.minute - now.minute % Config.SLOT_MINUTES
        return now.replace(minute=minute, second=0, microsecond=0)

    def next_reference_date(
        self, reference_date: datetime, granularity: ViewGranularity | str
    ) -> datetime:
        """Advance reference_date by one granularity unit."""
        return self._shift(reference_date, granularity, 1)

    def prev_reference_date(
        self, reference_date: datetime, granularity: ViewGranularity | str
    ) -> datetime:
        """Move reference_date back by one granularity unit."""
        return self._shift(reference_date, granularity, -1)

    def step(
        self,
        reference_date: datetime,
        granularity: ViewGranularity | str,
        direction: Direction | str,
    ) -> datetime:
        """Dispatch to next_reference_date/prev_reference_date."""
        if Direction.parse(direction) is Direction.NEXT:
            return self.next_reference_date(reference_date, granularity)
        return self.prev_reference_date(reference_date, granularity)

    def adjacent_windows(
        self, reference_date: datetime, granularity: ViewGranularity | str
    ) -> tuple[PeriodWindow, PeriodWindow]:
        """Return (prev_window, next_window) around reference_date."""
        return (
            self.window(self.prev_reference_date(reference_date, granularity), granularity),
            self.window(self.next_reference_date(reference_date, granularity), granularity),
        )

    def _shift(
        self,
        reference_date: date | datetime | str,
        granularity: ViewGranularity | str,
        units: int,
    ) -> datetime:
        g = ViewGranularity.parse(granularity)
        ref = self.converter.coerce_local(reference_date)
        if g is ViewGranularity.DAY:
            return ref + timedelta(days=units)
        if g is ViewGranularity.WEEK:
            return ref + timedelta(weeks=units)
        if g is ViewGranularity.MONTH:
            return add_months(ref, units)
        return add_months(ref, 12 * units)
