"""
Time zone conversion for EnergyForecast.

PURPOSE: Convert between UTC instants and the fixed civil zone (JST).
AI CONTEXT: Display and bucketing happen in JST; the wire format and the
cache use UTC. The absolute instant never changes, only its representation.

USAGE:
    converter = TimeZoneConverter()
    local = converter.to_local("2024-03-09T15:00:00Z")  # 2024-03-10 00:00 JST
    converter.now()
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo

from .config import Config
from .errors import InvalidDate

__all__ = ["TimeZoneConverter", "parse_instant", "to_utc_iso", "utc_now"]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def parse_instant(value: datetime | str) -> datetime:
    """
    Parse an ISO-8601 instant into an aware datetime.

    Accepts the provider's formats ("2024-03-09T15:00:00Z",
    "2024-03-10T00:00:00+09:00") as well as datetimes. Naive values are
    taken to be UTC, which is what the provider and the cache emit.

    Args:
        value: ISO-8601 string or datetime.

    Returns:
        Aware datetime (original offset preserved).

    Raises:
        InvalidDate: If value is not a datetime or a parsable string.

    Example:
        >>> parse_instant("2024-03-09T15:00:00Z").isoformat()
        '2024-03-09T15:00:00+00:00'
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise InvalidDate(f"Invalid ISO-8601 instant: {value!r}") from e
    else:
        raise InvalidDate(f"Expected datetime or ISO-8601 string, got {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def to_utc_iso(instant: datetime) -> str:
    """
    Serialize an instant as UTC ISO-8601 with a "Z" suffix.

    Milliseconds are kept when present; whole seconds otherwise.

    Example:
        >>> to_utc_iso(datetime(2024, 3, 10, tzinfo=ZoneInfo("Asia/Tokyo")))
        '2024-03-09T15:00:00Z'
    """
    utc = parse_instant(instant).astimezone(UTC)
    if utc.microsecond:
        return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"
    return utc.strftime("%Y-%m-%dT%H:%M:%SZ")


class TimeZoneConverter:
    """
    Converter between UTC instants and a fixed civil time zone.

    Holds the zone and an injectable clock, so tests can pin "now" without
    patching datetime.

    Business context: The provider reports half-hour slots as UTC instants,
    while the household reads its usage on the Japanese calendar: a day's
    chart must start at 00:00 JST, not 09:00.
    """

    def __init__(
        self,
        tz_name: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize converter.

        Args:
            tz_name: IANA zone name. Default: Config.TIMEZONE (Asia/Tokyo).
            clock: Callable returning the current aware datetime.
                Default: utc_now.
        """
        self.zone = ZoneInfo(tz_name or Config.TIMEZONE)
        self._clock = clock or utc_now

    def to_local(self, instant: datetime | str) -> datetime:
        """
        Express an instant in the civil zone.

        Args:
            instant: Aware datetime, naive UTC datetime, or ISO-8601 string.

        Returns:
            Aware datetime in the civil zone denoting the same instant.

        Raises:
            InvalidDate: If instant cannot be parsed.
        """
        return parse_instant(instant).astimezone(self.zone)

    def to_utc(self, instant: datetime | str) -> datetime:
        """Express an instant in UTC."""
        return parse_instant(instant).astimezone(UTC)

    def now(self) -> datetime:
        """Current time in the civil zone."""
        return self.to_local(self._clock())

    def local_midnight(self, day: date) -> datetime:
        """00:00 of a calendar day in the civil zone."""
        return datetime.combine(day, time.min, tzinfo=self.zone)

    def start_of_day(self, instant: datetime | str) -> datetime:
        """00:00 of the civil day containing instant."""
        return self.local_midnight(self.to_local(instant).date())

    def coerce_local(self, value: date | datetime | str) -> datetime:
        """
        Normalize a reference date into an aware civil-zone datetime.

        Plain dates (and "YYYY-MM-DD" strings) become local midnight;
        datetimes and instant strings are converted with to_local().

        Raises:
            InvalidDate: If value is not a date, datetime or ISO-8601 string.
        """
        if isinstance(value, str) and len(value.strip()) == 10:
            try:
                return self.local_midnight(date.fromisoformat(value.strip()))
            except ValueError as e:
                raise InvalidDate(f"Invalid ISO-8601 date: {value!r}") from e
        if isinstance(value, datetime) or isinstance(value, str):
            return self.to_local(value)
        if isinstance(value, date):
            return self.local_midnight(value)
        raise InvalidDate(f"Expected date, datetime or ISO-8601 string, got {type(value).__name__}")

    def format(self, instant: datetime | str, pattern: str) -> str:
        """strftime() of the instant in the civil zone."""
        return self.to_local(instant).strftime(pattern)
