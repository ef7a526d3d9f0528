"""
Pytest configuration and shared fixtures for EnergyForecast tests.

This module contains:
- MockFileSystem: In-memory filesystem for testing without actual I/O
- FakeClock: Controllable "now" for TTL and year-window tests
- ControlledFetcher: Fetcher whose responses the test resolves by hand
- FakeKraken: In-process GraphQL server for httpx.MockTransport
- Shared fixtures available to all test modules
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from energy_forecast.application import EnergyForecastApp
from energy_forecast.cache import PersistentCache
from energy_forecast.config import Config
from energy_forecast.models import PeriodWindow, Reading, ViewGranularity
from energy_forecast.periods import PeriodCalculator
from energy_forecast.timezone import TimeZoneConverter, parse_instant, to_utc_iso

# 2024-03-20 12:00 JST
DEFAULT_NOW = datetime(2024, 3, 20, 3, 0, tzinfo=UTC)
STORAGE_DIR = "/test/.energy_forecast"


class MockFileSystem:
    """
    In-memory file system for testing.

    Simulates a file system using dictionaries:
    - _files: dict mapping path -> content (str)
    - _dirs: set of directory paths
    - _read_only: paths whose writes raise PermissionError

    FEATURES:
    - No actual I/O operations
    - Counts writes so tests can assert persistence happened
    """

    def __init__(self) -> None:
        self._files: dict[str, str] = {}
        self._dirs: set[str] = set()
        self._read_only: set[str] = set()
        self.write_count = 0

    def makedirs(self, path: str, exist_ok: bool = False) -> None:
        """
        Create mock directory and parent directories.

        Raises:
            OSError: If the directory exists and exist_ok is False, or the
                path is a file.
        """
        if path in self._dirs:
            if not exist_ok:
                raise OSError(f"Directory exists: {path}")
            return
        if path in self._files:
            raise OSError(f"Path is a file, not directory: {path}")
        parts = path.split("/")
        for i in range(1, len(parts) + 1):
            parent = "/".join(parts[:i])
            if parent:
                self._dirs.add(parent)

    def read_text(self, path: str, _encoding: str = "utf-8") -> str:
        """
        Read mock file content.

        Raises:
            FileNotFoundError: If path not in _files.
        """
        if path not in self._files:
            raise FileNotFoundError(f"No such file: {path}")
        return self._files[path]

    def write_text(self, path: str, content: str, _encoding: str = "utf-8") -> None:
        """
        Write content to mock file.

        Raises:
            PermissionError: If path was marked read-only.
        """
        if path in self._read_only:
            raise PermissionError(f"Permission denied: {path}")
        self._files[path] = content
        self.write_count += 1

    # Test helpers

    def is_dir(self, path: str) -> bool:
        return path in self._dirs

    def get_file(self, path: str) -> str | None:
        return self._files.get(path)

    def set_file(self, path: str, content: str) -> None:
        self._files[path] = content

    def set_read_only(self, path: str) -> None:
        self._read_only.add(path)


class FakeClock:
    """
    Callable clock returning a controllable aware datetime.

    Example:
        >>> clock = FakeClock()
        >>> clock.advance(hours=3, minutes=1)
        >>> clock()
        datetime.datetime(2024, 3, 20, 6, 1, tzinfo=datetime.timezone.utc)
    """

    def __init__(self, now: datetime = DEFAULT_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self.now = now


def make_readings(
    window: PeriodWindow,
    value: float | Callable[[datetime], Any] = 0.5,
) -> list[Reading]:
    """One reading per half hour of window, valued by a constant or function."""
    readings = []
    current = window.start
    while current < window.end:
        v = value(current) if callable(value) else value
        readings.append(Reading(start_at=current.astimezone(UTC), value=v))
        current = current + timedelta(minutes=Config.SLOT_MINUTES)
    return readings


class ControlledFetcher:
    """
    Fetcher that parks every call until the test resolves it.

    Calls are recorded in order as (window, future) pairs. Resolving a
    window settles its oldest pending call.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[PeriodWindow, asyncio.Future[list[Reading]]]] = []

    async def __call__(self, window: PeriodWindow) -> list[Reading]:
        future: asyncio.Future[list[Reading]] = asyncio.get_running_loop().create_future()
        self.calls.append((window, future))
        return await future

    @property
    def windows(self) -> list[PeriodWindow]:
        return [window for window, _ in self.calls]

    def pending(self) -> list[PeriodWindow]:
        return [window for window, future in self.calls if not future.done()]

    def _future_for(self, window: PeriodWindow) -> asyncio.Future[list[Reading]]:
        for w, future in self.calls:
            if w == window and not future.done():
                return future
        raise AssertionError(f"No pending fetch for {window}")

    def resolve(self, window: PeriodWindow, readings: list[Reading] | None = None) -> None:
        self._future_for(window).set_result(make_readings(window) if readings is None else readings)

    def fail(self, window: PeriodWindow, error: BaseException) -> None:
        self._future_for(window).set_exception(error)

    def resolve_all(self) -> None:
        for window in self.pending():
            self.resolve(window)


class FakeKraken:
    """
    In-process Kraken GraphQL endpoint for httpx.MockTransport.

    Accepts one e-mail/password pair, issues numbered tokens and serves
    readings (0.5 kWh per half hour by default) to holders of the current
    access token. Expired tokens get HTTP 401.
    """

    EMAIL = "user@example.jp"
    PASSWORD = "correct-horse"  # nosec B105
    ACCOUNT = "A-1234ABCD"

    def __init__(self) -> None:
        self.generation = 0
        self.access_token: str | None = None
        self.refresh_token: str | None = None
        self.login_calls = 0
        self.refresh_calls = 0
        self.reading_requests: list[dict[str, Any]] = []
        self.reading_value: float | Callable[[datetime], Any] = 0.5
        self.refresh_fails = False
        self.offline = False

    def _issue(self) -> dict[str, Any]:
        self.generation += 1
        self.access_token = f"access-token-generation-{self.generation:04d}-abcdefghijklmnop"
        self.refresh_token = f"refresh-{self.generation}"
        return {"data": {"obtainKrakenToken": {"token": self.access_token, "refreshToken": self.refresh_token}}}

    def expire_access_token(self) -> None:
        self.access_token = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)
        body = json.loads(request.content)
        query = body["query"]
        variables = body.get("variables") or {}

        if "obtainKrakenToken" in query:
            token_input = variables["input"]
            if "refreshToken" in token_input:
                self.refresh_calls += 1
                if self.refresh_fails or token_input["refreshToken"] != self.refresh_token:
                    return httpx.Response(
                        200,
                        json={"errors": [{"message": "Invalid refresh token", "extensions": {"errorCode": "KT-CT-1135"}}]},
                    )
                return httpx.Response(200, json=self._issue())
            self.login_calls += 1
            if token_input.get("email") != self.EMAIL or token_input.get("password") != self.PASSWORD:
                return httpx.Response(
                    200,
                    json={"errors": [{"message": "Invalid data.", "extensions": {"errorCode": "KT-CT-1138"}}]},
                )
            return httpx.Response(200, json=self._issue())

        if request.headers.get("Authorization") != self.access_token or self.access_token is None:
            return httpx.Response(401, json={"errors": [{"message": "Unauthorized"}]})

        self.reading_requests.append(variables)
        window = PeriodWindow(
            start=parse_instant(variables["fromDatetime"]),
            end=parse_instant(variables["toDatetime"]),
            granularity=ViewGranularity.DAY,
        )
        readings = [
            {
                "startAt": to_utc_iso(r.start_at),
                "value": r.value,
                "consumptionRateBand": "CONSUMPTION_RATE_BAND_1",
                "consumptionStep": None,
                "costEstimate": None,
            }
            for r in make_readings(window, self.reading_value)
        ]
        return httpx.Response(
            200,
            json={"data": {"account": {"properties": [{"electricitySupplyPoints": [{"halfHourlyReadings": readings}]}]}}},
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(lambda request: self.handler(request))


@pytest.fixture(autouse=True)
def reset_config() -> Any:
    """Keep Config test overrides from leaking between tests."""
    Config.reset_test_overrides()
    yield
    Config.reset_test_overrides()


@pytest.fixture
def mock_fs() -> MockFileSystem:
    """Fresh in-memory filesystem for each test."""
    return MockFileSystem()


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to 2024-03-20 12:00 JST."""
    return FakeClock()


@pytest.fixture
def converter(clock: FakeClock) -> TimeZoneConverter:
    return TimeZoneConverter(clock=clock)


@pytest.fixture
def periods(converter: TimeZoneConverter) -> PeriodCalculator:
    return PeriodCalculator(converter)


@pytest.fixture
def cache(mock_fs: MockFileSystem, clock: FakeClock) -> PersistentCache:
    """Empty cache on the in-memory filesystem."""
    return PersistentCache(storage_dir=STORAGE_DIR, filesystem=mock_fs, clock=clock)


@pytest.fixture
def fetcher() -> ControlledFetcher:
    return ControlledFetcher()


@pytest.fixture
def kraken() -> FakeKraken:
    return FakeKraken()


@pytest.fixture
def app(mock_fs: MockFileSystem, clock: FakeClock, kraken: FakeKraken) -> EnergyForecastApp:
    """Application root on in-memory storage talking to FakeKraken."""
    return EnergyForecastApp(
        storage_dir=STORAGE_DIR,
        filesystem=mock_fs,
        clock=clock,
        transport=kraken.transport(),
    )
