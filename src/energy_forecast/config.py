"""
Configuration for EnergyForecast.

PURPOSE: Centralized configuration constants and runtime settings.
AI CONTEXT: All configurable values live here - modify this file to change behavior.

CONFIGURATION CATEGORIES:
- Provider API: GraphQL endpoint and HTTP timeout
- Time: Civil time zone used for display and bucketing
- Cache: Storage slot, TTL and eviction bound
- Pricing: Unit rate used for cost forecasts
- Dashboard: Default bind address

ENVIRONMENT VARIABLES:
- ENERGY_FORECAST_EMAIL: Login e-mail for auto-login
- ENERGY_FORECAST_PASSWORD: Login password for auto-login
- ENERGY_FORECAST_ACCOUNT_NUMBER: Kraken account number (e.g. "A-1234ABCD")
- ENERGY_FORECAST_STORAGE_DIR: Cache directory (default: .energy_forecast)

USAGE:
    from energy_forecast.config import Config
    ttl = Config.CACHE_TTL
    credentials = Config.get_credentials()
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import ClassVar


@dataclass(frozen=True)
class Credentials:
    """Bootstrap login credentials read from the environment."""

    email: str
    password: str
    account_number: str

    def __repr__(self) -> str:
        return f"Credentials(email={self.email!r}, account_number={self.account_number!r})"


ENV_EMAIL = "ENERGY_FORECAST_EMAIL"
ENV_PASSWORD = "ENERGY_FORECAST_PASSWORD"  # nosec B105
ENV_ACCOUNT_NUMBER = "ENERGY_FORECAST_ACCOUNT_NUMBER"
ENV_STORAGE_DIR = "ENERGY_FORECAST_STORAGE_DIR"


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration container for EnergyForecast.

    DESIGN: Frozen dataclass ensures configuration immutability at runtime.
    All values are class-level constants - no instance creation needed.

    CACHE MODEL:
    - Every fetched window is stored under a key built from account number,
      window bounds and granularity
    - Entries older than CACHE_TTL are dropped on read
    - At most CACHE_MAX_WINDOWS usage entries are kept (most recent first)
    """

    # =========================================================================
    # PROVIDER API
    # =========================================================================
    API_URL: ClassVar[str] = "https://api.oejp-kraken.energy/v1/graphql/"
    HTTP_TIMEOUT_SECONDS: ClassVar[float] = 15.0
    TOKEN_LOG_PREFIX_CHARS: ClassVar[int] = 20
    """Number of token characters that may appear in debug logs."""

    # =========================================================================
    # TIME
    # =========================================================================
    TIMEZONE: ClassVar[str] = "Asia/Tokyo"
    """JST, UTC+9 without daylight saving."""

    SLOT_MINUTES: ClassVar[int] = 30

    # =========================================================================
    # CACHE
    # =========================================================================
    STORAGE_DIR: ClassVar[str] = ".energy_forecast"
    CACHE_FILE: ClassVar[str] = "energy_forecast_cache.json"
    CACHE_TTL: ClassVar[timedelta] = timedelta(hours=3)
    CACHE_KEY_PREFIX: ClassVar[str] = "electricity_usage:"
    CACHE_MAX_WINDOWS: ClassVar[int] = 20

    # =========================================================================
    # PRICING
    # =========================================================================
    ELECTRICITY_RATE: ClassVar[float] = 37.2
    """
    Energy charge (JPY/kWh) used for cost forecasts.
    Excludes the basic charge, fuel cost adjustment and renewable levy.
    """

    CURRENCY: ClassVar[str] = "JPY"

    # =========================================================================
    # FORECAST
    # =========================================================================
    TRIMMED_MEAN_MIN_DAYS: ClassVar[int] = 6
    TRIMMED_MEAN_WINDOW: ClassVar[int] = 5

    # =========================================================================
    # DASHBOARD
    # =========================================================================
    DEFAULT_HOST: ClassVar[str] = "127.0.0.1"
    DEFAULT_PORT: ClassVar[int] = 8000

    # =========================================================================
    # ENVIRONMENT-BASED SETTINGS (runtime configurable)
    # =========================================================================
    _credentials_override: ClassVar[Credentials | None] = None
    _storage_dir_override: ClassVar[str | None] = None

    @classmethod
    def get_credentials(cls) -> Credentials | None:
        """
        Read bootstrap credentials from the environment.

        All three variables (e-mail, password, account number) must be set
        and non-empty; a partial set is treated as absent so the dashboard
        falls back to its login form instead of half-authenticating.

        Business context: Auto-login lets a household run the dashboard
        unattended (e.g. on a wall tablet) without typing credentials
        after every restart.

        Returns:
            Credentials when fully configured, otherwise None.

        Example:
            >>> # With all ENERGY_FORECAST_* variables exported:
            >>> Config.get_credentials().account_number
            'A-1234ABCD'
        """
        if cls._credentials_override is not None:
            return cls._credentials_override
        email = os.environ.get(ENV_EMAIL, "")
        password = os.environ.get(ENV_PASSWORD, "")
        account_number = os.environ.get(ENV_ACCOUNT_NUMBER, "")
        if not (email and password and account_number):
            return None
        return Credentials(email=email, password=password, account_number=account_number)

    @classmethod
    def has_credentials(cls) -> bool:
        """Return True when auto-login credentials are configured."""
        return cls.get_credentials() is not None

    @classmethod
    def get_storage_dir(cls) -> str:
        """
        Resolve the directory holding the persisted cache slot.

        Uses a priority system: test override, then the
        ENERGY_FORECAST_STORAGE_DIR variable, then STORAGE_DIR relative
        to the working directory.

        Returns:
            Directory path string.
        """
        if cls._storage_dir_override is not None:
            return cls._storage_dir_override
        return os.environ.get(ENV_STORAGE_DIR, cls.STORAGE_DIR)

    @classmethod
    def set_test_overrides(
        cls,
        credentials: Credentials | None = None,
        storage_dir: str | None = None,
    ) -> None:
        """
        Set test overrides for environment-based settings.

        Must be paired with reset_test_overrides() in teardown to avoid
        leaking into other tests.

        Args:
            credentials: Credentials to report instead of the environment.
            storage_dir: Storage directory to report instead of the environment.
        """
        cls._credentials_override = credentials
        cls._storage_dir_override = storage_dir

    @classmethod
    def reset_test_overrides(cls) -> None:
        """Clear overrides set via set_test_overrides()."""
        cls._credentials_override = None
        cls._storage_dir_override = None
