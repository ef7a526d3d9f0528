"""
Error taxonomy for EnergyForecast.

PURPOSE: One exception type per failure class so callers can route errors
explicitly instead of logging and continuing.

ROUTING:
- NetworkError: surfaced to the dashboard; displayed data is kept
- AuthError: halts automatic fetching until the user logs in again
- TokenExpiredError: 401-class response; AuthSession refreshes once
- MalformedResponseError: treated as "no data" by the readings fetch
- CacheCorruptionError: cache starts empty; never fatal
- InvalidDate / UnknownGranularity: caller bugs; always propagate
"""

from __future__ import annotations

__all__ = [
    "EnergyForecastError",
    "NetworkError",
    "AuthError",
    "TokenExpiredError",
    "MalformedResponseError",
    "CacheCorruptionError",
    "InvalidDate",
    "UnknownGranularity",
]


class EnergyForecastError(Exception):
    """Base class for all EnergyForecast errors."""


class NetworkError(EnergyForecastError):
    """Transport failure or unexpected HTTP status from the provider."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(EnergyForecastError):
    """Credentials rejected, token missing, or refresh exhausted."""


class TokenExpiredError(AuthError):
    """
    Provider rejected the access token (HTTP 401 or GraphQL auth error).

    Recoverable: AuthSession answers it with a single refresh-and-retry.
    """


class MalformedResponseError(EnergyForecastError):
    """Provider response is missing expected fields."""


class CacheCorruptionError(EnergyForecastError):
    """Persisted cache slot could not be decoded."""


class InvalidDate(EnergyForecastError, ValueError):
    """Value cannot be interpreted as a date or instant."""


class UnknownGranularity(EnergyForecastError, ValueError):
    """View granularity outside day/week/month/year."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Unknown view granularity: {value!r}")
        self.value = value
