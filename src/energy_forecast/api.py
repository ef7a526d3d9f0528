"""
Kraken GraphQL client for EnergyForecast.

PURPOSE: Thin async transport for the two provider operations the
dashboard needs: obtaining tokens and reading half-hourly consumption.
AI CONTEXT: Every failure leaves this module as an EnergyForecastError
subclass; callers never see httpx exceptions.

ERROR MAPPING:
    transport failure / timeout          -> NetworkError
    HTTP 401                             -> TokenExpiredError
    other HTTP 4xx/5xx                   -> NetworkError(status_code)
    body is not JSON                     -> MalformedResponseError
    GraphQL auth error (readings)        -> TokenExpiredError
    token mutation rejected              -> AuthError
    readings missing from the response   -> logged, [] returned

Tokens are sent raw in the Authorization header (no scheme prefix) and are
never logged beyond their first Config.TOKEN_LOG_PREFIX_CHARS characters.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .config import Config
from .errors import (
    AuthError,
    MalformedResponseError,
    NetworkError,
    TokenExpiredError,
)
from .models import AuthTokens, PeriodWindow, Reading
from .timezone import to_utc_iso

__all__ = ["KrakenClient", "OBTAIN_TOKEN_MUTATION", "HALF_HOURLY_READINGS_QUERY"]

logger = logging.getLogger(__name__)

OBTAIN_TOKEN_MUTATION = """
mutation login($input: ObtainJSONWebTokenInput!) {
  obtainKrakenToken(input: $input) {
    token
    refreshToken
  }
}
"""

HALF_HOURLY_READINGS_QUERY = """
query halfHourlyReadings(
  $accountNumber: String!
  $fromDatetime: DateTime
  $toDatetime: DateTime
) {
  account(accountNumber: $accountNumber) {
    properties {
      electricitySupplyPoints {
        halfHourlyReadings(fromDatetime: $fromDatetime, toDatetime: $toDatetime) {
          consumptionRateBand
          consumptionStep
          costEstimate
          startAt
          value
        }
      }
    }
  }
}
"""

AUTH_ERROR_TYPES = frozenset({"AUTHORIZATION", "AUTHENTICATION"})
AUTH_ERROR_CODES = frozenset({"KT-CT-1124", "KT-CT-1111", "KT-CT-1143"})


def redact_token(token: str | None) -> str:
    """First few characters of a token for log lines."""
    if not token:
        return "<none>"
    return token[: Config.TOKEN_LOG_PREFIX_CHARS] + "..."


def _is_auth_error(error: Any) -> bool:
    if not isinstance(error, dict):
        return False
    extensions = error.get("extensions") or {}
    if not isinstance(extensions, dict):
        return False
    return (
        extensions.get("errorType") in AUTH_ERROR_TYPES
        or extensions.get("errorCode") in AUTH_ERROR_CODES
    )


def _error_messages(errors: list[Any]) -> str:
    messages = [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors]
    return "; ".join(messages) or "unknown GraphQL error"


class KrakenClient:
    """
    Async GraphQL client for the Kraken API.

    Owns one lazily created httpx.AsyncClient, re-created if it was closed.

    Example:
        >>> client = KrakenClient()
        >>> tokens = await client.obtain_token(email="a@b.jp", password="...")
        >>> readings = await client.fetch_half_hourly_readings(
        ...     tokens.token, "A-1234ABCD", window)
        >>> await client.close()
    """

    def __init__(
        self,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize client.

        Args:
            api_url: GraphQL endpoint. Default: Config.API_URL
            timeout: Request timeout in seconds. Default: Config.HTTP_TIMEOUT_SECONDS
            transport: httpx transport override (httpx.MockTransport in tests).
        """
        self.api_url = api_url or Config.API_URL
        self.timeout = Config.HTTP_TIMEOUT_SECONDS if timeout is None else timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _post(
        self,
        operation: str,
        query: str,
        variables: dict[str, Any],
        token: str | None = None,
    ) -> dict[str, Any]:
        """
        POST one GraphQL document and return the decoded body.

        Raises:
            NetworkError: Transport failure or non-401 HTTP error.
            TokenExpiredError: HTTP 401.
            MalformedResponseError: Body is not a JSON object.
        """
        client = await self._get_client()
        headers = {"Authorization": token} if token else {}
        logger.debug(f"POST {operation} to {self.api_url} (token={redact_token(token)})")

        try:
            resp = await client.post(
                self.api_url,
                json={"query": query, "variables": variables},
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.warning(f"{operation} failed: {type(e).__name__}: {e}")
            raise NetworkError(f"{operation} request failed: {e}") from e

        if resp.status_code == 401:
            logger.info(f"{operation} rejected with 401")
            raise TokenExpiredError(f"{operation}: access token rejected (HTTP 401)")
        if resp.status_code >= 400:
            logger.warning(f"{operation} returned HTTP {resp.status_code}: {resp.text[:200]}")
            raise NetworkError(
                f"{operation} returned HTTP {resp.status_code}", status_code=resp.status_code
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise MalformedResponseError(f"{operation} returned a non-JSON body") from e
        if not isinstance(body, dict):
            raise MalformedResponseError(f"{operation} returned {type(body).__name__}, not an object")
        return body

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    async def obtain_token(
        self,
        email: str | None = None,
        password: str | None = None,
        refresh_token: str | None = None,
    ) -> AuthTokens:
        """
        Run obtainKrakenToken with credentials or a refresh token.

        Args:
            email: Account e-mail (with password).
            password: Account password (with email).
            refresh_token: Refresh token (instead of email/password).

        Returns:
            New AuthTokens.

        Raises:
            AuthError: Mutation rejected or response without a token pair.
            NetworkError: Transport failure.
            ValueError: Neither credentials nor a refresh token supplied.
        """
        if refresh_token:
            token_input: dict[str, str] = {"refreshToken": refresh_token}
            operation = "token refresh"
        elif email and password:
            token_input = {"email": email, "password": password}
            operation = "login"
        else:
            raise ValueError("obtain_token() needs email and password, or refresh_token")

        try:
            body = await self._post(operation, OBTAIN_TOKEN_MUTATION, {"input": token_input})
        except TokenExpiredError as e:
            raise AuthError(f"{operation} rejected: {e}") from e
        except MalformedResponseError as e:
            raise AuthError(f"{operation} returned an unreadable response: {e}") from e

        data = body.get("data")
        payload = data.get("obtainKrakenToken") if isinstance(data, dict) else None
        if not isinstance(payload, dict) or not payload.get("token") or not payload.get("refreshToken"):
            errors = body.get("errors") or []
            logger.warning(f"{operation} failed: {_error_messages(errors)}")
            raise AuthError(f"{operation} failed: {_error_messages(errors)}")

        tokens = AuthTokens(token=payload["token"], refresh_token=payload["refreshToken"])
        logger.info(f"{operation} succeeded (token={redact_token(tokens.token)})")
        return tokens

    # =========================================================================
    # READINGS
    # =========================================================================

    async def fetch_half_hourly_readings(
        self, token: str, account_number: str, window: PeriodWindow
    ) -> list[Reading]:
        """
        Fetch the half-hourly readings of the first supply point in a window.

        Args:
            token: Access token.
            account_number: Kraken account number.
            window: Half-open fetch window; bounds are sent as UTC ISO-8601.

        Returns:
            Readings in provider order. Empty when the response has no
            readings (logged as a malformed response).

        Raises:
            TokenExpiredError: HTTP 401 or GraphQL authorization error.
            NetworkError: Transport failure or HTTP error.
        """
        variables = {
            "accountNumber": account_number,
            "fromDatetime": to_utc_iso(window.start),
            "toDatetime": to_utc_iso(window.end),
        }
        try:
            body = await self._post("readings", HALF_HOURLY_READINGS_QUERY, variables, token=token)
        except MalformedResponseError as e:
            logger.warning(f"Treating readings response as empty: {e}")
            return []

        errors = body.get("errors") or []
        if any(_is_auth_error(error) for error in errors):
            raise TokenExpiredError(f"readings: {_error_messages(errors)}")

        try:
            raw_readings = self._extract_readings(body)
        except MalformedResponseError as e:
            if errors:
                logger.error(f"GraphQL errors fetching readings: {_error_messages(errors)}")
            logger.warning(f"Treating readings response as empty: {e}")
            return []

        readings = []
        for item in raw_readings:
            try:
                readings.append(Reading.from_api(item))
            except MalformedResponseError as e:
                logger.warning(f"Skipping reading: {e}")
        logger.debug(
            f"Fetched {len(readings)} readings for {variables['fromDatetime']}..{variables['toDatetime']}"
        )
        return readings

    @staticmethod
    def _extract_readings(body: dict[str, Any]) -> list[Any]:
        """
        Walk data.account.properties[0].electricitySupplyPoints[0].halfHourlyReadings.

        Raises:
            MalformedResponseError: If any level is missing or empty.
        """
        try:
            account = body["data"]["account"]
            supply_point = account["properties"][0]["electricitySupplyPoints"][0]
            readings = supply_point["halfHourlyReadings"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(f"readings not found in response ({type(e).__name__}: {e})") from e
        if not isinstance(readings, list):
            raise MalformedResponseError("halfHourlyReadings is not a list")
        return readings
