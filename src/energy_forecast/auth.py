"""
Authentication session for EnergyForecast.

PURPOSE: Hold the access/refresh token pair and run provider requests with
a transparent, single-flight refresh-and-retry.
AI CONTEXT: One AuthSession per application root. Tokens live in memory
only and are never persisted.

REFRESH PROTOCOL:
1. authorized_request(call) runs call(access_token)
2. On TokenExpiredError the request joins the refresh task (creating it if
   none is running); requests that fail while it runs attach to the same
   task, so N concurrent 401s cause exactly one refresh
3. Each request retries once with the new token; a second rejection is
   an AuthError, never another refresh
4. A failed refresh clears the tokens, fails every waiter with AuthError
   and calls on_auth_error exactly once
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from .errors import AuthError, TokenExpiredError

if TYPE_CHECKING:
    from .api import KrakenClient

__all__ = ["AuthSession", "TokenState"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TokenState:
    """Current token pair; both None when logged out."""

    access_token: str | None = None
    refresh_token: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    def __repr__(self) -> str:
        return f"TokenState(authenticated={self.is_authenticated})"


class AuthSession:
    """
    Token holder with single-flight refresh.

    DESIGN: The in-progress refresh is a single asyncio.Task that late
    arrivals await (through asyncio.shield, so one cancelled waiter does
    not cancel the refresh for the others). The task slot is cleared when
    the refresh settles.
    """

    def __init__(
        self,
        client: KrakenClient,
        on_auth_error: Callable[[], None] | None = None,
    ) -> None:
        """
        Initialize a logged-out session.

        Args:
            client: GraphQL client used for obtainKrakenToken.
            on_auth_error: Called once per failed refresh. May be set later
                through the attribute of the same name.
        """
        self.client = client
        self.on_auth_error = on_auth_error
        self._state = TokenState()
        self._refresh_task: asyncio.Task[str] | None = None

    @property
    def state(self) -> TokenState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    async def login(self, email: str, password: str) -> None:
        """
        Obtain a token pair with e-mail and password.

        Raises:
            AuthError: Credentials rejected.
            NetworkError: Provider unreachable.
        """
        tokens = await self.client.obtain_token(email=email, password=password)
        self._state = TokenState(access_token=tokens.token, refresh_token=tokens.refresh_token)
        logger.info("Logged in")

    def logout(self) -> None:
        """Forget the token pair. Does not call on_auth_error."""
        self._state = TokenState()
        logger.info("Logged out")

    async def refresh(self) -> str:
        """
        Refresh the token pair now, joining a refresh already in flight.

        Returns:
            The new access token.

        Raises:
            AuthError: No refresh token, or the provider rejected it.
            NetworkError: Provider unreachable (tokens are kept).
        """
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._do_refresh())
        return await asyncio.shield(self._refresh_task)

    async def _do_refresh(self) -> str:
        try:
            refresh_token = self._state.refresh_token
            if not refresh_token:
                self._fail_session()
                raise AuthError("No refresh token available")
            try:
                tokens = await self.client.obtain_token(refresh_token=refresh_token)
            except AuthError as e:
                self._fail_session()
                raise AuthError(f"Token refresh failed: {e}") from e
            self._state = TokenState(access_token=tokens.token, refresh_token=tokens.refresh_token)
            logger.info("Access token refreshed")
            return tokens.token
        finally:
            self._refresh_task = None

    def _fail_session(self) -> None:
        logger.warning("Session invalidated; re-authentication required")
        self._state = TokenState()
        if self.on_auth_error is not None:
            self.on_auth_error()

    async def _token_after_rejection(self, rejected_token: str) -> str:
        """New token for a request whose token was rejected."""
        current = self._state.access_token
        if current is not None and current != rejected_token and self._refresh_task is None:
            # Another request already refreshed
            return current
        return await self.refresh()

    async def authorized_request(self, call: Callable[[str], Awaitable[T]]) -> T:
        """
        Run call(access_token), refreshing and retrying once on rejection.

        Args:
            call: Coroutine function taking the raw access token.

        Returns:
            Whatever call returns.

        Raises:
            AuthError: Not logged in, refresh failed, or the retried
                request was rejected again.
            NetworkError: Propagated from call or from the refresh.

        Example:
            >>> readings = await session.authorized_request(
            ...     lambda token: client.fetch_half_hourly_readings(token, account, window))
        """
        token = self._state.access_token
        if token is None:
            raise AuthError("Not logged in")
        try:
            return await call(token)
        except TokenExpiredError:
            logger.debug("Access token rejected; refreshing")

        new_token = await self._token_after_rejection(token)
        try:
            return await call(new_token)
        except TokenExpiredError as e:
            raise AuthError(f"Request rejected after token refresh: {e}") from e
