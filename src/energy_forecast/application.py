"""
Application root for EnergyForecast.

PURPOSE: Construct and wire every collaborator exactly once per process.
AI CONTEXT: Replaces module-level singletons. The web app and the CLI each
build one EnergyForecastApp; tests build isolated ones with in-memory
storage, a fixed clock and an httpx.MockTransport.

OBJECT GRAPH:
    TimeZoneConverter -> PeriodCalculator
    PersistentCache (FileSystem, clock)
    KrakenClient -> AuthSession (on_auth_error)
    UsageAggregator
    FetchOrchestrator    created after login, fetches through AuthSession

LIFECYCLE:
    app = EnergyForecastApp()
    await app.start()          # auto-login when ENERGY_FORECAST_* are set
    await app.login(email, password, account_number)   # login form
    app.logout()
    await app.close()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime
from typing import TYPE_CHECKING

import httpx

from .aggregator import UsageAggregator
from .api import KrakenClient
from .auth import AuthSession
from .cache import PersistentCache
from .config import Config
from .errors import AuthError, NetworkError
from .models import PeriodWindow, Reading, ViewGranularity
from .orchestrator import FetchOrchestrator
from .periods import PeriodCalculator
from .timezone import TimeZoneConverter

if TYPE_CHECKING:
    from .filesystem import FileSystem

__all__ = ["EnergyForecastApp"]

logger = logging.getLogger(__name__)


class EnergyForecastApp:
    """
    Explicit dependency-injection root.

    One account per running dashboard: logging in with another account
    number replaces the orchestrator, logging in again with the same one
    resumes it.
    """

    def __init__(
        self,
        storage_dir: str | None = None,
        filesystem: FileSystem | None = None,
        clock: Callable[[], datetime] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        api_url: str | None = None,
    ) -> None:
        """
        Build the object graph. No I/O besides loading the cache slot.

        Args:
            storage_dir: Cache directory. Default: Config.get_storage_dir()
            filesystem: FileSystem for the cache. Default: RealFileSystem
            clock: Callable returning aware "now". Default: wall clock
            transport: httpx transport for the GraphQL client (tests).
            api_url: GraphQL endpoint. Default: Config.API_URL
        """
        self.converter = TimeZoneConverter(clock=clock)
        self.periods = PeriodCalculator(self.converter)
        self.cache = PersistentCache(storage_dir=storage_dir, filesystem=filesystem, clock=clock)
        self.client = KrakenClient(api_url=api_url, transport=transport)
        self.session = AuthSession(self.client, on_auth_error=self._on_auth_error)
        self.aggregator = UsageAggregator(self.converter)
        self.orchestrator: FetchOrchestrator | None = None
        self.account_number: str | None = None
        self.login_error: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.session.is_authenticated and self.orchestrator is not None

    async def start(self) -> bool:
        """
        Log in with environment credentials when all three are set.

        Returns:
            True when logged in. Failures are logged and recorded in
            login_error; the dashboard then shows its login form.
        """
        credentials = Config.get_credentials()
        if credentials is None:
            logger.info("No bootstrap credentials; waiting for login")
            return False
        try:
            await self.login(credentials.email, credentials.password, credentials.account_number)
        except (AuthError, NetworkError) as e:
            logger.warning(f"Auto-login failed: {e}")
            return False
        return True

    async def login(
        self,
        email: str,
        password: str,
        account_number: str,
        initial_date: date | datetime | str | None = None,
        granularity: ViewGranularity | str = ViewGranularity.DAY,
    ) -> FetchOrchestrator:
        """
        Authenticate and start (or resume) the orchestrator.

        Args:
            email: Account e-mail.
            password: Account password.
            account_number: Kraken account number, e.g. "A-1234ABCD".
            initial_date: First target date for a new orchestrator.
            granularity: First view granularity for a new orchestrator.

        Returns:
            The running orchestrator.

        Raises:
            AuthError: Credentials rejected.
            NetworkError: Provider unreachable.
        """
        try:
            await self.session.login(email, password)
        except (AuthError, NetworkError) as e:
            self.login_error = str(e)
            raise
        self.login_error = None

        if self.orchestrator is not None and self.account_number == account_number:
            self.orchestrator.resume()
            return self.orchestrator

        if self.orchestrator is not None:
            self.orchestrator.close()
        self.account_number = account_number
        self.orchestrator = FetchOrchestrator(
            self._fetch_readings,
            self.cache,
            self.periods,
            account_number,
            initial_date=initial_date,
            granularity=granularity,
        )
        self.orchestrator.start()
        return self.orchestrator

    async def _fetch_readings(self, window: PeriodWindow) -> list[Reading]:
        account_number = self.account_number
        if account_number is None:
            raise AuthError("No account selected")
        return await self.session.authorized_request(
            lambda token: self.client.fetch_half_hourly_readings(token, account_number, window)
        )

    def _on_auth_error(self) -> None:
        self.login_error = "Session expired. Please log in again."
        logger.warning("Token refresh failed; login required")

    def logout(self) -> None:
        """Forget tokens and stop the orchestrator. The cache is kept."""
        self.session.logout()
        if self.orchestrator is not None:
            self.orchestrator.close()
            self.orchestrator = None
        self.account_number = None

    async def close(self) -> None:
        """Stop the orchestrator and release the HTTP client."""
        if self.orchestrator is not None:
            self.orchestrator.close()
        await self.client.close()
