"""Tests for config module."""

from __future__ import annotations

from datetime import timedelta

import pytest

from energy_forecast.config import (
    ENV_ACCOUNT_NUMBER,
    ENV_EMAIL,
    ENV_PASSWORD,
    ENV_STORAGE_DIR,
    Config,
    Credentials,
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in (ENV_EMAIL, ENV_PASSWORD, ENV_ACCOUNT_NUMBER, ENV_STORAGE_DIR):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestConfigConstants:
    """Tests for static configuration values."""

    def test_api_url(self) -> None:
        """Verifies the GraphQL endpoint of the Japanese Kraken deployment.

        Business context:
        Every token and readings request goes to this single endpoint;
        a wrong host would make the dashboard useless.

        Arrangement:
        None - tests static constant.

        Action:
        Access Config.API_URL.

        Assertion Strategy:
        Exact string match including the trailing slash the API expects.
        """
        assert Config.API_URL == "https://api.oejp-kraken.energy/v1/graphql/"

    def test_cache_settings(self) -> None:
        assert Config.CACHE_TTL == timedelta(hours=3)
        assert Config.CACHE_MAX_WINDOWS == 20
        assert Config.CACHE_FILE == "energy_forecast_cache.json"
        assert Config.CACHE_KEY_PREFIX == "electricity_usage:"

    def test_pricing(self) -> None:
        assert Config.ELECTRICITY_RATE == 37.2
        assert Config.CURRENCY == "JPY"

    def test_timezone(self) -> None:
        assert Config.TIMEZONE == "Asia/Tokyo"
        assert Config.SLOT_MINUTES == 30

    def test_forecast_window(self) -> None:
        # Trimmed mean of 5 days, only once 6 or more days exist
        assert Config.TRIMMED_MEAN_MIN_DAYS == 6
        assert Config.TRIMMED_MEAN_WINDOW == 5


class TestCredentials:
    """Tests for Credentials."""

    def test_repr_hides_password(self) -> None:
        """Verifies the password never appears in reprs.

        Business context:
        Credentials objects end up in log lines and tracebacks; the
        password must not leak there.

        Arrangement:
        Credentials with a recognisable password.

        Action:
        repr() and str().

        Assertion Strategy:
        E-mail and account shown, password absent.
        """
        creds = Credentials(email="a@b.jp", password="hunter2", account_number="A-1")
        assert "hunter2" not in repr(creds)
        assert "hunter2" not in str(creds)
        assert "a@b.jp" in repr(creds)
        assert "A-1" in repr(creds)

    def test_frozen(self) -> None:
        creds = Credentials(email="a@b.jp", password="pw", account_number="A-1")
        with pytest.raises(AttributeError):
            creds.email = "c@d.jp"  # type: ignore[misc]


class TestGetCredentials:
    """Tests for Config.get_credentials()."""

    def test_from_environment(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv(ENV_EMAIL, "a@b.jp")
        clean_env.setenv(ENV_PASSWORD, "pw")
        clean_env.setenv(ENV_ACCOUNT_NUMBER, "A-1234ABCD")
        assert Config.get_credentials() == Credentials("a@b.jp", "pw", "A-1234ABCD")
        assert Config.has_credentials() is True

    def test_unset(self, clean_env: pytest.MonkeyPatch) -> None:
        assert Config.get_credentials() is None
        assert Config.has_credentials() is False

    @pytest.mark.parametrize("missing", [ENV_EMAIL, ENV_PASSWORD, ENV_ACCOUNT_NUMBER])
    def test_partial_set_is_absent(self, clean_env: pytest.MonkeyPatch, missing: str) -> None:
        """Verifies a partial set of variables counts as no credentials.

        Business context:
        A half-configured environment must fall back to the login form
        rather than attempt a login that can only fail.

        Arrangement:
        All three variables set, then one removed or emptied.

        Action:
        get_credentials().

        Assertion Strategy:
        None for both a missing and an empty variable.
        """
        for name in (ENV_EMAIL, ENV_PASSWORD, ENV_ACCOUNT_NUMBER):
            clean_env.setenv(name, "x")
        clean_env.delenv(missing)
        assert Config.get_credentials() is None
        clean_env.setenv(missing, "")
        assert Config.get_credentials() is None

    def test_override_wins(self, clean_env: pytest.MonkeyPatch) -> None:
        creds = Credentials("t@t.jp", "pw", "A-TEST")
        Config.set_test_overrides(credentials=creds)
        assert Config.get_credentials() is creds
        Config.reset_test_overrides()
        assert Config.get_credentials() is None


class TestGetStorageDir:
    """Tests for Config.get_storage_dir() priority."""

    def test_default(self, clean_env: pytest.MonkeyPatch) -> None:
        assert Config.get_storage_dir() == ".energy_forecast"

    def test_environment(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv(ENV_STORAGE_DIR, "/var/lib/energy")
        assert Config.get_storage_dir() == "/var/lib/energy"

    def test_override_beats_environment(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv(ENV_STORAGE_DIR, "/var/lib/energy")
        Config.set_test_overrides(storage_dir="/tmp/test")
        assert Config.get_storage_dir() == "/tmp/test"
