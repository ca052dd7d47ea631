"""
tests/test_config.py -- Unit tests for core/config.py secret policy.

Settings(...) keyword arguments take priority over the environment that
conftest.py sets, so each case controls exactly the values it checks.
"""

from __future__ import annotations

import pytest

from core.config import Settings

ACCESS = "a" * 32
REFRESH = "r" * 32
SESSION = "s" * 32


def test_explicit_secrets_accepted() -> None:
    settings = Settings(debug=False, jwt_secret=ACCESS, jwt_refresh_secret=REFRESH, session_secret=SESSION)
    assert settings.jwt_secret == ACCESS
    assert settings.access_token_expire_seconds == 3600
    assert settings.refresh_token_expire_seconds == 7 * 24 * 3600


def test_missing_secret_outside_debug_fails() -> None:
    with pytest.raises(ValueError, match="JWT_SECRET"):
        Settings(debug=False, jwt_secret="", jwt_refresh_secret=REFRESH, session_secret=SESSION)


def test_missing_secrets_generated_in_debug() -> None:
    settings = Settings(debug=True, jwt_secret="", jwt_refresh_secret="", session_secret="")
    assert len(settings.jwt_secret) >= 32
    assert settings.jwt_secret != settings.jwt_refresh_secret


def test_short_secret_rejected() -> None:
    with pytest.raises(ValueError, match="at least 32"):
        Settings(debug=False, jwt_secret="short", jwt_refresh_secret=REFRESH, session_secret=SESSION)


def test_shared_access_and_refresh_secret_rejected() -> None:
    with pytest.raises(ValueError, match="must be different"):
        Settings(debug=False, jwt_secret=ACCESS, jwt_refresh_secret=ACCESS, session_secret=SESSION)


def test_secure_cookies_only_in_production() -> None:
    common = dict(jwt_secret=ACCESS, jwt_refresh_secret=REFRESH, session_secret=SESSION)
    assert Settings(environment="production", **common).secure_cookies is True
    assert Settings(environment="development", **common).secure_cookies is False


def test_google_enabled_needs_both_credentials() -> None:
    common = dict(jwt_secret=ACCESS, jwt_refresh_secret=REFRESH, session_secret=SESSION)
    assert Settings(google_client_id="id", google_client_secret="", **common).google_enabled is False
    assert Settings(google_client_id="id", google_client_secret="s", **common).google_enabled is True
