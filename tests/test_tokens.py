"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - access and refresh tokens verify against their own secret only
  - the typ claim stops one token class being replayed as the other
  - expired, malformed and wrong-audience tokens map to distinct errors
  - cookie helpers set and delete both cookies with the expected attributes
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.responses import JSONResponse
from jose import jwt

from auth.errors import TokenExpired, TokenInvalid, TokenMalformed
from auth.tokens import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    TokenKind,
    clear_auth_cookies,
    create_access_token,
    create_refresh_token,
    set_auth_cookies,
    verify_token,
)
from core.config import get_settings

CLAIMS = {"id": 1, "email": "a@x.com", "role": "student"}


def _forge(secret: str, **overrides) -> str:
    """Sign an arbitrary payload, defaulting to a valid refresh token."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": "1",
        "id": 1,
        "email": "a@x.com",
        "typ": "refresh",
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + timedelta(hours=1),
    }
    payload.update(overrides)
    return jwt.encode(payload, secret, algorithm="HS256")


class TestIssueAndVerify:
    def test_access_token_round_trip(self) -> None:
        claims = verify_token(create_access_token(CLAIMS), TokenKind.ACCESS)
        assert claims["id"] == 1
        assert claims["email"] == "a@x.com"
        assert claims["role"] == "student"
        assert claims["typ"] == "access"

    def test_refresh_token_round_trip(self) -> None:
        claims = verify_token(create_refresh_token(CLAIMS), TokenKind.REFRESH)
        assert claims["id"] == 1
        assert claims["typ"] == "refresh"

    def test_tokens_carry_issuer_and_audience(self) -> None:
        settings = get_settings()
        claims = jwt.get_unverified_claims(create_access_token(CLAIMS))
        assert claims["iss"] == settings.jwt_issuer
        assert claims["aud"] == settings.jwt_audience

    def test_expire_seconds_override(self) -> None:
        claims = jwt.get_unverified_claims(create_access_token(CLAIMS, expire_seconds=60))
        assert claims["exp"] - claims["iat"] == 60

    def test_refresh_token_rejected_as_access(self) -> None:
        """Different secrets: the signature check fails before typ is read."""
        with pytest.raises(TokenMalformed):
            verify_token(create_refresh_token(CLAIMS), TokenKind.ACCESS)

    def test_access_token_rejected_as_refresh(self) -> None:
        with pytest.raises(TokenMalformed):
            verify_token(create_access_token(CLAIMS), TokenKind.REFRESH)

    def test_wrong_typ_with_right_secret_is_invalid(self) -> None:
        token = _forge(get_settings().jwt_secret, typ="refresh")
        with pytest.raises(TokenInvalid):
            verify_token(token, TokenKind.ACCESS)


class TestFailures:
    def test_expired_refresh_token(self) -> None:
        now = datetime.now(timezone.utc)
        token = _forge(get_settings().jwt_refresh_secret, iat=now - timedelta(days=8), exp=now - timedelta(days=1))
        with pytest.raises(TokenExpired) as exc_info:
            verify_token(token, TokenKind.REFRESH)
        assert exc_info.value.clears_cookies

    @pytest.mark.parametrize("token", ["not.a.jwt", "garbage", ""])
    def test_malformed_token(self, token: str) -> None:
        with pytest.raises(TokenMalformed) as exc_info:
            verify_token(token, TokenKind.REFRESH)
        assert exc_info.value.clears_cookies

    def test_tampered_signature(self) -> None:
        signing_input, signature = create_refresh_token(CLAIMS).rsplit(".", 1)
        flipped = "B" if signature[0] == "A" else "A"
        tampered = f"{signing_input}.{flipped}{signature[1:]}"
        with pytest.raises(TokenMalformed):
            verify_token(tampered, TokenKind.REFRESH)

    def test_wrong_audience_is_invalid(self) -> None:
        token = _forge(get_settings().jwt_refresh_secret, aud="some-other-service")
        with pytest.raises(TokenInvalid):
            verify_token(token, TokenKind.REFRESH)

    def test_missing_identity_claims_is_invalid(self) -> None:
        token = _forge(get_settings().jwt_refresh_secret, id="1")
        with pytest.raises(TokenInvalid):
            verify_token(token, TokenKind.REFRESH)


class TestCookies:
    def test_set_auth_cookies_sets_both(self) -> None:
        resp = JSONResponse(content={})
        set_auth_cookies(resp, "acc", "ref")
        headers = [v for k, v in resp.raw_headers if k == b"set-cookie"]
        cookies = [h.decode() for h in headers]
        access = next(c for c in cookies if c.startswith(f"{ACCESS_COOKIE}="))
        refresh = next(c for c in cookies if c.startswith(f"{REFRESH_COOKIE}="))
        for cookie in (access, refresh):
            lowered = cookie.lower()
            assert "httponly" in lowered
            assert "samesite=lax" in lowered
            assert "path=/" in lowered
        settings = get_settings()
        assert f"Max-Age={settings.access_token_expire_seconds}" in access
        assert f"Max-Age={settings.refresh_token_expire_seconds}" in refresh

    def test_set_auth_cookies_access_only(self) -> None:
        resp = JSONResponse(content={})
        set_auth_cookies(resp, "acc")
        cookies = [v.decode() for k, v in resp.raw_headers if k == b"set-cookie"]
        assert len(cookies) == 1
        assert cookies[0].startswith(f"{ACCESS_COOKIE}=")

    def test_clear_auth_cookies(self) -> None:
        resp = JSONResponse(content={})
        clear_auth_cookies(resp)
        cookies = [v.decode().lower() for k, v in resp.raw_headers if k == b"set-cookie"]
        assert any(c.startswith("accesstoken=") and "max-age=0" in c for c in cookies)
        assert any(c.startswith("refreshtoken=") and "max-age=0" in c for c in cookies)
