"""
auth/tokens.py -- JWT issuance/verification and auth cookie utilities.

Security design decisions:
  JWT: python-jose with HS256. Two token classes:
       access  -- signed with JWT_SECRET, short TTL, authorizes API calls.
       refresh -- signed with JWT_REFRESH_SECRET, 7 day TTL, only mints new
                  access tokens.
       Distinct secrets bound the blast radius of a leaked refresh secret,
       and the "typ" claim stops one class being replayed as the other.
       Both carry iss/aud tags against cross-service token reuse.

  Verification raises instead of returning None so callers can tell the
  outcomes apart: TokenExpired (prompt re-login), TokenMalformed (reject and
  clear stored tokens), TokenInvalid (anything else).

  Cookies: accessToken / refreshToken, httpOnly, samesite=lax, path "/",
  secure only in production. max_age matches the token TTL so cookie and
  token expire together.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import TokenExpired, TokenInvalid, TokenMalformed
from core.config import get_settings

logger = logging.getLogger("lms.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


def _secret_for(kind: TokenKind) -> str:
    return _settings.jwt_secret if kind is TokenKind.ACCESS else _settings.jwt_refresh_secret


def _ttl_for(kind: TokenKind) -> int:
    if kind is TokenKind.ACCESS:
        return _settings.access_token_expire_seconds
    return _settings.refresh_token_expire_seconds


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(claims: dict, kind: TokenKind, expire_seconds: int = 0) -> str:
    now = datetime.now(timezone.utc)
    duration = expire_seconds if expire_seconds > 0 else _ttl_for(kind)
    payload = {
        "sub": str(claims["id"]),
        "id": claims["id"],
        "email": claims["email"],
        "typ": kind.value,
        "iss": _settings.jwt_issuer,
        "aud": _settings.jwt_audience,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    if claims.get("role"):
        payload["role"] = claims["role"]
    return jwt.encode(payload, _secret_for(kind), algorithm=_ALGORITHM)


def create_access_token(claims: dict, expire_seconds: int = 0) -> str:
    """Sign {id, email, role} with the access secret.

    Args:
        claims:         Mapping with "id", "email" and optionally "role".
        expire_seconds: Override for the TTL. 0 (default) uses
                        Settings.access_token_expire_seconds.
    """
    return _encode(claims, TokenKind.ACCESS, expire_seconds)


def create_refresh_token(claims: dict, expire_seconds: int = 0) -> str:
    """Sign {id, email, role} with the refresh secret and the long TTL."""
    return _encode(claims, TokenKind.REFRESH, expire_seconds)


def verify_token(token: str, kind: TokenKind) -> dict:
    """Verify a token against the secret of its class and return the claims.

    Raises:
        TokenExpired:   exp has passed.
        TokenMalformed: structure or signature invalid.
        TokenInvalid:   any other failure (issuer, audience, wrong token
                        class, missing identity claims).
    """
    try:
        payload = jwt.decode(
            token,
            _secret_for(kind),
            algorithms=[_ALGORITHM],
            audience=_settings.jwt_audience,
            issuer=_settings.jwt_issuer,
        )
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTClaimsError as exc:
        raise TokenInvalid(detail=str(exc)) from exc
    except JWTError as exc:
        raise TokenMalformed() from exc

    if payload.get("typ") != kind.value:
        raise TokenInvalid(detail=f"Expected a {kind.value} token")
    if not isinstance(payload.get("id"), int) or "email" not in payload:
        raise TokenInvalid(detail="Token is missing identity claims")
    return payload


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, access_token: str, refresh_token: str | None = None) -> None:
    """Write the access (and optionally refresh) token as httpOnly cookies.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": sent on top-level navigations such as the OAuth redirect
        back from Google, withheld on cross-site POST (CSRF mitigation).
    secure: only in production.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        path="/",
        max_age=_settings.access_token_expire_seconds,
    )
    if refresh_token is not None:
        response.set_cookie(
            REFRESH_COOKIE,
            value=refresh_token,
            httponly=True,
            samesite="lax",
            secure=_settings.secure_cookies,
            path="/",
            max_age=_settings.refresh_token_expire_seconds,
        )


def clear_auth_cookies(response) -> None:
    """Delete both auth cookies. Attributes must match the ones used to set them."""
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            name,
            path="/",
            httponly=True,
            samesite="lax",
            secure=_settings.secure_cookies,
        )
