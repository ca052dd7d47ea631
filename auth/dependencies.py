"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and roles.

One canonical mechanism resolves the caller: the access token, read from
  1. the "accessToken" cookie (browser clients), else
  2. the Authorization: Bearer <token> header (API clients).
The server-side session is never consulted here.

get_current_identity() runs once per request and produces a frozen Identity.
Route code reads id/email/role from that object and nothing else.

Failures raise AuthError subclasses; api/main.py renders them and clears the
auth cookies for the ones that invalidate the token (expired, malformed,
user gone, deactivated).

Authorization gate:
  authorize(identity, roles, target_id) -- pure check, raises Forbidden.
  require_roles(*roles)                 -- dependency: role in allow-set.
  require_self_or_roles(*roles)         -- dependency: role in allow-set, or
                                           the {user_id} path param is the caller.

Layer rule: no imports from api/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from fastapi import Depends, Request

from auth.errors import AccountDeactivated, Forbidden, MissingToken, UserNotFound
from auth.models import Identity
from auth.store import UserStore
from auth.tokens import ACCESS_COOKIE, TokenKind, verify_token


def _token_from_request(request: Request) -> str | None:
    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def get_current_identity(request: Request) -> Identity:
    """Require a valid access token and an active account behind it.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    token = _token_from_request(request)
    if token is None:
        raise MissingToken("Access token required.", detail="No token provided")

    claims = verify_token(token, TokenKind.ACCESS)

    user_store: UserStore = request.app.state.user_store
    user = user_store.find_by_id(claims["id"])
    if user is None:
        raise UserNotFound("Invalid token.", detail="User not found", status_code=401, clears_cookies=True)
    if not user.is_active:
        raise AccountDeactivated(detail="User account is not active")

    return Identity.from_user(user)


def authorize(identity: Identity, roles: Iterable[str], target_id: int | None = None) -> None:
    """Pass when the caller's role is allowed or the caller is the target user."""
    if identity.role in set(roles):
        return
    if target_id is not None and identity.id == target_id:
        return
    raise Forbidden()


def require_roles(*roles: str) -> Callable[..., Identity]:
    """Dependency factory: caller's role must be one of roles.

        @router.get("/users", dependencies=[Depends(require_roles("admin"))])
    """

    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        authorize(identity, roles)
        return identity

    return dependency


def require_self_or_roles(*roles: str, param: str = "user_id") -> Callable[..., Identity]:
    """Dependency factory: caller owns the target (path param) or has one of roles."""

    def dependency(request: Request, identity: Identity = Depends(get_current_identity)) -> Identity:
        raw = request.path_params.get(param)
        try:
            target_id = int(raw) if raw is not None else None
        except ValueError:
            target_id = None
        authorize(identity, roles, target_id)
        return identity

    return dependency


require_admin = require_roles("admin")
