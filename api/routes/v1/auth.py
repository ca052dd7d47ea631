"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST     /api/v1/auth/register         -- create password account; sets cookies
  POST     /api/v1/auth/login            -- password login; sets cookies
  POST     /api/v1/auth/refresh-token    -- new access token from refreshToken cookie
  GET      /api/v1/auth/me               -- current user (requires auth)
  GET/POST /api/v1/auth/logout           -- destroy session, clear cookies; always 200
  GET      /api/v1/auth/google           -- redirect to Google
  GET      /api/v1/auth/google/callback  -- finish Google sign-in; sets cookies

Security:
  [C1] Login goes through AuthService.login -> auth.passwords.authenticate,
       which equalizes timing. Never inline find_by_email + verify_password.
  [M5] Cache-Control: no-store on every response that carries credentials.
  Session fixation: a session id the client held before signing in is
       destroyed and replaced by a fresh one.

Failures are raised as AuthError subclasses and rendered by the handlers in
api/main.py, which also clears the auth cookies where the error calls for it.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import LoginRequest, RegisterRequest, UserOut, ok
from auth.dependencies import get_current_identity
from auth.errors import OAuthUnavailable, Unauthenticated
from auth.models import AuthResult, Identity
from auth.oauth import GOOGLE, profile_from_google_token
from auth.service import AuthService
from auth.tokens import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
from core.config import get_settings

logger = logging.getLogger("lms.api.auth")

# Auth policy:
# - POST /auth/register, /auth/login:   public
# - POST /auth/refresh-token:           public -- the refresh cookie is the credential
# - GET  /auth/logout:                  public -- clearing credentials needs no prior auth
# - GET  /auth/google[/callback]:       public
# - GET  /auth/me:                      requires auth (get_current_identity)
router = APIRouter()

_SESSION_KEY = "sid"


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _signed_in_response(request: Request, result: AuthResult, message: str, status_code: int = 200) -> JSONResponse:
    """Bind the new session to the session cookie and set both token cookies.

    The session row was committed by AuthService before this runs.
    """
    request.session[_SESSION_KEY] = result.session_id
    resp = JSONResponse(
        status_code=status_code,
        content=ok(message, {"user": UserOut.from_user(result.user).model_dump()}),
    )
    set_auth_cookies(resp, result.access_token, result.refresh_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Password flows
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
def register(request: Request, body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Create a student account with email and password and sign it in."""
    result = service.register(body.name, body.email, body.password, request.session.get(_SESSION_KEY))
    return _signed_in_response(request, result, "Registration successful", status_code=201)


@router.post("/auth/login")
def login(request: Request, body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same invalid_credentials
    error. An OAuth-only account gets oauth_only_account instead.
    """
    result = service.login(body.email, body.password, request.session.get(_SESSION_KEY))
    return _signed_in_response(request, result, "Login successful")


@router.post("/auth/refresh-token")
def refresh_token(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Issue a new access token. The refresh token itself is not rotated."""
    result = service.refresh(request.cookies.get(REFRESH_COOKIE))
    resp = JSONResponse(
        content=ok(
            "Token refreshed successfully",
            {"accessToken": result.access_token, "user": UserOut.from_user(result.user).model_dump()},
        )
    )
    set_auth_cookies(resp, result.access_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/me")
def me(
    identity: Identity = Depends(get_current_identity),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    """Return the sanitized record of the authenticated caller."""
    user = service.current_user(identity)
    return ok("User retrieved successfully", {"user": UserOut.from_user(user).model_dump()})


@router.api_route("/auth/logout", methods=["GET", "POST"])
def logout(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Destroy the session if any and clear both cookies. Always succeeds."""
    service.logout(request.session.get(_SESSION_KEY))
    request.session.clear()
    resp = JSONResponse(content=ok("Logged out successfully"))
    clear_auth_cookies(resp)
    return resp


# ---------------------------------------------------------------------------
# Google OAuth
# ---------------------------------------------------------------------------


def _google_client(request: Request):
    client = request.app.state.oauth.create_client(GOOGLE)
    if client is None:
        raise OAuthUnavailable("Google sign-in is not configured.")
    return client


@router.get("/auth/google")
async def google_auth(request: Request):
    """Redirect the browser to Google's consent page.

    Authlib stores the OAuth state in request.session before redirecting.
    """
    client = _google_client(request)
    redirect_uri = get_settings().google_callback_url or str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri, prompt="select_account")


@router.get("/auth/google/callback", name="google_callback")
async def google_callback(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Finish Google sign-in: exchange the code, resolve the account, sign in.

    Flow:
      1. Exchange the authorization code (Authlib verifies state from the session).
      2. Normalize the userinfo claims into an OAuthProfile.
      3. Resolve / link / create the local account (auth.oauth.resolve_oauth_user).
      4. Open a session and set both token cookies.
    Any failure responds with an error envelope and sets no cookies.
    """
    client = _google_client(request)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.warning("Google token exchange failed: %s", exc.error)
        raise Unauthenticated(detail="OAuth token exchange failed") from exc

    profile = profile_from_google_token(token)
    result = service.complete_oauth(profile, request.session.get(_SESSION_KEY))
    return _signed_in_response(request, result, "Successfully logged in")
