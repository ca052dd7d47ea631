"""
api/main.py -- FastAPI application entry point for the LMS auth service.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests      -- one log line per request with latency
  2. SessionMiddleware -- signed cookie carrying the server-side session id
                          and Authlib's OAuth state

Lifespan builds the process-wide collaborators once and hangs them on
app.state: user_store, session_store, oauth (Authlib registry), auth_service.
Shutdown disposes the stores symmetrically.

Every response, including every error, uses the envelope from api/models.py.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.models import HealthData, fail, ok
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError, ServerError
from auth.oauth import build_oauth
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import clear_auth_cookies
from core.config import get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("lms.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The OAuth registry is built here, once, and handed to routes
    through app.state rather than living as a module-level singleton.
    """
    logger.info("LMS auth API starting up (environment=%s)", _settings.environment)
    app.state.user_store = UserStore(_settings.database_url)
    app.state.session_store = SessionStore(_settings.database_url, _settings.session_max_age_seconds)
    app.state.session_store.purge_expired()
    app.state.oauth = build_oauth(_settings)
    app.state.auth_service = AuthService(app.state.user_store, app.state.session_store)
    logger.info("Auth initialized (google=%s)", _settings.google_enabled)

    yield

    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("LMS auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="LMS Auth API",
    description="Registration, login, token refresh, Google sign-in and user accounts for the LMS.",
    version=__version__,
    lifespan=lifespan,
)

# SessionMiddleware keeps the opaque server-side session id and, during the
# Google redirect, Authlib's OAuth state. same_site="lax" lets the cookie
# come back on the top-level redirect from Google while withholding it on
# cross-site POSTs. max_age is the absolute 24 h session lifetime.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.session_secret,
    session_cookie="lms_session",
    max_age=_settings.session_max_age_seconds,
    same_site="lax",
    https_only=_settings.secure_cookies,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same envelope so clients parse errors uniformly.
# ---------------------------------------------------------------------------


def _error_response(exc: AuthError) -> JSONResponse:
    response = JSONResponse(
        status_code=exc.status_code,
        content=fail(exc.message, exc.code, exc.detail),
    )
    if exc.clears_cookies:
        clear_auth_cookies(response)
    return response


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any taxonomy error; clear auth cookies when the error says so."""
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 validation_failed with the offending fields."""
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=fail("Request validation failed.", "validation_failed", errors))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap framework HTTP errors (404 route, 405 method) in the envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=fail(str(exc.detail), f"http_{exc.status_code}"),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected errors.

    The exception is always logged server-side. Its text reaches the client
    only outside production, for diagnostics.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = None if _settings.is_production else str(exc)
    return _error_response(ServerError(detail=detail))


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> dict:
    """Return liveness, version and database reachability. No auth required."""
    db_ok = request.app.state.user_store.ping()
    data = HealthData(version=__version__, components={"app": "ok", "database": "ok" if db_ok else "error"})
    return ok("Service is healthy", data.model_dump())
