"""
api/routes/v1/users.py -- User account management endpoints.

Routes:
  POST   /api/v1/users                     -- create user (admin only)
  GET    /api/v1/users                     -- list users (admin only)
  GET    /api/v1/users/search/by-email     -- look up by ?email= (admin only)
  GET    /api/v1/users/search/by-google-id -- look up by ?googleId= (admin only)
  GET    /api/v1/users/{id}                -- get user (self or admin)
  PUT    /api/v1/users/{id}                -- edit profile (self or admin; role: admin only)
  PUT    /api/v1/users/{id}/password       -- change own password (self only)
  PATCH  /api/v1/users/{id}/status         -- activate / deactivate (admin only)
  DELETE /api/v1/users/{id}                -- delete (admin only, never an admin account)

Security:
  Every route goes through the role gate in auth/dependencies.py.
  [M4] Admins cannot deactivate their own account.
  Email changes rely on the UNIQUE constraint: IntegrityError -> email_in_use.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import PasswordChange, UserCreate, UserOut, UserStatusUpdate, UserUpdate, ok
from api.routes.v1.auth import get_auth_service
from auth.dependencies import authorize, require_admin, require_self_or_roles
from auth.errors import EmailInUse, Forbidden, UserNotFound, ValidationFailed
from auth.models import Identity, User
from auth.oauth import GOOGLE
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import UserStore

logger = logging.getLogger("lms.api.users")

router = APIRouter()


def _store(request: Request) -> UserStore:
    return request.app.state.user_store


def _user_out(user: User) -> dict:
    return UserOut.from_user(user).model_dump()


def _get_or_404(store: UserStore, user_id: int) -> User:
    user = store.find_by_id(user_id)
    if user is None:
        raise UserNotFound()
    return user


# ---------------------------------------------------------------------------
# Admin only
# ---------------------------------------------------------------------------


@router.post("/users", status_code=201)
def create_user(request: Request, body: UserCreate, admin: Identity = Depends(require_admin)) -> JSONResponse:
    """Create an account. Admin only.

    Without a password the account can only sign in through Google with the
    same email, which links the identity on first sign-in.
    """
    store = _store(request)
    new_user = User(
        email=body.email,
        name=body.name,
        role=body.role.value,
        password_hash=hash_password(body.password) if body.password else None,
        avatar_url=body.avatar_url or None,
    )
    try:
        created = store.insert(new_user)
    except IntegrityError as exc:
        raise EmailInUse() from exc
    logger.info("Admin %d created user %d", admin.id, created.id)
    return JSONResponse(status_code=201, content=ok("User created successfully", {"user": _user_out(created)}))


@router.get("/users")
def list_users(request: Request, admin: Identity = Depends(require_admin)) -> dict:
    """List all accounts. Admin only."""
    users = _store(request).list_users()
    return ok("Users retrieved successfully", {"users": [_user_out(u) for u in users]})


@router.patch("/users/{user_id}/status")
def update_status(
    request: Request,
    user_id: int,
    body: UserStatusUpdate,
    admin: Identity = Depends(require_admin),
) -> dict:
    """Activate or deactivate an account. Admin only."""
    store = _store(request)
    _get_or_404(store, user_id)
    if not body.is_active and user_id == admin.id:  # [M4]
        raise ValidationFailed("You cannot deactivate your own account.")
    updated = store.update_fields(user_id, is_active=body.is_active)
    if updated is None:
        raise UserNotFound()
    logger.info("Admin %d set user %d is_active=%s", admin.id, user_id, body.is_active)
    return ok("User status updated successfully", {"user": _user_out(updated)})


@router.delete("/users/{user_id}")
def delete_user(request: Request, user_id: int, admin: Identity = Depends(require_admin)) -> dict:
    """Permanently delete an account. Admin accounts cannot be deleted."""
    store = _store(request)
    target = _get_or_404(store, user_id)
    if target.role == "admin":
        raise Forbidden("Cannot delete admin users.")
    if not store.delete_user(user_id):
        raise UserNotFound()
    logger.info("Admin %d deleted user %d", admin.id, user_id)
    return ok("User deleted successfully")


@router.get("/users/search/by-email")
def find_user_by_email(
    request: Request,
    email: Optional[str] = Query(default=None),
    admin: Identity = Depends(require_admin),
) -> dict:
    """Look up one account by email (case-insensitive). Admin only."""
    if not email or not email.strip():
        raise ValidationFailed("Email parameter is required.")
    user = _store(request).find_by_email(email)
    if user is None:
        raise UserNotFound()
    return ok("User found", {"user": _user_out(user)})


@router.get("/users/search/by-google-id")
def find_user_by_google_id(
    request: Request,
    google_id: Optional[str] = Query(default=None, alias="googleId"),
    admin: Identity = Depends(require_admin),
) -> dict:
    """Look up the account linked to a Google subject id. Admin only."""
    if not google_id or not google_id.strip():
        raise ValidationFailed("Google ID parameter is required.")
    user = _store(request).find_by_oauth_id(GOOGLE, google_id.strip())
    if user is None:
        raise UserNotFound()
    return ok("User found", {"user": _user_out(user)})


# ---------------------------------------------------------------------------
# Self or admin
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}")
def get_user(
    request: Request,
    user_id: int,
    identity: Identity = Depends(require_self_or_roles("admin")),
) -> dict:
    """Return one account. Callers may read themselves; admins may read anyone."""
    user = _get_or_404(_store(request), user_id)
    return ok("User found", {"user": _user_out(user)})


@router.put("/users/{user_id}")
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    identity: Identity = Depends(require_self_or_roles("admin")),
) -> dict:
    """Edit name, email and avatar. Changing role requires admin."""
    store = _store(request)
    current = _get_or_404(store, user_id)

    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    if "role" in updates:
        # Echoing the stored role back is not a role change.
        if body.role.value != current.role:
            authorize(identity, ("admin",))
        updates["role"] = body.role.value
    if not updates:
        raise ValidationFailed("No fields to update.")

    try:
        updated = store.update_fields(user_id, **updates)
    except IntegrityError as exc:
        raise EmailInUse() from exc
    if updated is None:
        raise UserNotFound()
    return ok("User updated successfully", {"user": _user_out(updated)})


@router.put("/users/{user_id}/password")
def change_password(
    request: Request,
    user_id: int,
    body: PasswordChange,
    identity: Identity = Depends(require_self_or_roles()),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    """Change the caller's own password. Requires the current password."""
    updated = service.change_password(user_id, body.current_password, body.new_password)
    return ok("Password changed successfully", {"user": _user_out(updated)})
