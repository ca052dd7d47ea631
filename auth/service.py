"""
auth/service.py -- AuthService, the request-facing auth orchestrator.

Composes the credential store, password hasher, token issuer, session store
and OAuth bridge into the register / login / logout / refresh / OAuth / me
flows. Routes call one method per request and turn the AuthResult into cookies
and a response; the service itself never touches HTTP objects.

Canonical caller identity is the access token (auth/dependencies.py). Every
successful login also opens a server-side session so the browser holds one
record of the sign-in, but no API call is authorized from the session.

The store and session store are passed in (dependency injection). The
lifespan in api/main.py builds one AuthService per process.

Concurrency: no in-process locking. Email uniqueness is decided by the
database constraint; the pre-insert lookup in register() only gives the common
case a cheap, friendly answer.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountDeactivated,
    AuthError,
    EmailInUse,
    InvalidCredentials,
    MissingToken,
    OAuthOnlyAccount,
    UserNotFound,
)
from auth.models import DEFAULT_ROLE, AuthResult, Identity, OAuthProfile, User
from auth.oauth import resolve_oauth_user
from auth.passwords import authenticate, hash_password, verify_password
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenKind, create_access_token, create_refresh_token, verify_token

logger = logging.getLogger("lms.auth")


def token_claims(user: User) -> dict:
    return {"id": user.id, "email": user.email, "role": user.role}


class AuthService:
    def __init__(self, users: UserStore, sessions: SessionStore) -> None:
        self.users = users
        self.sessions = sessions

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def _issue(self, user: User, previous_session_id: str | None = None) -> AuthResult:
        """Open an authenticated session and mint an access/refresh pair.

        Any session the client already held is destroyed first so a
        pre-login session id never becomes an authenticated one.
        """
        if previous_session_id:
            self.sessions.destroy(previous_session_id)
        session = self.sessions.create(user_id=user.id, authenticated=True)
        claims = token_claims(user)
        return AuthResult(
            user=user,
            access_token=create_access_token(claims),
            refresh_token=create_refresh_token(claims),
            session_id=session.id,
        )

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str, previous_session_id: str | None = None) -> AuthResult:
        """Create a password account and sign it in.

        Raises EmailInUse when the email is taken, including when a
        concurrent registration wins the INSERT race.
        """
        if self.users.find_by_email(email) is not None:
            raise EmailInUse()
        try:
            user = self.users.insert(
                User(email=email, name=name, role=DEFAULT_ROLE, password_hash=hash_password(password))
            )
        except IntegrityError as exc:
            logger.info("Registration lost the uniqueness race for an existing email")
            raise EmailInUse() from exc
        logger.info("Registered user %d", user.id)
        return self._issue(user, previous_session_id)

    def login(self, email: str, password: str, previous_session_id: str | None = None) -> AuthResult:
        """Password login. See auth.passwords.authenticate for the failure modes."""
        user = authenticate(self.users, email, password)
        logger.info("User %d logged in", user.id)
        return self._issue(user, previous_session_id)

    def logout(self, session_id: str | None) -> None:
        """Destroy the session if there is one. Never fails for a missing session."""
        if session_id and self.sessions.destroy(session_id):
            logger.info("Session destroyed on logout")

    def refresh(self, refresh_token: str | None) -> AuthResult:
        """Mint a new access token from a refresh token.

        The refresh token is not rotated; AuthResult.refresh_token is None.
        Role is re-read from the store, so a role change applies at the next
        refresh.
        """
        if not refresh_token:
            raise MissingToken("Refresh token required.", detail="No refresh token provided")
        try:
            claims = verify_token(refresh_token, TokenKind.REFRESH)
        except AuthError as exc:
            logger.info("Refresh rejected: %s", type(exc).__name__)
            raise
        user = self.users.find_by_id(claims["id"])
        if user is None:
            raise UserNotFound(
                detail="Invalid refresh token - user does not exist",
                status_code=401,
                clears_cookies=True,
            )
        if not user.is_active:
            raise AccountDeactivated(detail="User account is not active")
        return AuthResult(user=user, access_token=create_access_token(token_claims(user)))

    def complete_oauth(self, profile: OAuthProfile, previous_session_id: str | None = None) -> AuthResult:
        """Resolve an OAuth profile to a local account and sign it in."""
        user = resolve_oauth_user(self.users, profile)
        if not user.is_active:
            # Nothing was issued, so there is nothing to clear.
            raise AccountDeactivated(detail="User account is not active", clears_cookies=False)
        logger.info("User %d logged in via %s", user.id, profile.provider)
        return self._issue(user, previous_session_id)

    def current_user(self, identity: Identity) -> User:
        user = self.users.find_by_id(identity.id)
        if user is None:
            raise UserNotFound()
        return user

    def change_password(self, user_id: int, current_password: str, new_password: str) -> User:
        """Replace the password of a password account after checking the current one."""
        user = self.users.find_by_id(user_id)
        if user is None:
            raise UserNotFound()
        if not user.has_password:
            raise OAuthOnlyAccount("Cannot change password for OAuth users.")
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect.")
        updated = self.users.update_fields(user_id, password_hash=hash_password(new_password))
        if updated is None:
            raise UserNotFound()
        logger.info("Password changed for user %d", user_id)
        return updated
