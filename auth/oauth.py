"""
auth/oauth.py -- Authlib Google OAuth registry and the account-linking bridge.

build_oauth() constructs the Authlib registry once, at application startup,
from the Settings it is given. The lifespan stores it on app.state.oauth and
routes reach it from there; nothing registers providers at import time.

Security notes:
  [H1] An email the provider explicitly reports as unverified is dropped
       before the bridge sees the profile. Linking by an unverified address
       would let anyone who adds a victim's email to a Google account take
       over the victim's password account.

  OAuth state parameter (CSRF protection) is handled by Authlib through
  Starlette SessionMiddleware: the state is stored in the session between the
  authorization redirect and the callback.

Bridge state machine (resolve_oauth_user):
  1. No email in the profile            -> MissingEmail
  2. Known (provider, subject)          -> that user
  3. Known email, no OAuth linkage      -> link, keep role and name, backfill avatar
     Known email, different linkage     -> ProviderConflict
     Known email, deactivated account   -> AccountDeactivated (nothing linked)
  4. Otherwise                          -> create an OAuth-only student account
                                           (UserCreationFailed on error)

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from authlib.integrations.starlette_client import OAuth
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AccountDeactivated, MissingEmail, ProviderConflict, Unauthenticated, UserCreationFailed
from auth.models import DEFAULT_ROLE, OAuthProfile, User

if TYPE_CHECKING:
    from auth.store import UserStore
    from core.config import Settings

logger = logging.getLogger("lms.auth.oauth")

GOOGLE = "google"

_FALLBACK_NAME = "Unknown User"


# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------


def build_oauth(settings: Settings) -> OAuth:
    """Return an Authlib registry with Google registered when configured."""
    oauth = OAuth()
    if settings.google_enabled:
        oauth.register(
            name=GOOGLE,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")
    else:
        logger.info("Google OAuth disabled (GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not set)")
    return oauth


# ---------------------------------------------------------------------------
# Profile normalization [H1]
# ---------------------------------------------------------------------------


def profile_from_google_token(token: dict) -> OAuthProfile:
    """Normalize the token Authlib returns after code exchange.

    Google's OIDC id_token is parsed by Authlib into token["userinfo"], whose
    claims include sub, email, email_verified, name, given_name, family_name
    and picture.

    Raises:
        Unauthenticated: no userinfo or no subject in the token response.
    """
    userinfo = token.get("userinfo") if token else None
    if not userinfo or not userinfo.get("sub"):
        raise Unauthenticated(detail="google OAuth: no userinfo in token response")

    emails: list[str] = []
    email = userinfo.get("email")
    if email and userinfo.get("email_verified", True) is not False:
        emails.append(email)
    elif email:
        logger.warning("Dropping unverified email from google profile %s", userinfo["sub"])

    picture = userinfo.get("picture")
    return OAuthProfile(
        provider=GOOGLE,
        subject=str(userinfo["sub"]),
        emails=emails,
        display_name=userinfo.get("name"),
        given_name=userinfo.get("given_name"),
        family_name=userinfo.get("family_name"),
        photos=[picture] if picture else [],
    )


def display_name_for(profile: OAuthProfile) -> str:
    """Display name, else "given family", else a generic placeholder."""
    if profile.display_name and profile.display_name.strip():
        return profile.display_name.strip()
    composed = " ".join(p.strip() for p in (profile.given_name, profile.family_name) if p and p.strip())
    return composed or _FALLBACK_NAME


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


def resolve_oauth_user(store: UserStore, profile: OAuthProfile) -> User:
    """Exchange a verified external profile for a local user record.

    Every successful return is a fully populated row re-read from the store.
    """
    email = profile.email
    if not email:
        logger.warning("OAuth login rejected: %s profile %s has no email", profile.provider, profile.subject)
        raise MissingEmail()

    # Returning user, already linked
    user = store.find_by_oauth_id(profile.provider, profile.subject)
    if user is not None:
        return user

    # Existing account with the same email
    user = store.find_by_email(email)
    if user is not None:
        if user.is_oauth_linked:
            logger.warning(
                "OAuth link refused: user %d already linked to %s",
                user.id,
                user.oauth_provider,
            )
            raise ProviderConflict()
        if not user.is_active:
            # Refuse before linking so a rejected sign-in leaves the row unchanged.
            raise AccountDeactivated(detail="User account is not active", clears_cookies=False)
        linked = store.update_fields(
            user.id,
            oauth_provider=profile.provider,
            oauth_id=profile.subject,
            avatar_url=user.avatar_url or profile.photo,
        )
        if linked is None:
            raise UserCreationFailed(detail="User disappeared while linking")
        logger.info("Linked %s identity to existing user %d", profile.provider, linked.id)
        return linked

    # First sign-in: create an OAuth-only account
    try:
        created = store.insert(
            User(
                email=email,
                name=display_name_for(profile),
                role=DEFAULT_ROLE,
                password_hash=None,
                oauth_provider=profile.provider,
                oauth_id=profile.subject,
                avatar_url=profile.photo,
            )
        )
    except SQLAlchemyError as exc:
        logger.exception("Failed to create user for %s profile %s", profile.provider, profile.subject)
        raise UserCreationFailed() from exc
    return created
