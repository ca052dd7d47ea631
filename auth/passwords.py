"""
auth/passwords.py -- Password hashing and the password login check.

Security design decisions:
  bcrypt used directly (no passlib wrapper). passlib's wrap-bug detection
  builds a password longer than 72 bytes, which bcrypt 4.x rejects. The work
  factor comes from Settings.bcrypt_rounds.

  verify_password() fails closed: any error inside bcrypt (corrupt digest,
  wrong type) is a non-match, never an exception a caller could misread.

  [C1] _DUMMY_HASH enables timing equalization in authenticate() so response
  time does not reveal whether an email is registered.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

from auth.errors import AccountDeactivated, InvalidCredentials, OAuthOnlyAccount
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("lms.auth")

_settings = get_settings()

# bcrypt input limit, in UTF-8 bytes.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only reads the first MAX_PASSWORD_BYTES bytes, and bcrypt 5
    raises ValueError for anything longer. The request models in api/models.py
    reject longer passwords with validation_failed before they get here.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True only if the plaintext password matches the bcrypt hash."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except Exception:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than the rest.
_DUMMY_HASH: str = hash_password("lms_timing_dummy")


def authenticate(store: UserStore, email: str, password: str) -> User:
    """Check an email/password login with timing equalization [C1].

    bcrypt runs whether or not the account exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH.
    - OAuth-only account: bcrypt runs against _DUMMY_HASH, then the caller is
      told to use Google (OAuthOnlyAccount), never InvalidCredentials.
    - Wrong password: bcrypt runs against the real hash.

    Raises InvalidCredentials, OAuthOnlyAccount or AccountDeactivated.
    """
    user = store.find_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        logger.info("Login rejected: unknown email")
        raise InvalidCredentials()
    if not user.has_password:
        verify_password(password, _DUMMY_HASH)
        logger.info("Login rejected: user %d is OAuth-only", user.id)
        raise OAuthOnlyAccount()
    if not verify_password(password, user.password_hash):
        logger.info("Login rejected: bad password for user %d", user.id)
        raise InvalidCredentials()
    if not user.is_active:
        logger.info("Login rejected: user %d is deactivated", user.id)
        raise AccountDeactivated("Account deactivated.", detail="User account is not active")
    return user
