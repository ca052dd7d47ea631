"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, minimal logic). Dataclasses own the
domain shape; stores, the service and routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ROLES: tuple[str, ...] = ("student", "instructor", "admin")
DEFAULT_ROLE = "student"


@dataclass
class User:
    """An LMS account.

    email is stored lower-cased; lookups are case-insensitive.

    password_hash is None for OAuth-only users (they have no local password).
    oauth_provider / oauth_id are None until the user completes OAuth for the
    first time, at which point the bridge links them to the existing row.
    """

    email: str
    name: str
    role: str = DEFAULT_ROLE  # "student", "instructor", "admin"
    id: int | None = None
    password_hash: str | None = None  # None = OAuth-only user
    oauth_provider: str | None = None  # "google"
    oauth_id: str | None = None  # provider's stable user ID
    avatar_url: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    @property
    def is_oauth_linked(self) -> bool:
        return bool(self.oauth_provider and self.oauth_id)

    def sanitized(self) -> dict:
        """Return the account as a plain dict without password_hash."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "oauth_provider": self.oauth_provider,
            "avatar_url": self.avatar_url,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class Identity:
    """The caller, resolved once at the authentication boundary.

    Downstream code reads identity fields from here and never re-derives them
    from tokens or request state.
    """

    id: int
    email: str
    role: str
    name: str

    @classmethod
    def from_user(cls, user: User) -> Identity:
        return cls(id=user.id, email=user.email, role=user.role, name=user.name)


@dataclass
class SessionRecord:
    """Server-side session row. The opaque id travels in the session cookie."""

    id: str
    expires_at: str
    user_id: int | None = None
    authenticated: bool = False
    data: dict = field(default_factory=dict)
    created_at: str | None = None


@dataclass
class OAuthProfile:
    """Verified external identity delivered by an OAuth provider."""

    provider: str
    subject: str
    emails: list[str] = field(default_factory=list)
    display_name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    photos: list[str] = field(default_factory=list)

    @property
    def email(self) -> str | None:
        return self.emails[0] if self.emails else None

    @property
    def photo(self) -> str | None:
        return self.photos[0] if self.photos else None


@dataclass
class AuthResult:
    """Outcome of a successful authentication flow."""

    user: User
    access_token: str
    refresh_token: str | None = None
    session_id: str | None = None
