"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Service, route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  Email uniqueness is a UNIQUE constraint on the column, not a check in code.
  Emails are lower-cased before every write and lookup, so the constraint is
  case-insensitive too. insert() lets IntegrityError propagate; the service
  classifies it as EmailInUse. Two concurrent registrations for one email
  therefore resolve at the database: exactly one INSERT wins.

  UNIQUE(oauth_provider, oauth_id) is enforced in code (the bridge looks up by
  provider id before linking) because SQLite treats two NULLs as distinct,
  which would still allow unlinked duplicates.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import DEFAULT_ROLE, ROLES, User

logger = logging.getLogger("lms.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_role_values = ", ".join(f"'{r}'" for r in ROLES)

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # lower-cased
    Column("name", String(100), nullable=False),
    Column("password_hash", Text),  # NULL for OAuth-only users
    Column("role", String(20), nullable=False, server_default=DEFAULT_ROLE),
    Column("oauth_provider", String(30)),  # "google"
    Column("oauth_id", String(255)),  # provider's stable user ID
    Column("avatar_url", Text),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    CheckConstraint(f"role IN ({_role_values})", name="ck_users_role"),
)

# Columns update_fields() may touch. id, email case-folding and timestamps
# are managed here, never by callers.
_UPDATABLE = frozenset(
    {"name", "email", "password_hash", "role", "oauth_provider", "oauth_id", "avatar_url", "is_active"}
)


# ---------------------------------------------------------------------------
# SQLite tuning
# ---------------------------------------------------------------------------


def set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and a busy timeout on every new SQLite connection.

    WAL lets readers proceed during writes. busy_timeout bounds how long a
    writer waits on a locked database instead of failing at once. PRAGMAs are
    per-connection, so this runs from the engine's connect event.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def make_engine(db_url: str) -> Engine:
    """Create an engine with the connect args every store in this package uses."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 5
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", set_sqlite_pragmas)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///lms_auth.db")
        user = store.insert(User(email="a@x.com", name="Ann", password_hash=hash_password("...")))
        store.find_by_email("A@X.com")  # same user
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        metadata.create_all(self.engine, tables=[_users])

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup by email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_oauth_id(self, provider: str, oauth_id: str) -> User | None:
        """Look up a user by (oauth_provider, oauth_id) pair.

        Returning OAuth users are found here once their identity is linked.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.oauth_provider == provider) & (_users.c.oauth_id == oauth_id))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, user: User) -> User:
        """Insert a new user and return the stored row.

        Raises sqlalchemy.exc.IntegrityError if the email already exists or
        the role is outside ROLES. Callers classify the error; the store does
        not pre-check, because check-then-insert is racy.
        """
        stamp = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    name=user.name,
                    password_hash=user.password_hash,
                    role=user.role,
                    oauth_provider=user.oauth_provider,
                    oauth_id=user.oauth_id,
                    avatar_url=user.avatar_url,
                    is_active=user.is_active,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            user_id = result.inserted_primary_key[0]
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        logger.info("Created user %d (role=%s, provider=%s)", user_id, user.role, user.oauth_provider or "password")
        return _row_to_user(row)

    def update_fields(self, user_id: int, **fields) -> User | None:
        """Update mutable columns on an existing user and return the new row.

        Accepted fields: see _UPDATABLE. Unknown keys raise ValueError rather
        than being silently ignored. Returns None if user_id was not found.
        Raises IntegrityError when an email change collides with another row.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        fields["updated_at"] = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted.

        The admin-account guard is the caller's responsibility (route layer).
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except Exception:
            logger.exception("User store health check failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        role=row.role,
        oauth_provider=row.oauth_provider,
        oauth_id=row.oauth_id,
        avatar_url=row.avatar_url,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
