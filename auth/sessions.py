"""
auth/sessions.py -- Server-side session records (SQLAlchemy Core).

Pattern: Repository + Data Mapper, same as auth/store.py.

A session row is keyed by an opaque random id. The id is the only thing the
client holds: it rides inside the signed Starlette session cookie
(request.session["sid"]), which also carries Authlib's OAuth state during the
Google redirect. The row holds user_id and the authenticated flag.

Lifetime is absolute: expires_at is fixed at creation (24 h by default) and
set() never extends it. Expired rows are deleted on read and by
purge_expired().

Every write runs in engine.begin(), so it is committed before the method
returns. Routes call these methods before building the response, which means
a client that immediately re-requests with its cookie always finds the row.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import JSON, Boolean, Column, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.models import SessionRecord
from auth.store import make_engine, now_iso

logger = logging.getLogger("lms.auth.sessions")

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", Integer),  # NULL until authenticated
    Column("authenticated", Boolean, nullable=False, server_default="0"),
    Column("data", JSON, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
)

_SETTABLE = frozenset({"user_id", "authenticated", "data"})


class SessionStore:
    """Repository for SessionRecord entities.

    Usage:
        sessions = SessionStore("sqlite:///lms_auth.db", max_age_seconds=86400)
        record = sessions.create(user_id=1, authenticated=True)
        sessions.get(record.id)
        sessions.destroy(record.id)
    """

    def __init__(self, db_url: str, max_age_seconds: int = 24 * 3600) -> None:
        self.engine: Engine = make_engine(db_url)
        self.max_age_seconds = max_age_seconds
        _metadata.create_all(self.engine)

    def create(self, user_id: int | None = None, authenticated: bool = False) -> SessionRecord:
        """Insert a new session and return it. The id is 256 bits of randomness."""
        created = datetime.now(timezone.utc)
        record = SessionRecord(
            id=secrets.token_urlsafe(32),
            user_id=user_id,
            authenticated=authenticated,
            data={},
            created_at=created.isoformat(),
            expires_at=(created + timedelta(seconds=self.max_age_seconds)).isoformat(),
        )
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=record.id,
                    user_id=record.user_id,
                    authenticated=record.authenticated,
                    data=record.data,
                    created_at=record.created_at,
                    expires_at=record.expires_at,
                )
            )
        return record

    def get(self, session_id: str) -> SessionRecord | None:
        """Return the live session for this id, or None if unknown or expired."""
        if not session_id:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        if row is None:
            return None
        record = _row_to_session(row)
        if _is_expired(record):
            self.destroy(session_id)
            return None
        return record

    def set(self, session_id: str, **fields) -> SessionRecord | None:
        """Update user_id / authenticated / data on a live session.

        Returns the updated record, or None if the session does not exist or
        has expired. Unknown keys raise ValueError.
        """
        unknown = set(fields) - _SETTABLE
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)!r}")
        if self.get(session_id) is None:
            return None
        with self.engine.begin() as conn:
            conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(**fields))
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def destroy(self, session_id: str) -> bool:
        """Delete a session. Returns False if it did not exist."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
        return result.rowcount > 0

    def purge_expired(self) -> int:
        """Delete every expired session and return how many were removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= now_iso()))
        if result.rowcount:
            logger.info("Purged %d expired sessions", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


def _is_expired(record: SessionRecord) -> bool:
    return datetime.fromisoformat(record.expires_at) <= datetime.now(timezone.utc)


def _row_to_session(row) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        user_id=row.user_id,
        authenticated=bool(row.authenticated),
        data=dict(row.data or {}),
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
