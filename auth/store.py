"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Services and route
code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Atomicity:
  swap_refresh_token() and consume_backup_code() are compare-and-swap
  updates: a single UPDATE ... WHERE <column> = <expected value>. Whichever
  request commits first wins; the loser sees rowcount == 0 and must report a
  mismatch. There is never a read-modify-write window in Python.

  UNIQUE(oauth_provider, oauth_subject) is enforced in code rather than SQL
  because SQLite treats two NULL values as distinct in UNIQUE constraints.
  link_oauth() only fills a link on a record that has none.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import EmailAlreadyExists, UsernameAlreadyExists
from auth.models import User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for federated-only users
    Column("role", String(30), nullable=False, server_default="user"),
    Column("roles", Text, nullable=False),  # JSON list, always contains role
    Column("is_email_verified", Boolean, nullable=False, default=False),
    Column("mfa_enabled", Boolean, nullable=False, default=False),
    Column("mfa_verified", Boolean, nullable=False, default=False),
    Column("mfa_secret", Text),
    Column("backup_codes", Text, nullable=False, default="[]"),  # JSON list of SHA-256 hex
    Column("refresh_token", Text),
    Column("refresh_token_expires", String(40)),
    Column("oauth_provider", String(30)),
    Column("oauth_subject", Text),
    Column("last_login", String(40)),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: datetime | str | None) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return value.isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///authcore.db")
        user = store.create_user(User(email="a@example.com", username="a", password_hash=...))
        same = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str, clock: Callable[[], str] = _now_iso) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self._now = clock

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return the stored record.

        Raises EmailAlreadyExists / UsernameAlreadyExists when the UNIQUE
        constraint fires. Checking for existence first would leave a race
        between two concurrent registrations; the constraint does not.
        """
        now = self._now()
        user_id = user.id or str(uuid.uuid4())
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        email=user.email,
                        username=user.username,
                        password_hash=user.password_hash,
                        role=user.role,
                        roles=json.dumps(list(user.roles)),
                        is_email_verified=user.is_email_verified,
                        mfa_enabled=user.mfa_enabled,
                        mfa_verified=user.mfa_verified,
                        mfa_secret=user.mfa_secret,
                        backup_codes=json.dumps(list(user.backup_codes)),
                        oauth_provider=user.oauth_provider,
                        oauth_subject=user.oauth_subject,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            if self.get_by_email(user.email) is not None:
                raise EmailAlreadyExists() from exc
            raise UsernameAlreadyExists() from exc
        return self.get_by_id(user_id)

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Callers normalise case first."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_oauth(self, provider: str, subject: str) -> User | None:
        """Look up a user by (oauth_provider, oauth_subject) pair."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.oauth_provider == provider) & (_users.c.oauth_subject == subject))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def _update(self, user_id: str, *conditions, **fields) -> bool:
        fields["updated_at"] = self._now()
        stmt = _users.update().where(_users.c.id == user_id, *conditions).values(**fields)
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        return result.rowcount > 0

    def link_oauth(self, user_id: str, provider: str, subject: str) -> bool:
        """Associate a federated identity with a record that has no link yet."""
        return self._update(
            user_id,
            _users.c.oauth_subject.is_(None),
            oauth_provider=provider,
            oauth_subject=subject,
        )

    def update_last_login(self, user_id: str) -> None:
        self._update(user_id, last_login=self._now())

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def set_refresh_token(self, user_id: str, token: str, expires: datetime | str) -> None:
        """Unconditionally store a refresh token (login). Replaces any previous one."""
        self._update(user_id, refresh_token=token, refresh_token_expires=_iso(expires))

    def swap_refresh_token(self, user_id: str, expected: str, token: str, expires: datetime | str) -> bool:
        """Replace the stored refresh token only if it still equals expected.

        Returns False when another request rotated or revoked it first.
        """
        return self._update(
            user_id,
            _users.c.refresh_token == expected,
            refresh_token=token,
            refresh_token_expires=_iso(expires),
        )

    def clear_refresh_token(self, user_id: str) -> None:
        self._update(user_id, refresh_token=None, refresh_token_expires=None)

    # ------------------------------------------------------------------
    # MFA
    # ------------------------------------------------------------------

    def begin_mfa_enrollment(self, user_id: str, secret: str, hashed_backup_codes: list[str]) -> bool:
        """Store a pending secret: enabled, not yet verified.

        Refuses (returns False) if the user already confirmed MFA.
        """
        return self._update(
            user_id,
            _users.c.mfa_verified.is_(False),
            mfa_enabled=True,
            mfa_verified=False,
            mfa_secret=secret,
            backup_codes=json.dumps(list(hashed_backup_codes)),
        )

    def mark_mfa_verified(self, user_id: str, secret: str) -> bool:
        """Confirm enrolment, provided the pending secret was not replaced meanwhile."""
        return self._update(
            user_id,
            _users.c.mfa_enabled.is_(True),
            _users.c.mfa_secret == secret,
            mfa_verified=True,
        )

    def consume_backup_code(self, user_id: str, expected: list[str], code_hash: str) -> bool:
        """Remove one backup-code hash, if the stored list is still expected.

        Two concurrent logins with the same code both read the same list; only
        the first UPDATE matches it, the second gets rowcount == 0.
        """
        remaining = list(expected)
        remaining.remove(code_hash)
        return self._update(
            user_id,
            _users.c.backup_codes == json.dumps(list(expected)),
            backup_codes=json.dumps(remaining),
        )

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        role=row.role,
        roles=json.loads(row.roles or "[]"),
        is_email_verified=bool(row.is_email_verified),
        mfa_enabled=bool(row.mfa_enabled),
        mfa_verified=bool(row.mfa_verified),
        mfa_secret=row.mfa_secret,
        backup_codes=json.loads(row.backup_codes or "[]"),
        refresh_token=row.refresh_token,
        refresh_token_expires=row.refresh_token_expires,
        oauth_provider=row.oauth_provider,
        oauth_subject=row.oauth_subject,
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
