"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Route, session, and
dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  external_id is a single-column UNIQUE constraint. Both SQLite and PostgreSQL
  treat NULLs as distinct there, so any number of unlinked accounts may exist
  while a linked identity can belong to only one user.

Concurrency:
  swap_refresh_token() is a compare-and-swap: the UPDATE only matches when
  the stored token still equals the one the caller verified. Two concurrent
  refreshes with the same token therefore cannot both rotate.

DB path: auth/tiergate_auth.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Role, SubscriptionStatus, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("external_id", String(255), unique=True),  # NULL until linked via OAuth
    Column("display_name", String(100), nullable=False),
    Column("avatar_url", Text),
    Column("status_message", String(200)),
    Column("role", String(20), nullable=False, server_default=Role.FREE.value),
    Column("subscription_status", String(20), nullable=False, server_default=SubscriptionStatus.INACTIVE.value),
    Column("is_banned", Boolean, nullable=False, server_default="0"),
    Column("refresh_token", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Only these columns may be changed through update_profile().
_PROFILE_FIELDS = frozenset({"display_name", "avatar_url", "status_message"})


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


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(email="a@example.com", display_name="A"))
        user = store.get_by_id(user_id)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned id.

        Raises sqlalchemy.exc.IntegrityError if the email or external_id is
        already taken. The OAuth bridge treats that as a lost creation race.
        """
        user_id = str(uuid.uuid4())
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email,
                    external_id=user.external_id,
                    display_name=user.display_name,
                    avatar_url=user.avatar_url,
                    status_message=user.status_message,
                    role=Role(user.role).value,
                    subscription_status=SubscriptionStatus(user.subscription_status).value,
                    is_banned=user.is_banned,
                    refresh_token=user.refresh_token,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_external_id(self, external_id: str) -> User | None:
        """Look up a user by provider-qualified external id. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.external_id == external_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by creation time. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at, _users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def link_external_identity(
        self, user_id: str, external_id: str, display_name: str, avatar_url: str | None
    ) -> bool:
        """Attach an OAuth identity to an existing account and copy its profile fields.

        Returns True if a row was updated, False if user_id was not found.
        """
        return self._update(
            user_id,
            external_id=external_id,
            display_name=display_name,
            avatar_url=avatar_url,
        )

    def update_profile(self, user_id: str, **fields) -> bool:
        """Update mutable profile fields: display_name, avatar_url, status_message.

        Unknown keys raise ValueError rather than silently ignoring them.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {unknown!r}")
        if not fields:
            return self.get_by_id(user_id) is not None
        return self._update(user_id, **fields)

    def set_role(self, user_id: str, role: Role) -> bool:
        """Assign a role. Returns False if user_id was not found."""
        return self._update(user_id, role=Role(role).value)

    def set_banned(self, user_id: str, banned: bool) -> bool:
        """Ban or unban a user. Banning also clears the stored refresh token.

        Returns False if user_id was not found.
        """
        if banned:
            return self._update(user_id, is_banned=True, refresh_token=None)
        return self._update(user_id, is_banned=False)

    def set_refresh_token(self, user_id: str, token: str | None) -> bool:
        """Overwrite the stored refresh token unconditionally (login, logout).

        Returns False if user_id was not found.
        """
        return self._update(user_id, refresh_token=token)

    def swap_refresh_token(self, user_id: str, expected: str, new: str) -> bool:
        """Replace the stored refresh token only if it still equals expected.

        Returns True when this call won the rotation, False when the row is
        missing or another request already replaced (or cleared) the token.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.refresh_token == expected))
                .values(refresh_token=new, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def clear_refresh_token_if(self, user_id: str, expected: str) -> bool:
        """Clear the stored refresh token only if it still equals expected.

        Used by housekeeping so a token rotated between the scan and the
        write is never wiped.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.refresh_token == expected))
                .values(refresh_token=None, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def list_users_with_refresh_tokens(self) -> list[User]:
        """Return every user currently holding a refresh token."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().where(_users.c.refresh_token.is_not(None))).fetchall()
        return [_row_to_user(r) for r in rows]

    def _update(self, user_id: str, **values) -> bool:
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        external_id=row.external_id,
        display_name=row.display_name,
        avatar_url=row.avatar_url,
        status_message=row.status_message,
        role=Role(row.role),
        subscription_status=SubscriptionStatus(row.subscription_status),
        is_banned=bool(row.is_banned),
        refresh_token=row.refresh_token,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
