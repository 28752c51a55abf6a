"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore is the repository (the auth
"adapter"); _row_to_user / _row_to_account / _row_to_session are the mappers.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Invariants live in the schema, not in code:
  - users.email is UNIQUE
  - sessions.session_token is UNIQUE
  - UNIQUE(accounts.provider, accounts.provider_account_id)
  - accounts and sessions reference users ON DELETE CASCADE

SQLite only enforces foreign keys when PRAGMA foreign_keys=ON is set on each
connection, so the connect listener turns it on alongside WAL mode.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Account, Session, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(255)),
    Column("email_verified", String(32)),
    Column("image", Text),
    Column("hashed_password", Text),  # NULL for OAuth-only users
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("type", String(30), nullable=False),
    Column("provider", String(30), nullable=False),
    Column("provider_account_id", String(255), nullable=False),
    Column("refresh_token", Text),
    Column("access_token", Text),
    Column("expires_at", Integer),
    Column("token_type", String(30)),
    Column("scope", Text),
    Column("id_token", Text),
    UniqueConstraint("provider", "provider_account_id", name="uq_accounts_provider_account"),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("session_token", String(128), nullable=False, unique=True),
    Column("user_id", String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. Without foreign_keys=ON the ON DELETE CASCADE
    clauses above are parsed but never applied.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def to_iso(moment: datetime) -> str:
    """Format a UTC datetime with a fixed width so stored values sort as text."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Account and Session entities.

    Usage:
        store = UserStore("sqlite:///shieldgate.db")
        user_id = store.create_user(User(email="ada@example.com", hashed_password=hash_password(pw)))
        user = store.get_by_email("ada@example.com")
        store.close()
    """

    # Columns update_user() may touch. Anything else is a programming error.
    _MUTABLE_USER_FIELDS: set = {"username", "email_verified", "image", "hashed_password"}

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> str:
        """Insert a new user and return its ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers that race on sign-up treat that as "email already in use".
        """
        user_id = user.id or _new_id()
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email,
                    username=user.username,
                    email_verified=user.email_verified,
                    image=user.image,
                    hashed_password=user.hashed_password,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user and stamp updated_at.

        Returns True if a row was updated, False if user_id was not found.
        Raises ValueError for fields outside _MUTABLE_USER_FIELDS.
        """
        unknown = set(fields) - self._MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Delete a user. Accounts and sessions go with it via ON DELETE CASCADE."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def link_account(self, account: Account) -> str:
        """Attach an OAuth identity to a user and return the account ID.

        Raises IntegrityError if (provider, provider_account_id) is already
        linked, or if user_id does not exist.
        """
        account_id = account.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    user_id=account.user_id,
                    type=account.type,
                    provider=account.provider,
                    provider_account_id=account.provider_account_id,
                    refresh_token=account.refresh_token,
                    access_token=account.access_token,
                    expires_at=account.expires_at,
                    token_type=account.token_type,
                    scope=account.scope,
                    id_token=account.id_token,
                )
            )
            conn.commit()
        return account_id

    def create_oauth_user(self, user: User, account: Account) -> str:
        """Insert a user and its first linked account in one transaction.

        Either both rows are written or neither is. Raises IntegrityError if
        the email is taken or the provider identity is already linked.
        """
        user_id = user.id or _new_id()
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email,
                    username=user.username,
                    email_verified=user.email_verified,
                    image=user.image,
                    hashed_password=user.hashed_password,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.execute(
                _accounts.insert().values(
                    id=account.id or _new_id(),
                    user_id=user_id,
                    type=account.type,
                    provider=account.provider,
                    provider_account_id=account.provider_account_id,
                    refresh_token=account.refresh_token,
                    access_token=account.access_token,
                    expires_at=account.expires_at,
                    token_type=account.token_type,
                    scope=account.scope,
                    id_token=account.id_token,
                )
            )
        return user_id

    def get_user_by_account(self, provider: str, provider_account_id: str) -> User | None:
        """Return the user linked to a provider identity, or None."""
        query = (
            select(_users)
            .join(_accounts, _accounts.c.user_id == _users.c.id)
            .where((_accounts.c.provider == provider) & (_accounts.c.provider_account_id == provider_account_id))
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_accounts(self, user_id: str) -> list[Account]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _accounts.select().where(_accounts.c.user_id == user_id).order_by(_accounts.c.provider)
            ).fetchall()
        return [_row_to_account(r) for r in rows]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> str:
        session_id = session.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session_id,
                    session_token=session.session_token,
                    user_id=session.user_id,
                    expires=session.expires,
                )
            )
            conn.commit()
        return session_id

    def get_session_and_user(self, session_token: str) -> tuple[Session, User] | None:
        """Return (Session, User) for a session token, or None if unknown.

        Expiry is not checked here; auth/session.py decides what an expired
        row means.
        """
        with self.engine.connect() as conn:
            session_row = conn.execute(
                _sessions.select().where(_sessions.c.session_token == session_token)
            ).fetchone()
            if session_row is None:
                return None
            user_row = conn.execute(_users.select().where(_users.c.id == session_row.user_id)).fetchone()
        if user_row is None:
            return None
        return _row_to_session(session_row), _row_to_user(user_row)

    def update_session_expiry(self, session_token: str, expires: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.session_token == session_token).values(expires=expires)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_session(self, session_token: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.session_token == session_token))
            conn.commit()
        return result.rowcount > 0

    def delete_expired_sessions(self) -> int:
        """Remove every session whose expiry has passed. Returns the count removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires < _now_iso()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        email_verified=row.email_verified,
        image=row.image,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        user_id=row.user_id,
        type=row.type,
        provider=row.provider,
        provider_account_id=row.provider_account_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        token_type=row.token_type,
        scope=row.scope,
        id_token=row.id_token,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        session_token=row.session_token,
        user_id=row.user_id,
        expires=row.expires,
    )
