"""
auth/store.py -- SQLAlchemy Core persistence layer for users and token records.

Pattern: Repository + Data Mapper.
UserStore and TokenStore are the repositories; _row_to_user / _row_to_token
are the mappers. Service and route code never touches SQL directly.

Both repositories share one Engine created by create_db_engine(). Every
method opens its own connection from the pool, so the stores are safe to use
from the threads FastAPI runs sync route handlers on.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Single-use consumption is decided by the rowcount of one DELETE statement.
  The database applies that DELETE atomically, so when several threads race
  to consume the same record exactly one of them sees rowcount == 1. A
  SELECT-then-check in Python would not give that guarantee.

  google_id is declared UNIQUE in SQL. SQLite (and PostgreSQL) treat NULLs
  as distinct in UNIQUE constraints, which is what we want here: many users
  may have no Google identity, but no two may share one.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError
from auth.models import Token, TokenType, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("google_id", String(255), unique=True),  # NULL until linked
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_tokens = Table(
    "tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", Text, nullable=False, unique=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("type", String(30), nullable=False),
    Column("expires", String(32), nullable=False),  # ISO 8601 UTC, second precision
    Column("blacklisted", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    # Never reuse the id of a deleted record.
    sqlite_autoincrement=True,
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every new connection.

    WAL lets readers proceed while a writer holds the lock. busy_timeout makes
    a second writer wait for the lock instead of failing immediately, which
    matters when two refreshes of the same token race to DELETE its record.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA busy_timeout=5000")


def create_db_engine(db_url: str) -> Engine:
    """Create the shared Engine and make sure the schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
        event.listen(engine, "connect", _set_sqlite_pragmas)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(dt: datetime) -> str:
    """Serialize a datetime as UTC ISO 8601 so string comparison orders correctly."""
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records (the user directory).

    Usage:
        engine = create_db_engine("sqlite:///authcore.db")
        users = UserStore(engine)
        user_id = users.create_user(User(email="a@x.com", hashed_password=hash_password("secret")))
        user = users.get_by_email("A@X.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises ConflictError if the email is already registered. The UNIQUE
        constraint is the real guard; the pre-check only gives the common case
        a clean error without relying on the IntegrityError path.
        """
        email = normalize_email(user.email)
        if self.is_email_taken(email):
            raise ConflictError("Email already taken")
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=email,
                        name=user.name,
                        hashed_password=user.hashed_password,
                        role=user.role,
                        google_id=user.google_id,
                        is_email_verified=1 if user.is_email_verified else 0,
                        created_at=_now_iso(),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            # A concurrent request registered the same email (or Google id) first.
            raise ConflictError("Email already taken") from exc
        return result.inserted_primary_key[0]

    def is_email_taken(self, email: str) -> bool:
        query = select(func.count()).select_from(_users).where(_users.c.email == normalize_email(email))
        with self.engine.connect() as conn:
            count = conn.execute(query).scalar()
        return (count or 0) > 0

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. Matching is case-insensitive via normalization."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_google_id(self, google_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.google_id == google_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def link_google_id(self, user_id: int, google_id: str) -> bool:
        """Attach a Google identity to an unlinked user and mark the email verified.

        The WHERE clause only matches rows whose google_id is still NULL, so an
        existing link is never overwritten. Returns True if the row was linked.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.google_id.is_(None)))
                .values(google_id=google_id, is_email_verified=1)
            )
            conn.commit()
        return result.rowcount > 0

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Replace the stored password hash. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password))
            conn.commit()
        return result.rowcount > 0

    def set_email_verified(self, user_id: int, verified: bool = True) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(is_email_verified=1 if verified else 0)
            )
            conn.commit()
        return result.rowcount > 0


class TokenStore:
    """Repository for persisted token records.

    Only non-blacklisted records are visible to find() and find_and_delete().
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def save(self, record: Token) -> int:
        """Insert a token record and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.insert().values(
                    token=record.token,
                    user_id=record.user_id,
                    type=record.type.value,
                    expires=_to_iso(record.expires),
                    blacklisted=1 if record.blacklisted else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return result.inserted_primary_key[0]

    def find(self, token: str, token_type: TokenType, user_id: int | None = None) -> Token | None:
        """Return the live record for (token, type), optionally pinned to a user."""
        query = _tokens.select().where(
            (_tokens.c.token == token) & (_tokens.c.type == token_type.value) & (_tokens.c.blacklisted == 0)
        )
        if user_id is not None:
            query = query.where(_tokens.c.user_id == user_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_token(row) if row is not None else None

    def consume(self, record: Token) -> bool:
        """Delete a previously fetched record. Returns True only for the caller that removed it.

        When two callers hold the same record, both DELETEs run but only the
        first affects a row. The loser gets False and must treat the token as
        already used. The WHERE clause pins the token string and type as well
        as the id, so a stale record can never match a newer row.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.delete().where(
                    (_tokens.c.id == record.id)
                    & (_tokens.c.token == record.token)
                    & (_tokens.c.type == record.type.value)
                    & (_tokens.c.blacklisted == 0)
                )
            )
            conn.commit()
        return result.rowcount == 1

    def find_and_delete(self, token: str, token_type: TokenType) -> Token | None:
        """Atomically consume the live record for (token, type).

        Returns the deleted record, or None if no live record existed or a
        concurrent caller consumed it first.
        """
        record = self.find(token, token_type)
        if record is None:
            return None
        return record if self.consume(record) else None

    def delete_all_for_user(self, user_id: int, token_type: TokenType) -> int:
        """Delete every record of one type for a user. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.delete().where((_tokens.c.user_id == user_id) & (_tokens.c.type == token_type.value))
            )
            conn.commit()
        return result.rowcount

    def blacklist(self, token: str) -> bool:
        """Mark a record revoked without deleting it. Returns True if a record was flagged."""
        with self.engine.connect() as conn:
            result = conn.execute(_tokens.update().where(_tokens.c.token == token).values(blacklisted=1))
            conn.commit()
        return result.rowcount > 0

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete all records whose expiry has passed. Returns number of rows removed."""
        cutoff = _to_iso(now or datetime.now(timezone.utc))
        with self.engine.connect() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.expires <= cutoff))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        role=row.role,
        google_id=row.google_id,
        is_email_verified=bool(row.is_email_verified),
        created_at=row.created_at,
    )


def _row_to_token(row) -> Token:
    return Token(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        type=TokenType(row.type),
        expires=datetime.fromisoformat(row.expires),
        blacklisted=bool(row.blacklisted),
        created_at=row.created_at,
    )
