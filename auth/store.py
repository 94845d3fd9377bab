"""
auth/store.py -- SQLAlchemy Core persistence for identities and refresh tokens.

Pattern: Repository + Data Mapper. SQLIdentityDirectory and
SQLRefreshTokenStore are the repositories; _row_to_identity /
_row_to_refresh_token are the mappers. Service code never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

Integrity:
  identities.email and identities.username carry UNIQUE constraints. They are
  the real guard against two concurrent registrations with the same email --
  the service's exists_by_* pre-check is only a fast path. An IntegrityError
  on insert is re-checked per field and surfaced as IdentityConflictError.

  refresh_tokens.value is UNIQUE; identity_id is a foreign key with an index
  so revoke_all() is one indexed UPDATE.

  revoke() is a conditional update (WHERE revoked = false) and reports the
  affected row count. Two concurrent refreshes presenting the same token can
  both read it as valid, but only one of them can revoke it.

Timestamps are timezone-aware UTC. SQLite drops the offset on the way in, so
the mappers re-attach UTC on the way out.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    false,
    func,
    select,
    text,
    true,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import IdentityConflictError, StoreFailedError
from auth.models import Identity, RefreshToken

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

identities = Table(
    "identities",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Column("is_verified", Boolean, nullable=False, server_default=false()),
    Column("last_login_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("identity_id", String(36), ForeignKey("identities.id"), nullable=False, index=True),
    Column("value", String(255), nullable=False, unique=True),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("revoked", Boolean, nullable=False, server_default=false()),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    WAL lets readers proceed while a write is in flight. foreign_keys is off
    by default in SQLite, and PRAGMAs are not inherited by new connections
    from the pool, so both are set per connection.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Build an engine for db_url and create any missing tables."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


def ping(engine: Engine) -> bool:
    """Return True if the database answers a trivial query. Used by /health."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return False
    return True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Identity directory
# ---------------------------------------------------------------------------


class SQLIdentityDirectory:
    """Relational IdentityDirectory.

    Usage:
        engine = create_db_engine("sqlite:///./authgate.db")
        directory = SQLIdentityDirectory(engine)
        directory.create(Identity(email="a@x.com", username="a", password_hash=h))
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, identity: Identity) -> Identity:
        """Insert a new identity and return it with id and timestamps filled in.

        Raises IdentityConflictError if the email or username is taken, and
        StoreFailedError for anything else the database rejects.
        """
        now = _now()
        identity.id = identity.id or str(uuid.uuid4())
        identity.created_at = now
        identity.updated_at = now
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    identities.insert().values(
                        id=identity.id,
                        email=identity.email,
                        username=identity.username,
                        password_hash=identity.password_hash,
                        first_name=identity.first_name,
                        last_name=identity.last_name,
                        is_active=identity.is_active,
                        is_verified=identity.is_verified,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            # The constraint name in the message differs per backend, so ask
            # the table which unique column is now occupied.
            if self.exists_by_email(identity.email):
                raise IdentityConflictError("email") from exc
            if self.exists_by_username(identity.username):
                raise IdentityConflictError("username") from exc
            raise StoreFailedError(reason="identity insert rejected") from exc
        except SQLAlchemyError as exc:
            raise StoreFailedError(reason="identity insert failed") from exc
        return identity

    def get_by_id(self, identity_id: str) -> Identity | None:
        return self._fetch_one(identities.c.id == identity_id)

    def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by exact email. Returns None if not found."""
        return self._fetch_one(identities.c.email == email)

    def get_by_username(self, username: str) -> Identity | None:
        """Look up an identity by exact username (case-sensitive). Returns None if not found."""
        return self._fetch_one(identities.c.username == username)

    def exists_by_email(self, email: str) -> bool:
        return self._exists(identities.c.email == email)

    def exists_by_username(self, username: str) -> bool:
        return self._exists(identities.c.username == username)

    def update_last_login(self, identity_id: str) -> None:
        """Stamp the current UTC time as last_login_at for the identity."""
        now = _now()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    identities.update()
                    .where(identities.c.id == identity_id)
                    .values(last_login_at=now, updated_at=now)
                )
        except SQLAlchemyError as exc:
            raise StoreFailedError(reason="last_login update failed") from exc

    def _fetch_one(self, clause) -> Identity | None:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(identities.select().where(clause)).fetchone()
        except SQLAlchemyError as exc:
            raise StoreFailedError(reason="identity lookup failed") from exc
        return _row_to_identity(row) if row is not None else None

    def _exists(self, clause) -> bool:
        try:
            with self.engine.connect() as conn:
                count = conn.execute(select(func.count()).select_from(identities).where(clause)).scalar()
        except SQLAlchemyError as exc:
            raise StoreFailedError(reason="identity lookup failed") from exc
        return (count or 0) > 0


# ---------------------------------------------------------------------------
# Refresh token store
# ---------------------------------------------------------------------------


class SQLRefreshTokenStore:
    """Relational RefreshTokenStore. Every mutation is one single-predicate statement."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, token: RefreshToken) -> RefreshToken:
        token.id = token.id or str(uuid.uuid4())
        token.created_at = _now()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    refresh_tokens.insert().values(
                        id=token.id,
                        identity_id=token.identity_id,
                        value=token.value,
                        expires_at=token.expires_at,
                        revoked=token.revoked,
                        created_at=token.created_at,
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreFailedError(reason="refresh token insert failed") from exc
        return token

    def get_valid(self, value: str) -> RefreshToken | None:
        """Return the token if it exists, is unrevoked and unexpired; else None.

        Expired and revoked rows are indistinguishable from unknown ones here
        on purpose -- the caller only ever needs "usable or not".
        """
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    refresh_tokens.select().where(
                        (refresh_tokens.c.value == value)
                        & (refresh_tokens.c.revoked.is_(False))
                        & (refresh_tokens.c.expires_at > _now())
                    )
                ).fetchone()
        except SQLAlchemyError as exc:
            raise StoreFailedError(reason="refresh token lookup failed") from exc
        return _row_to_refresh_token(row) if row is not None else None

    def revoke(self, value: str) -> bool:
        """Revoke one token. Returns False if it was unknown or already revoked."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    refresh_tokens.update()
                    .where((refresh_tokens.c.value == value) & (refresh_tokens.c.revoked.is_(False)))
                    .values(revoked=True)
                )
        except SQLAlchemyError as exc:
            raise StoreFailedError(reason="refresh token revoke failed") from exc
        return result.rowcount > 0

    def revoke_all(self, identity_id: str) -> int:
        """Revoke every unrevoked token of one identity. Returns how many flipped."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    refresh_tokens.update()
                    .where((refresh_tokens.c.identity_id == identity_id) & (refresh_tokens.c.revoked.is_(False)))
                    .values(revoked=True)
                )
        except SQLAlchemyError as exc:
            raise StoreFailedError(reason="refresh token revoke_all failed") from exc
        return result.rowcount

    def delete_expired(self) -> int:
        """Delete rows whose expiry has passed. Returns number of rows removed."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.expires_at <= _now()))
        except SQLAlchemyError as exc:
            raise StoreFailedError(reason="expired refresh token sweep failed") from exc
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        is_active=bool(row.is_active),
        is_verified=bool(row.is_verified),
        last_login_at=_as_utc(row.last_login_at),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        identity_id=row.identity_id,
        value=row.value,
        expires_at=_as_utc(row.expires_at),
        revoked=bool(row.revoked),
        created_at=_as_utc(row.created_at),
    )
