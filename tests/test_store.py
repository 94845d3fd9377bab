"""Contract tests for the identity directory and refresh token store.

Every test runs twice: once against auth/memory.py and once against the
SQLAlchemy implementations in auth/store.py over an in-memory SQLite DB.

Covers:
- Identity create / lookup by id, email, username; exists_by_*
- Unique email and username surface as IdentityConflictError
- update_last_login stamps a timezone-aware time
- get_valid hides revoked and expired tokens
- revoke is one-shot; revoke_all flips only one identity's tokens
- delete_expired removes only expired rows
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import IdentityConflictError, StoreFailedError
from auth.memory import MemoryIdentityDirectory, MemoryRefreshTokenStore
from auth.models import Identity, RefreshToken
from auth.store import SQLIdentityDirectory, SQLRefreshTokenStore, create_db_engine, ping

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(params=["memory", "sql"])
def stores(request):
    """Yield (directory, tokens) for one backend."""
    if request.param == "memory":
        yield MemoryIdentityDirectory(), MemoryRefreshTokenStore()
        return
    engine = create_db_engine("sqlite:///:memory:")
    yield SQLIdentityDirectory(engine), SQLRefreshTokenStore(engine)
    engine.dispose()


def _identity(email: str = "a@x.com", username: str = "a") -> Identity:
    return Identity(email=email, username=username, password_hash="$2b$04$notarealhash")


def _token(identity_id: str, value: str, *, expires_in: int = 3600) -> RefreshToken:
    return RefreshToken(
        identity_id=identity_id,
        value=value,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )


# ---------------------------------------------------------------------------
# Identity directory
# ---------------------------------------------------------------------------


class TestIdentityDirectory:
    def test_create_assigns_id_and_timestamps(self, stores) -> None:
        directory, _ = stores
        created = directory.create(_identity())
        assert created.id
        assert created.created_at is not None
        assert created.updated_at is not None

    def test_lookups(self, stores) -> None:
        directory, _ = stores
        created = directory.create(_identity())
        by_id = directory.get_by_id(created.id)
        by_email = directory.get_by_email("a@x.com")
        by_username = directory.get_by_username("a")
        assert by_id is not None and by_email is not None and by_username is not None
        assert by_id.id == by_email.id == by_username.id == created.id
        assert by_id.is_active is True
        assert by_id.is_verified is False
        assert by_id.created_at.tzinfo is not None

    def test_missing_lookups_return_none(self, stores) -> None:
        directory, _ = stores
        assert directory.get_by_id("nope") is None
        assert directory.get_by_email("nope@x.com") is None
        assert directory.get_by_username("nope") is None

    def test_exists(self, stores) -> None:
        directory, _ = stores
        directory.create(_identity())
        assert directory.exists_by_email("a@x.com")
        assert directory.exists_by_username("a")
        assert not directory.exists_by_email("b@x.com")
        assert not directory.exists_by_username("b")

    def test_username_lookup_is_case_sensitive(self, stores) -> None:
        directory, _ = stores
        directory.create(_identity(username="Alice"))
        assert directory.get_by_username("alice") is None
        assert directory.get_by_username("Alice") is not None

    def test_duplicate_email_conflict(self, stores) -> None:
        directory, _ = stores
        directory.create(_identity())
        with pytest.raises(IdentityConflictError) as exc_info:
            directory.create(_identity(username="other"))
        assert exc_info.value.field == "email"

    def test_duplicate_username_conflict(self, stores) -> None:
        directory, _ = stores
        directory.create(_identity())
        with pytest.raises(IdentityConflictError) as exc_info:
            directory.create(_identity(email="other@x.com"))
        assert exc_info.value.field == "username"

    def test_update_last_login(self, stores) -> None:
        directory, _ = stores
        created = directory.create(_identity())
        assert directory.get_by_id(created.id).last_login_at is None
        directory.update_last_login(created.id)
        stamped = directory.get_by_id(created.id).last_login_at
        assert stamped is not None
        assert stamped.tzinfo is not None

    def test_returned_records_are_copies(self, stores) -> None:
        """Mutating a returned Identity does not change what the directory holds."""
        directory, _ = stores
        created = directory.create(_identity())
        fetched = directory.get_by_id(created.id)
        fetched.is_active = False
        assert directory.get_by_id(created.id).is_active is True


# ---------------------------------------------------------------------------
# Refresh token store
# ---------------------------------------------------------------------------


class TestRefreshTokenStore:
    @pytest.fixture
    def owner(self, stores) -> str:
        directory, _ = stores
        return directory.create(_identity()).id

    def test_create_and_get_valid(self, stores, owner: str) -> None:
        _, tokens = stores
        created = tokens.create(_token(owner, "value-1"))
        assert created.id
        found = tokens.get_valid("value-1")
        assert found is not None
        assert found.identity_id == owner
        assert found.revoked is False
        assert found.expires_at.tzinfo is not None

    def test_unknown_value_is_none(self, stores) -> None:
        _, tokens = stores
        assert tokens.get_valid("never-issued") is None

    def test_expired_token_is_not_valid(self, stores, owner: str) -> None:
        _, tokens = stores
        tokens.create(_token(owner, "stale", expires_in=-1))
        assert tokens.get_valid("stale") is None

    def test_duplicate_value_is_store_failure(self, stores, owner: str) -> None:
        _, tokens = stores
        tokens.create(_token(owner, "same"))
        with pytest.raises(StoreFailedError):
            tokens.create(_token(owner, "same"))

    def test_revoke_is_one_shot(self, stores, owner: str) -> None:
        _, tokens = stores
        tokens.create(_token(owner, "value-1"))
        assert tokens.revoke("value-1") is True
        assert tokens.revoke("value-1") is False
        assert tokens.get_valid("value-1") is None

    def test_revoke_unknown_is_false(self, stores) -> None:
        _, tokens = stores
        assert tokens.revoke("never-issued") is False

    def test_revoke_all_scoped_to_identity(self, stores, owner: str) -> None:
        directory, tokens = stores
        other = directory.create(_identity(email="b@x.com", username="b")).id
        tokens.create(_token(owner, "mine-1"))
        tokens.create(_token(owner, "mine-2"))
        tokens.create(_token(other, "theirs"))

        assert tokens.revoke_all(owner) == 2
        assert tokens.get_valid("mine-1") is None
        assert tokens.get_valid("mine-2") is None
        assert tokens.get_valid("theirs") is not None
        # Already revoked -- nothing left to flip.
        assert tokens.revoke_all(owner) == 0

    def test_delete_expired(self, stores, owner: str) -> None:
        _, tokens = stores
        tokens.create(_token(owner, "stale-1", expires_in=-10))
        tokens.create(_token(owner, "stale-2", expires_in=-10))
        tokens.create(_token(owner, "fresh"))

        assert tokens.delete_expired() == 2
        assert tokens.get_valid("fresh") is not None
        assert tokens.delete_expired() == 0


# ---------------------------------------------------------------------------
# SQL-only behaviour
# ---------------------------------------------------------------------------


class TestSQLStore:
    def test_ping(self) -> None:
        engine = create_db_engine("sqlite:///:memory:")
        assert ping(engine) is True
        engine.dispose()

    def test_token_for_unknown_identity_is_rejected(self) -> None:
        """The foreign key on refresh_tokens.identity_id is enforced."""
        engine = create_db_engine("sqlite:///:memory:")
        with pytest.raises(StoreFailedError):
            SQLRefreshTokenStore(engine).create(_token("no-such-identity", "orphan"))
        engine.dispose()
