"""
auth/memory.py -- In-memory IdentityDirectory and RefreshTokenStore.

Same contracts as auth/store.py, held in dicts behind a lock. Used by the
service unit tests and handy for local experiments; not for production --
nothing survives a restart.

Records are copied on the way in and out so callers cannot mutate stored
state by holding on to a returned object, the same isolation a database
round trip gives.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone

from auth.errors import IdentityConflictError, StoreFailedError
from auth.models import Identity, RefreshToken


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryIdentityDirectory:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[str, Identity] = {}

    def create(self, identity: Identity) -> Identity:
        with self._lock:
            # Same unique-constraint semantics as the SQL table.
            for existing in self._by_id.values():
                if existing.email == identity.email:
                    raise IdentityConflictError("email")
                if existing.username == identity.username:
                    raise IdentityConflictError("username")
            now = _now()
            identity.id = identity.id or str(uuid.uuid4())
            identity.created_at = now
            identity.updated_at = now
            self._by_id[identity.id] = replace(identity)
        return identity

    def get_by_id(self, identity_id: str) -> Identity | None:
        with self._lock:
            found = self._by_id.get(identity_id)
            return replace(found) if found is not None else None

    def get_by_email(self, email: str) -> Identity | None:
        return self._find(lambda i: i.email == email)

    def get_by_username(self, username: str) -> Identity | None:
        return self._find(lambda i: i.username == username)

    def exists_by_email(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    def exists_by_username(self, username: str) -> bool:
        return self.get_by_username(username) is not None

    def update_last_login(self, identity_id: str) -> None:
        with self._lock:
            found = self._by_id.get(identity_id)
            if found is not None:
                found.last_login_at = found.updated_at = _now()

    def set_active(self, identity_id: str, active: bool) -> None:
        """Flip the active flag. Stands in for an admin tool outside this service."""
        with self._lock:
            self._by_id[identity_id].is_active = active

    def remove(self, identity_id: str) -> None:
        """Drop an identity. Stands in for a deletion done outside this service."""
        with self._lock:
            self._by_id.pop(identity_id, None)

    def __len__(self) -> int:
        return len(self._by_id)

    def _find(self, predicate) -> Identity | None:
        with self._lock:
            for identity in self._by_id.values():
                if predicate(identity):
                    return replace(identity)
        return None


class MemoryRefreshTokenStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_value: dict[str, RefreshToken] = {}

    def create(self, token: RefreshToken) -> RefreshToken:
        with self._lock:
            if token.value in self._by_value:
                raise StoreFailedError(reason="duplicate refresh token value")
            token.id = token.id or str(uuid.uuid4())
            token.created_at = _now()
            self._by_value[token.value] = replace(token)
        return token

    def get_valid(self, value: str) -> RefreshToken | None:
        with self._lock:
            found = self._by_value.get(value)
            if found is None or not found.is_valid(_now()):
                return None
            return replace(found)

    def revoke(self, value: str) -> bool:
        with self._lock:
            found = self._by_value.get(value)
            if found is None or found.revoked:
                return False
            found.revoked = True
            return True

    def revoke_all(self, identity_id: str) -> int:
        count = 0
        with self._lock:
            for token in self._by_value.values():
                if token.identity_id == identity_id and not token.revoked:
                    token.revoked = True
                    count += 1
        return count

    def delete_expired(self) -> int:
        now = _now()
        with self._lock:
            expired = [value for value, token in self._by_value.items() if token.expires_at <= now]
            for value in expired:
                del self._by_value[value]
        return len(expired)

    def __len__(self) -> int:
        return len(self._by_value)
