"""
auth/ports.py -- Capability interfaces consumed by AuthService.

Pattern: Repository behind a structural interface (typing.Protocol). The
service depends only on these method sets, so the SQLAlchemy stores in
auth/store.py and the in-memory ones in auth/memory.py are interchangeable
without inheritance.

Failure contract shared by every implementation:
  - Infrastructure faults raise StoreFailedError.
  - IdentityDirectory.create() raises IdentityConflictError(field) when the
    email or username is already taken.
  - Lookups return None for "not found"; they never raise for it.
"""

from __future__ import annotations

from typing import Protocol

from auth.models import Identity, RefreshToken


class IdentityDirectory(Protocol):
    def create(self, identity: Identity) -> Identity: ...

    def get_by_id(self, identity_id: str) -> Identity | None: ...

    def get_by_email(self, email: str) -> Identity | None: ...

    def get_by_username(self, username: str) -> Identity | None: ...

    def exists_by_email(self, email: str) -> bool: ...

    def exists_by_username(self, username: str) -> bool: ...

    def update_last_login(self, identity_id: str) -> None: ...


class RefreshTokenStore(Protocol):
    def create(self, token: RefreshToken) -> RefreshToken: ...

    def get_valid(self, value: str) -> RefreshToken | None:
        """Return the token only while it is unexpired and unrevoked."""
        ...

    def revoke(self, value: str) -> bool:
        """Revoke one token. True only if this call flipped it from unrevoked."""
        ...

    def revoke_all(self, identity_id: str) -> int: ...

    def delete_expired(self) -> int: ...
