"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; stores and the service do the work. The one exception is
RefreshToken.is_valid(), which is the validity invariant itself and belongs
next to the fields it reads.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Identity:
    """A registered user as the identity directory stores it.

    id is a UUID4 string assigned by the service before insert, so the
    directory never has to hand back generated keys.

    password_hash is the bcrypt string. It never leaves the service layer --
    everything user-facing goes through public().
    """

    email: str
    username: str
    password_hash: str
    id: str = ""
    first_name: str = ""
    last_name: str = ""
    is_active: bool = True
    is_verified: bool = False
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def public(self) -> PublicIdentity:
        return PublicIdentity(
            id=self.id,
            email=self.email,
            username=self.username,
            first_name=self.first_name,
            last_name=self.last_name,
            is_active=self.is_active,
        )


@dataclass(frozen=True)
class PublicIdentity:
    """The projection of an Identity that may be returned to clients."""

    id: str
    email: str
    username: str
    first_name: str
    last_name: str
    is_active: bool


@dataclass
class RefreshToken:
    """A long-lived, store-backed credential.

    value is the opaque random string handed to the client. It carries no
    claims: validity is decided entirely by this record, so revocation is a
    row update, not a cryptographic operation.
    """

    identity_id: str
    value: str
    expires_at: datetime
    id: str = ""
    revoked: bool = False
    created_at: datetime | None = None

    def is_valid(self, now: datetime) -> bool:
        """Valid iff not yet expired and not revoked."""
        return now < self.expires_at and not self.revoked


@dataclass(frozen=True)
class AccessClaims:
    """Claims carried inside a verified access token. Never persisted."""

    identity_id: str
    email: str
    username: str
    issued_at: datetime
    expires_at: datetime
    issuer: str
    subject: str


@dataclass(frozen=True)
class AuthResult:
    """What every successful register / login / refresh hands back."""

    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_in: int
    user: PublicIdentity
    token_type: str = "Bearer"
