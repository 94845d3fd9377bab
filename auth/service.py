"""
auth/service.py -- AuthService: register, login, refresh, logout.

The service is the only writer of identities and refresh tokens. It knows
nothing about HTTP: every outcome is either an AuthResult or an AuthError
subclass, and the api/ layer maps those onto status codes.

State machine: a caller is Anonymous until register / login / refresh returns
an AuthResult, and Authenticated while it holds an unexpired access token.
logout() only moves the *refresh* side back to Anonymous -- access tokens are
stateless and live until their exp claim.

Security:
  [C1] login() runs exactly one bcrypt verification whether or not the
       identifier resolved (CredentialHasher.verify_dummy on the miss path),
       so response time does not reveal which identifiers exist.

  Inactive accounts are reported only after the password verified. A wrong
       password against a deactivated account is plain invalid_credentials,
       so deactivation status is not enumerable either.

  Rotation: refresh() revokes the presented token with a conditional update
       and only issues a new pair if that revoke changed a row. A concurrent
       replay of the same token loses the race and gets invalid_token. With
       revoke_family_on_replay=True the loser also revokes every refresh token
       of the identity, on the assumption that one copy was stolen.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import (
    CreateFailedError,
    DuplicateEmailError,
    DuplicateUsernameError,
    IdentityConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    StoreFailedError,
    UserInactiveError,
    UserNotFoundError,
)
from auth.hashing import CredentialHasher
from auth.models import AuthResult, Identity, RefreshToken
from auth.ports import IdentityDirectory, RefreshTokenStore
from auth.tokens import TokenSigner

logger = logging.getLogger("authgate.auth")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Coordinates hasher, signer, identity directory and refresh token store.

    Usage:
        service = AuthService(directory, tokens, hasher, signer, refresh_ttl_seconds=604800)
        result = service.register("a@x.com", "a", "P@ssw0rd!")
        result = service.refresh(result.refresh_token)
        service.logout(result.user.id)
    """

    def __init__(
        self,
        directory: IdentityDirectory,
        tokens: RefreshTokenStore,
        hasher: CredentialHasher,
        signer: TokenSigner,
        refresh_ttl_seconds: int,
        *,
        revoke_family_on_replay: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if refresh_ttl_seconds <= 0:
            raise ValueError("refresh_ttl_seconds must be positive")
        self.directory = directory
        self.tokens = tokens
        self.hasher = hasher
        self.signer = signer
        self.refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self.revoke_family_on_replay = revoke_family_on_replay
        self._clock = clock

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        username: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
    ) -> AuthResult:
        """Create an identity and sign it straight in.

        The exists_by_* checks are a fast path only. Two concurrent requests
        can both pass them; the directory's unique constraints then reject one
        insert, and that conflict maps onto the same Duplicate* error.
        """
        email = email.lower()
        if self.directory.exists_by_email(email):
            raise DuplicateEmailError()
        if self.directory.exists_by_username(username):
            raise DuplicateUsernameError()

        identity = Identity(
            email=email,
            username=username,
            password_hash=self.hasher.hash(password),
            first_name=first_name,
            last_name=last_name,
            is_active=True,
            is_verified=False,
        )
        try:
            identity = self.directory.create(identity)
        except IdentityConflictError as exc:
            logger.info("Registration lost a uniqueness race on %s", exc.field)
            if exc.field == "email":
                raise DuplicateEmailError() from exc
            raise DuplicateUsernameError() from exc
        except StoreFailedError as exc:
            logger.error("Identity create failed (%s)", exc.reason, exc_info=True)
            raise CreateFailedError(reason=exc.reason) from exc

        logger.info("Registered identity %s", identity.id)
        return self._issue(identity)

    def login(self, identifier: str, password: str) -> AuthResult:
        """Authenticate by email or username and issue a token pair.

        The identifier is tried as an email first, then as a username; the
        first match wins. Uniqueness holds within each column, not across
        them, so an email that equals someone else's username resolves to the
        email owner.

        Emails are stored lower-cased, so an identifier containing "@" is
        lower-cased before the email lookup. Usernames match exactly.
        """
        identity = None
        if "@" in identifier:
            identity = self.directory.get_by_email(identifier.lower())
        if identity is None:
            identity = self.directory.get_by_username(identifier)

        if identity is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self.hasher.verify_dummy(password)
            raise InvalidCredentialsError(reason="unknown identifier")
        if not self.hasher.verify(identity.password_hash, password):
            raise InvalidCredentialsError(reason=f"bad password for identity {identity.id}")
        if not identity.is_active:
            raise UserInactiveError(reason=f"identity {identity.id} is inactive")

        try:
            self.directory.update_last_login(identity.id)
        except StoreFailedError as exc:
            # Bookkeeping only; the credentials were valid.
            logger.warning("last_login update failed for identity %s (%s)", identity.id, exc.reason)

        logger.info("Login succeeded for identity %s", identity.id)
        return self._issue(identity)

    def refresh(self, refresh_value: str) -> AuthResult:
        """Exchange a valid refresh token for a new pair, revoking the old one.

        Order is fixed: look up, resolve owner, revoke, then issue. The new
        pair is never minted unless this call is the one that revoked the
        presented token.
        """
        stored = self.tokens.get_valid(refresh_value)
        if stored is None:
            raise InvalidTokenError(reason="refresh token unknown, expired or revoked")

        identity = self.directory.get_by_id(stored.identity_id)
        if identity is None:
            raise UserNotFoundError(reason=f"owner {stored.identity_id} of refresh token is gone")
        if not identity.is_active:
            raise UserInactiveError(reason=f"identity {identity.id} is inactive")

        if not self.tokens.revoke(refresh_value):
            logger.warning("Refresh token replay detected for identity %s", identity.id)
            if self.revoke_family_on_replay:
                revoked = self.tokens.revoke_all(identity.id)
                logger.warning("Revoked %d refresh token(s) of identity %s after replay", revoked, identity.id)
            raise InvalidTokenError(reason="refresh token already rotated")

        return self._issue(identity)

    def logout(self, identity_id: str) -> int:
        """Revoke every refresh token of the identity. Idempotent.

        Returns how many tokens this call revoked (0 on a repeat logout).
        Access tokens already handed out stay valid until they expire.
        """
        revoked = self.tokens.revoke_all(identity_id)
        logger.info("Logout revoked %d refresh token(s) for identity %s", revoked, identity_id)
        return revoked

    def sweep_expired(self) -> int:
        """Delete expired refresh token rows. Safe to run at any time."""
        removed = self.tokens.delete_expired()
        if removed:
            logger.info("Swept %d expired refresh token(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def _issue(self, identity: Identity) -> AuthResult:
        access = self.signer.issue_access(identity.id, identity.email, identity.username)
        refresh = RefreshToken(
            identity_id=identity.id,
            value=self.signer.issue_refresh(),
            expires_at=self._clock() + self.refresh_ttl,
        )
        self.tokens.create(refresh)
        return AuthResult(
            access_token=access,
            refresh_token=refresh.value,
            expires_in=self.signer.access_ttl_seconds,
            user=identity.public(),
        )
