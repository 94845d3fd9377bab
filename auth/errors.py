"""
auth/errors.py -- Exception taxonomy for the authentication subsystem.

Three families, kept apart on purpose:

  AuthError        -- expected domain outcomes. Each subclass has a stable
                      machine-readable `code` and a client-safe `message`.
                      The api/ layer maps them onto HTTP statuses; nothing in
                      auth/ knows about HTTP.

  TokenError       -- why TokenSigner.verify() rejected a token. Internal
                      only: the boundary collapses every TokenError into one
                      InvalidTokenError so clients cannot tell which check
                      failed. `reason` is for logs.

  IdentityConflictError -- raised by an IdentityDirectory when an insert hits
                      a unique constraint. The service translates it into
                      DuplicateEmailError / DuplicateUsernameError.

InvalidCredentialsError and InvalidTokenError take an optional `reason` for
the log line, but their client message never changes.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for domain errors returned to clients."""

    code = "auth_error"
    message = "Authentication failed."

    def __init__(self, message: str | None = None, *, reason: str = "") -> None:
        if message is not None:
            self.message = message
        self.reason = reason
        super().__init__(self.message)


class DuplicateEmailError(AuthError):
    code = "user_exists"
    message = "A user with this email already exists."


class DuplicateUsernameError(AuthError):
    code = "user_exists"
    message = "A user with this username already exists."


class InvalidCredentialsError(AuthError):
    code = "invalid_credentials"
    message = "Invalid email/username or password."

    def __init__(self, *, reason: str = "") -> None:
        super().__init__(reason=reason)


class UserInactiveError(AuthError):
    code = "user_inactive"
    message = "User account is inactive."


class UserNotFoundError(AuthError):
    code = "user_not_found"
    message = "User not found."


class InvalidTokenError(AuthError):
    code = "invalid_token"
    message = "Invalid or expired token."

    def __init__(self, *, reason: str = "") -> None:
        super().__init__(reason=reason)


class CreateFailedError(AuthError):
    """Identity insert failed for an infrastructure reason."""

    code = "create_failed"
    message = "Failed to create user."


class StoreFailedError(AuthError):
    """A directory or token-store call failed for an infrastructure reason."""

    code = "store_failed"
    message = "Storage operation failed."


# ---------------------------------------------------------------------------
# Token verification failures (internal)
# ---------------------------------------------------------------------------


class TokenError(Exception):
    reason = "invalid"


class MalformedTokenError(TokenError):
    reason = "malformed"


class BadSignatureError(TokenError):
    reason = "bad_signature"


class ExpiredTokenError(TokenError):
    reason = "expired"


# ---------------------------------------------------------------------------
# Directory conflicts (internal)
# ---------------------------------------------------------------------------


class IdentityConflictError(Exception):
    """A unique constraint on `field` ("email" or "username") was violated."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"identity {field} already exists")
