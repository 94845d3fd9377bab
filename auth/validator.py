"""
auth/validator.py -- Bearer token validation at the trust boundary.

TokenValidator is the thin consumer of TokenSigner.verify() that runs once
per inbound request, either inside BearerAuthMiddleware (gateway style, by
path) or inside the get_current_claims() dependency (per route).

Oracle resistance: every failure -- no header, wrong scheme, garbage,
forged, expired -- becomes the same InvalidTokenError with the same client
message. The specific cause is kept in the log line and on exc.reason.
"""

from __future__ import annotations

import logging

from auth.errors import InvalidTokenError, TokenError
from auth.models import AccessClaims
from auth.tokens import TokenSigner

logger = logging.getLogger("authgate.auth")


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token from an 'Authorization: Bearer <token>' value, else None.

    The scheme is matched case-insensitively (RFC 6750 section 2.1).
    """
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


class TokenValidator:
    def __init__(self, signer: TokenSigner) -> None:
        self.signer = signer

    def validate(self, authorization: str | None) -> AccessClaims:
        """Verify the bearer token in an Authorization header value.

        Raises InvalidTokenError on any failure.
        """
        token = extract_bearer(authorization)
        if token is None:
            reason = "missing" if not authorization else "bad_scheme"
            logger.debug("Rejected request credentials: %s", reason)
            raise InvalidTokenError(reason=reason)
        try:
            return self.signer.verify(token)
        except TokenError as exc:
            logger.info("Rejected bearer token: %s (%s)", exc.reason, exc)
            raise InvalidTokenError(reason=exc.reason) from exc
