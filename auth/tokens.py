"""
auth/tokens.py -- Access token signing / verification and refresh token generation.

Security design decisions:
  Access tokens: python-jose JWTs signed with HS256 over one process-wide
       symmetric key. The key, TTL and issuer are injected at construction and
       never read from module state. verify() raises a typed TokenError so the
       boundary can log *why* a token failed while telling the client nothing.

  Algorithm pinning: the header's alg must be in the HMAC family before any
       signature work happens. That rejects alg=none and the classic RS256 ->
       HS256 substitution where a public key is replayed as an HMAC secret.

  Verification order: header -> signature -> registered claims. A forged
       token is reported as bad_signature even if it is also expired, so an
       expired verdict always means "was genuine once".

  Refresh tokens: secrets.token_urlsafe(32) gives 256 bits of entropy in 43
       base64url characters. They are NOT JWTs -- no claims, nothing to verify
       cryptographically. Validity lives in the token store, which is what makes
       them revocable.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import jws, jwt
from jose.exceptions import JWSError, JWTError

from auth.errors import BadSignatureError, ExpiredTokenError, MalformedTokenError
from auth.models import AccessClaims

SIGNING_ALGORITHM = "HS256"
# Accepted on verify. Anything outside the HMAC family is refused outright.
MAC_ALGORITHMS = ("HS256", "HS384", "HS512")

DEFAULT_ISSUER = "auth"

_REFRESH_TOKEN_BYTES = 32
_REQUIRED_CLAIMS = ("user_id", "email", "username", "iat", "exp", "iss", "sub")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenSigner:
    """Issues and verifies access tokens; generates refresh token values.

    Usage:
        signer = TokenSigner(secret_key, access_ttl_seconds=900)
        token = signer.issue_access(identity.id, identity.email, identity.username)
        claims = signer.verify(token)          # raises TokenError subclasses
        opaque = signer.issue_refresh()
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl_seconds: int,
        issuer: str = DEFAULT_ISSUER,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        if access_ttl_seconds <= 0:
            raise ValueError("access_ttl_seconds must be positive")
        self._key = secret_key
        self.access_ttl_seconds = access_ttl_seconds
        self.issuer = issuer
        self._clock = clock

    def __repr__(self) -> str:
        return f"TokenSigner(issuer={self.issuer!r}, access_ttl_seconds={self.access_ttl_seconds})"

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access(self, identity_id: str, email: str, username: str) -> str:
        """Encode a signed JWT for the given identity, valid for the access TTL."""
        now = self._clock()
        issued_at = int(now.timestamp())
        payload = {
            "user_id": identity_id,
            "email": email,
            "username": username,
            "iat": issued_at,
            "nbf": issued_at,
            "exp": int((now + timedelta(seconds=self.access_ttl_seconds)).timestamp()),
            "iss": self.issuer,
            "sub": identity_id,
        }
        return jwt.encode(payload, self._key, algorithm=SIGNING_ALGORITHM)

    @staticmethod
    def issue_refresh() -> str:
        """Return a fresh opaque refresh token value (256 bits, base64url)."""
        return secrets.token_urlsafe(_REFRESH_TOKEN_BYTES)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str) -> AccessClaims:
        """Verify a JWT and return its claims.

        Expiry and not-before are judged against the injected clock, the same
        one issue_access() stamps iat and exp with.

        Raises:
            MalformedTokenError: not a JWT, wrong algorithm, missing or invalid
                claims (issuer, not-before).
            BadSignatureError:   well-formed but not signed with our key.
            ExpiredTokenError:   genuine but past its exp claim.
        """
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise MalformedTokenError("undecodable header") from exc
        if header.get("alg") not in MAC_ALGORITHMS:
            raise MalformedTokenError(f"unexpected algorithm {header.get('alg')!r}")

        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedTokenError("undecodable claims") from exc

        # Header and payload decode, so the only thing jws.verify() can still
        # object to is the signature. jose reports that as a plain JWSError.
        try:
            jws.verify(token, self._key, algorithms=list(MAC_ALGORITHMS))
        except JWSError as exc:
            raise BadSignatureError("signature mismatch") from exc

        # exp and nbf are checked below against self._clock, not jose's wall clock.
        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=list(MAC_ALGORITHMS),
                issuer=self.issuer,
                options={"verify_exp": False, "verify_nbf": False},
            )
        except JWTError as exc:
            raise MalformedTokenError(str(exc)) from exc

        missing = [name for name in _REQUIRED_CLAIMS if name not in payload]
        if missing:
            raise MalformedTokenError(f"missing claims {missing}")
        try:
            expires = float(payload["exp"])
            not_before = float(payload.get("nbf", payload["iat"]))
        except (TypeError, ValueError) as exc:
            raise MalformedTokenError("non-numeric exp or nbf") from exc
        now = self._clock().timestamp()
        if now >= expires:
            raise ExpiredTokenError("token expired")
        if now < not_before:
            raise MalformedTokenError("token not yet valid")
        try:
            return AccessClaims(
                identity_id=str(payload["user_id"]),
                email=str(payload["email"]),
                username=str(payload["username"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                issuer=payload["iss"],
                subject=payload["sub"],
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise MalformedTokenError("unreadable claims") from exc
