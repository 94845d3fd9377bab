"""
auth/hashing.py -- Password hashing (bcrypt -- direct usage, no passlib wrapper).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection hashes a password longer than 72 bytes, which bcrypt 4.x
rejects. Direct usage has no compatibility shim and is actively maintained.

Work factor: clamped into bcrypt's accepted range at construction. A bad
BCRYPT_COST in the environment degrades to the nearest legal cost instead of
failing every registration.

72-byte window: bcrypt only reads the first 72 bytes of input, and bcrypt 5.x
raises on anything longer. Inputs are cut to 72 bytes explicitly on both the
hash and the verify path so behaviour is identical across bcrypt versions.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt

MIN_COST = 4
MAX_COST = 31

_MAX_PASSWORD_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_MAX_PASSWORD_BYTES]


class CredentialHasher:
    """Salted, self-describing one-way password hashes.

    Usage:
        hasher = CredentialHasher(cost=12)
        stored = hasher.hash("P@ssw0rd!")
        hasher.verify(stored, "P@ssw0rd!")   # True
    """

    def __init__(self, cost: int = 10) -> None:
        self.cost = min(max(cost, MIN_COST), MAX_COST)
        # Timing equalization dummy hash [C1]. Computed once here so the first
        # unknown-user login is not measurably faster than later ones.
        self._dummy_hash = self.hash("authgate_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash ($2b$<cost>$<salt><digest>) of the plaintext."""
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.cost)).decode("utf-8")

    def verify(self, hashed: str, plain: str) -> bool:
        """Return True if the plaintext matches the stored hash.

        bcrypt.checkpw compares in constant time. A stored value that is not a
        bcrypt hash makes checkpw raise ValueError; that is a mismatch, not a
        crash.
        """
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except ValueError:
            return False

    def verify_dummy(self, plain: str) -> None:
        """Spend one verification's worth of work without a real hash [C1].

        Call this when the identifier did not resolve so the response time of
        "no such user" matches "wrong password".
        """
        self.verify(self._dummy_hash, plain)
