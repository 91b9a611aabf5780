"""
auth/passwords.py -- One-way salted password hashing (bcrypt).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

Timing equalization [C1]: PasswordHasher keeps a dummy hash computed once at
construction. check_missing() runs bcrypt against it when the user does not
exist, so response time does not reveal whether an email is registered.

bcrypt is CPU-bound. Callers are sync functions that FastAPI runs in its
threadpool, so a slow hash never blocks the event loop.
"""

from __future__ import annotations

import bcrypt

from auth.errors import PasswordTooLong

MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """bcrypt hash/verify with a configurable cost factor.

    Tests pass rounds=4 (bcrypt's minimum) to keep the suite fast.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("authcore_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Raises PasswordTooLong past bcrypt's 72-byte input limit. The limit
        counts UTF-8 bytes, not characters.
        """
        encoded = plain.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise PasswordTooLong()
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Malformed hash in the store -- treat as a mismatch.
            return False

    def check_missing(self, plain: str) -> None:
        """Burn one bcrypt verification for a user that does not exist [C1]."""
        self.verify(plain, self._dummy_hash)
