"""One-way password hashing and verification.

Passwords are hashed with bcrypt.  bcrypt only considers the first 72 bytes
of its input (and current releases refuse longer input outright), so the UTF-8
encoding is truncated consistently on both the hash and the verify path.

:meth:`PasswordHasher.verify` accepts ``None`` as the stored hash and still
runs a full bcrypt comparison against a throwaway hash.  The storage layer
uses this for the "no such user" branch of credential validation so that an
unknown email costs the same as a wrong password.

Typical usage::

    from smallthings.core.credentials import PasswordHasher

    hasher = PasswordHasher(rounds=12)
    stored = hasher.hash("secret1")
    assert hasher.verify("secret1", stored)
"""

from __future__ import annotations

import logging

import bcrypt

__all__ = ["DEFAULT_ROUNDS", "PasswordHasher"]

logger = logging.getLogger(__name__)

#: bcrypt cost factor used when none is configured.
DEFAULT_ROUNDS: int = 12

_BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """bcrypt hashing with a fixed cost factor.

    Args:
        rounds: bcrypt log2 cost factor (4-31).  Tests use 4 to stay fast.
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError(f"bcrypt rounds must be between 4 and 31, got {rounds}")
        self.rounds = rounds
        # Built up front so an unknown-user check costs exactly one checkpw.
        self._dummy_hash = bcrypt.hashpw(b"smallthings", bcrypt.gensalt(rounds=rounds))

    def hash(self, password: str) -> str:  # noqa: A003
        """Return the bcrypt hash of *password* as a text string."""
        hashed = bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=self.rounds))
        return hashed.decode("utf-8")

    def verify(self, password: str, password_hash: str | None) -> bool:
        """Return ``True`` if *password* matches *password_hash*.

        A ``None`` hash is compared against a dummy hash and always fails.  A
        malformed stored hash is logged and treated as a mismatch.
        """
        if password_hash is None:
            bcrypt.checkpw(_encode(password), self._dummy_hash)
            return False
        try:
            return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False
