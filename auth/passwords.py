"""
auth/passwords.py -- bcrypt password hashing and verification.

Security design decisions:
  bcrypt used directly (no passlib wrapper). passlib's wrap-bug detection
       builds a password longer than 72 bytes, which bcrypt 4.x rejects.

  Cost factor is fixed per hasher instance (default 12 rounds, from
       Settings.bcrypt_rounds). Every hash() call draws a fresh salt, so two
       hashes of the same password differ.

  verify() never raises. A malformed or foreign hash string is a mismatch,
       not an error the caller has to handle.

  dummy_verify() runs a full bcrypt check against a hash of a throwaway
       value so "unknown identifier" costs the same as "wrong password" and
       response time does not reveal which accounts exist [C1].

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from functools import cached_property

import bcrypt

logger = logging.getLogger("salonauth.passwords")

DEFAULT_ROUNDS = 12


class PasswordHasher:
    """One-way adaptive hashing of plaintext passwords.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("Abcdef1!")
        hasher.verify("Abcdef1!", stored)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash of plain.

        bcrypt only reads the first 72 bytes of its input. The HTTP layer
        caps passwords at 128 characters; longer inputs are accepted here but
        share a hash with their 72-byte prefix.
        """
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True iff plain matches hashed. False on any malformed input."""
        if not plain or not hashed:
            return False
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False

    def needs_rehash(self, hashed: str) -> bool:
        """Return True if hashed was produced with a lower cost than configured."""
        try:
            cost = int(hashed.split("$")[2])
        except (IndexError, ValueError):
            return True
        return cost < self.rounds

    @cached_property
    def _dummy_hash(self) -> str:
        # Computed once per hasher, at this hasher's cost factor.
        return self.hash("salonauth_timing_dummy")

    def dummy_verify(self, plain: str) -> None:
        """Burn one bcrypt verification; always treated as a mismatch [C1]."""
        self.verify(plain or "x", self._dummy_hash)


def _encode(plain: str) -> bytes:
    # bcrypt 4.x raises on inputs over 72 bytes; truncate to its documented limit.
    return plain.encode("utf-8")[:72]
