"""
bcrypt password hashing.

The work factor comes from configuration and is either a number of rounds (a fresh
salt is generated for every hash) or a pre-encoded bcrypt salt string. Hashing is
CPU bound, so both operations run in a worker thread to keep the event loop free.
"""

import asyncio
import logging
from typing import Optional, Union

import bcrypt

from sports.fieldbook.auth.errors import ConfigurationError

logger = logging.getLogger(__name__)

# bcrypt silently ignores (or, in recent releases, rejects) input past this length.
MAX_PASSWORD_BYTES = 72

MIN_ROUNDS = 4
MAX_ROUNDS = 31


class PasswordHasher:
    def __init__(self, salt_or_rounds: Optional[Union[int, str]]) -> None:
        if salt_or_rounds is None:
            raise ConfigurationError("BCRYPT_SALT_OR_ROUNDS is not configured")

        if isinstance(salt_or_rounds, int):
            if not MIN_ROUNDS <= salt_or_rounds <= MAX_ROUNDS:
                raise ConfigurationError(
                    f"bcrypt rounds must be between {MIN_ROUNDS} and {MAX_ROUNDS}"
                )
            self._rounds: Optional[int] = salt_or_rounds
            self._salt: Optional[bytes] = None
        else:
            if not salt_or_rounds.startswith("$2") or len(salt_or_rounds) < 29:
                raise ConfigurationError("BCRYPT_SALT_OR_ROUNDS is not a bcrypt salt")
            self._rounds = None
            self._salt = salt_or_rounds[:29].encode("ascii")

    def _salt_for_hash(self) -> bytes:
        if self._salt is not None:
            return self._salt
        return bcrypt.gensalt(rounds=self._rounds)

    def hash_sync(self, plaintext: str) -> str:
        encoded = plaintext.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password exceeds {MAX_PASSWORD_BYTES} bytes")
        return bcrypt.hashpw(encoded, self._salt_for_hash()).decode("ascii")

    def verify_sync(self, plaintext: str, digest: str) -> bool:
        encoded = plaintext.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            return False
        return bcrypt.checkpw(encoded, digest.encode("ascii"))

    async def hash(self, plaintext: str) -> str:
        """Return the bcrypt digest of ``plaintext``.

        Raises ``ValueError`` when the input is longer than bcrypt can represent.
        """
        return await asyncio.to_thread(self.hash_sync, plaintext)

    async def verify(self, plaintext: str, digest: str) -> bool:
        """Constant time comparison of ``plaintext`` against a stored digest."""
        return await asyncio.to_thread(self.verify_sync, plaintext, digest)
