"""
Password hashing utilities using argon2id.
"""

import asyncio
from functools import lru_cache

from argon2 import PasswordHasher as Argon2Hasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

from edupulse.config import get_settings


class PasswordHasher:
    """
    Password hashing service.

    Cost parameters are fixed at construction so the work done per
    verification cannot be influenced by the caller.
    """

    def __init__(
        self,
        time_cost: int = 3,
        memory_cost: int = 65536,
        parallelism: int = 1,
    ):
        self._hasher = Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        # Verified against unknown accounts so login effort does not reveal them
        self._dummy_hash = self._hasher.hash("edupulse-dummy-password")

    def hash(self, password: str) -> str:
        """
        Hash a password using argon2id.

        Every call uses a fresh random salt, so equal passwords never
        produce equal hashes.

        Args:
            password: Plain text password

        Returns:
            Encoded argon2 hash string
        """
        return self._hasher.hash(password)

    def verify(self, plain_password: str, hashed_password: str) -> bool:
        """
        Verify a password against its hash.

        Never raises: a mismatch, an empty or a malformed hash all return False.

        Args:
            plain_password: Plain text password to verify
            hashed_password: Stored hashed password

        Returns:
            True if password matches, False otherwise
        """
        if not hashed_password:
            return False
        try:
            return self._hasher.verify(hashed_password, plain_password)
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, hashed_password: str) -> bool:
        """Check if a hash was produced with different cost parameters."""
        try:
            return self._hasher.check_needs_rehash(hashed_password)
        except InvalidHashError:
            return True

    def burn(self, plain_password: str) -> bool:
        """Spend one verification's worth of work and return False."""
        self.verify(plain_password, self._dummy_hash)
        return False

    async def hash_async(self, password: str) -> str:
        """Hash on a worker thread so the event loop stays responsive."""
        return await asyncio.to_thread(self.hash, password)

    async def verify_async(self, plain_password: str, hashed_password: str) -> bool:
        """Verify on a worker thread."""
        return await asyncio.to_thread(self.verify, plain_password, hashed_password)

    async def burn_async(self, plain_password: str) -> bool:
        return await asyncio.to_thread(self.burn, plain_password)


@lru_cache
def get_password_hasher() -> PasswordHasher:
    """Get the hasher configured from settings."""
    settings = get_settings()
    return PasswordHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
    )

