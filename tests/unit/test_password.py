"""Unit tests for password hashing."""

import pytest

from edupulse.kernel.identity.password import PasswordHasher


class TestPasswordHasher:
    """Tests for PasswordHasher."""

    def test_hash_creates_different_hashes(self, hasher: PasswordHasher):
        """Same password should create different hashes (due to salt)."""
        password = "TestPassword123"
        hash1 = hasher.hash(password)
        hash2 = hasher.hash(password)

        assert hash1 != hash2
        assert hash1 != password
        assert hash1.startswith("$argon2id$")

    def test_verify_correct_password(self, hasher: PasswordHasher):
        """Correct password should verify successfully."""
        password = "TestPassword123"
        hashed = hasher.hash(password)

        assert hasher.verify(password, hashed) is True

    def test_verify_wrong_password(self, hasher: PasswordHasher):
        """Wrong password should fail verification."""
        hashed = hasher.hash("TestPassword123")

        assert hasher.verify("WrongPassword", hashed) is False

    @pytest.mark.parametrize("stored", ["", "not-a-hash", "$argon2id$v=19$garbage"])
    def test_verify_malformed_hash_returns_false(self, hasher: PasswordHasher, stored: str):
        """Empty or malformed stored hashes never raise."""
        assert hasher.verify("TestPassword123", stored) is False

    def test_needs_rehash_after_cost_change(self, hasher: PasswordHasher):
        """Hashes made with other parameters are flagged for rehash."""
        hashed = hasher.hash("TestPassword123")
        stronger = PasswordHasher(time_cost=2, memory_cost=1024, parallelism=1)

        assert hasher.needs_rehash(hashed) is False
        assert stronger.needs_rehash(hashed) is True

    def test_burn_always_false(self, hasher: PasswordHasher):
        """Dummy verification spends work but never succeeds."""
        assert hasher.burn("edupulse-dummy-password-guess") is False

    async def test_async_variants(self, hasher: PasswordHasher):
        """Async variants run off the event loop with the same results."""
        hashed = await hasher.hash_async("TestPassword123")

        assert await hasher.verify_async("TestPassword123", hashed) is True
        assert await hasher.verify_async("wrong", hashed) is False
        assert await hasher.burn_async("TestPassword123") is False
