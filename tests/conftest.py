"""
Pytest fixtures for EduPulse identity tests.
"""

import os

# Configure before any edupulse import reads settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "development"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["EMAIL_API_KEY"] = ""
os.environ["ADMIN_REGISTRATION_CODE"] = "test-admin-code"
os.environ["FRONTEND_URL"] = "http://frontend.test"

import asyncio
import uuid
from datetime import datetime
from typing import AsyncGenerator, Optional
from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from edupulse.config import Settings, get_settings

get_settings.cache_clear()

from edupulse.database import build_engine, build_session_maker
from edupulse.kernel.errors import DeliveryError, EmailAlreadyExistsError
from edupulse.kernel.identity.identity_service import IdentityService
from edupulse.kernel.identity.jwt import JWTManager
from edupulse.kernel.identity.password import PasswordHasher
from edupulse.kernel.models.base import Base
from edupulse.kernel.models.user import User, UserRole, UserStatus, normalize_email


TEST_ACCESS_SECRET = "test-access-secret-for-testing-only-0123456789"
TEST_REFRESH_SECRET = "test-refresh-secret-for-testing-only-0123456789"


# ---------------------------------------------------------------------------
# In-memory adapters
# ---------------------------------------------------------------------------

class InMemoryUserRepository:
    """UserRepository over a dict; conditional updates run under one lock."""

    def __init__(self):
        self.users: dict[uuid.UUID, User] = {}
        self._lock = asyncio.Lock()

    async def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        return self.users.get(user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        email = normalize_email(email)
        return next((u for u in self.users.values() if u.email == email), None)

    async def create(self, user: User) -> User:
        async with self._lock:
            user.email = normalize_email(user.email)
            if any(u.email == user.email for u in self.users.values()):
                raise EmailAlreadyExistsError(user.email)
            self.users[user.id] = user
            return user

    async def save(self, user: User) -> User:
        self.users[user.id] = user
        return user

    async def delete(self, user_id: uuid.UUID) -> bool:
        return self.users.pop(user_id, None) is not None

    async def find_by_verification_token(self, token_hash: str, now: datetime) -> Optional[User]:
        return next(
            (
                u for u in self.users.values()
                if u.verification_token_hash == token_hash
                and u.verification_token_expires_at is not None
                and u.verification_token_expires_at > now
            ),
            None,
        )

    async def consume_verification_token(self, user_id: uuid.UUID, token_hash: str, now: datetime) -> bool:
        async with self._lock:
            user = self.users.get(user_id)
            if (
                user is None
                or user.verification_token_hash != token_hash
                or user.verification_token_expires_at is None
                or user.verification_token_expires_at <= now
                or user.status != UserStatus.PENDING_VERIFICATION
            ):
                return False
            user.status = UserStatus.ACTIVE
            user.email_verified = True
            user.clear_verification_token()
            user.updated_at = now
            return True

    async def find_by_reset_token(self, token_hash: str, now: datetime) -> Optional[User]:
        return next(
            (
                u for u in self.users.values()
                if u.reset_token_hash == token_hash
                and u.reset_token_expires_at is not None
                and u.reset_token_expires_at > now
            ),
            None,
        )

    async def consume_reset_token(
        self,
        user_id: uuid.UUID,
        token_hash: str,
        password_hash: str,
        now: datetime,
    ) -> bool:
        async with self._lock:
            user = self.users.get(user_id)
            if (
                user is None
                or user.reset_token_hash != token_hash
                or user.reset_token_expires_at is None
                or user.reset_token_expires_at <= now
            ):
                return False
            user.password_hash = password_hash
            user.clear_reset_token()
            user.updated_at = now
            return True


class InMemoryRefreshTokenStore:
    """RefreshTokenStore over a dict keyed by token hash."""

    def __init__(self):
        self.records: dict[str, dict] = {}

    async def record(self, user_id: uuid.UUID, token_hash: str, expires_at: datetime) -> None:
        self.records[token_hash] = {"user_id": user_id, "expires_at": expires_at, "revoked": False}

    async def revoke(
        self,
        token_hash: str,
        now: datetime,
        user_id: Optional[uuid.UUID] = None,
    ) -> bool:
        rec = self.records.get(token_hash)
        if rec is None or rec["revoked"] or rec["expires_at"] <= now:
            return False
        if user_id is not None and rec["user_id"] != user_id:
            return False
        rec["revoked"] = True
        return True

    async def is_known(self, token_hash: str) -> bool:
        return token_hash in self.records

    async def revoke_all(self, user_id: uuid.UUID) -> int:
        count = 0
        for rec in self.records.values():
            if rec["user_id"] == user_id and not rec["revoked"]:
                rec["revoked"] = True
                count += 1
        return count

    async def purge(self, now: datetime) -> int:
        dead = [h for h, rec in self.records.items() if rec["revoked"] or rec["expires_at"] <= now]
        for h in dead:
            del self.records[h]
        return len(dead)

    def active_for(self, user_id: uuid.UUID) -> int:
        return sum(1 for rec in self.records.values() if rec["user_id"] == user_id and not rec["revoked"])


class RecordingDeliveryGateway:
    """DeliveryGateway that records links; set `fail` to simulate an outage."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    async def _send(self, kind: str, email: str, link: str) -> None:
        if self.fail:
            raise DeliveryError("simulated outage")
        self.sent.append((kind, email, link))

    async def send_verification_link(self, email: str, link: str) -> None:
        await self._send("verification", email, link)

    async def send_password_reset_link(self, email: str, link: str) -> None:
        await self._send("reset", email, link)

    def of_kind(self, kind: str) -> list[tuple[str, str, str]]:
        return [s for s in self.sent if s[0] == kind]

    def last_token(self, kind: str) -> str:
        """Raw token from the most recent link of the given kind."""
        _, _, link = self.of_kind(kind)[-1]
        return parse_qs(urlparse(link).query)["token"][0]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def hasher() -> PasswordHasher:
    """Cheap argon2 parameters so the suite stays fast."""
    return PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1)


@pytest.fixture
def jwt_manager() -> JWTManager:
    """Create a JWT manager for tests."""
    return JWTManager(
        access_secret=TEST_ACCESS_SECRET,
        refresh_secret=TEST_REFRESH_SECRET,
        algorithm="HS256",
        access_token_expire_minutes=15,
        refresh_token_expire_days=7,
    )


@pytest.fixture
def user_repo() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def token_store() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture
def delivery() -> RecordingDeliveryGateway:
    return RecordingDeliveryGateway()


@pytest.fixture
def identity_service(user_repo, jwt_manager, hasher, delivery, token_store, settings) -> IdentityService:
    """Service with a revocation store and inline email delivery."""
    return IdentityService(
        users=user_repo,
        jwt_manager=jwt_manager,
        password_hasher=hasher,
        delivery=delivery,
        refresh_tokens=token_store,
        settings=settings,
        background_delivery=False,
    )


@pytest.fixture
def stateless_service(user_repo, jwt_manager, hasher, delivery, settings) -> IdentityService:
    """Service without a revocation store."""
    return IdentityService(
        users=user_repo,
        jwt_manager=jwt_manager,
        password_hasher=hasher,
        delivery=delivery,
        settings=settings,
        background_delivery=False,
    )


@pytest.fixture
def student_data() -> dict:
    """Registration arguments for a student."""
    return {
        "email": "a@x.com",
        "password": "Secret@123",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "role": UserRole.STUDENT,
        "role_profile": {"roll_number": "STU10001", "grade_level": "10th", "section": "A"},
    }


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine shared by every session in a test."""
    engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(db_engine) -> async_sessionmaker:
    return build_session_maker(db_engine)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_maker() as session:
        yield session
        await session.rollback()
