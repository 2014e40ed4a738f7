"""
Persistence ports for the identity core and their SQLAlchemy adapters.

IdentityService depends only on the Protocols below, so tests and tools
can substitute in-memory implementations. The SQLAlchemy adapters enforce
the two guarantees the service relies on:

- email uniqueness is a database constraint (duplicates raise
  EmailAlreadyExistsError), and
- single-use tokens are consumed with conditional UPDATEs, so two
  concurrent consumers of the same token cannot both succeed.
"""

import uuid
from datetime import datetime
from typing import Any, Optional, Protocol

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from edupulse.kernel.errors import EmailAlreadyExistsError
from edupulse.kernel.models.user import RefreshToken, User, UserStatus, normalize_email


class UserRepository(Protocol):
    """Storage for User rows."""

    async def get_by_id(self, user_id: uuid.UUID) -> Optional[User]: ...

    async def get_by_email(self, email: str) -> Optional[User]: ...

    async def create(self, user: User) -> User:
        """Persist a new user. Raises EmailAlreadyExistsError on duplicate email."""
        ...

    async def save(self, user: User) -> User:
        """Persist attribute changes made to a loaded user."""
        ...

    async def delete(self, user_id: uuid.UUID) -> bool: ...

    async def find_by_verification_token(self, token_hash: str, now: datetime) -> Optional[User]:
        """User whose unexpired verification token hash matches, if any."""
        ...

    async def consume_verification_token(self, user_id: uuid.UUID, token_hash: str, now: datetime) -> bool:
        """
        Atomically activate a pending user if the token still matches and is
        unexpired; clears the token. Returns False if nothing was updated.
        """
        ...

    async def find_by_reset_token(self, token_hash: str, now: datetime) -> Optional[User]: ...

    async def consume_reset_token(
        self,
        user_id: uuid.UUID,
        token_hash: str,
        password_hash: str,
        now: datetime,
    ) -> bool:
        """
        Atomically replace the password if the reset token still matches and
        is unexpired; clears the token. Returns False if nothing was updated.
        """
        ...


class RefreshTokenStore(Protocol):
    """Revocation records for issued refresh tokens (keyed by token hash)."""

    async def record(self, user_id: uuid.UUID, token_hash: str, expires_at: datetime) -> None: ...

    async def revoke(
        self,
        token_hash: str,
        now: datetime,
        user_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """
        Atomically revoke an active (unrevoked, unexpired) token.
        Returns True only for the caller that performed the revocation.
        """
        ...

    async def is_known(self, token_hash: str) -> bool:
        """True if the token was ever recorded (revoked or not)."""
        ...

    async def revoke_all(self, user_id: uuid.UUID) -> int: ...

    async def purge(self, now: datetime) -> int:
        """Delete expired and revoked records."""
        ...


class SqlAlchemyUserRepository:
    """UserRepository backed by an AsyncSession (caller owns the transaction)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        return await self.session.get(User, user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        query = select(User).where(User.email == normalize_email(email))
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def create(self, user: User) -> User:
        user.email = normalize_email(user.email)
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            raise EmailAlreadyExistsError(user.email) from exc
        return user

    async def save(self, user: User) -> User:
        await self.session.flush()
        return user

    async def delete(self, user_id: uuid.UUID) -> bool:
        result = await self.session.execute(delete(User).where(User.id == user_id))
        return result.rowcount == 1

    async def find_by_verification_token(self, token_hash: str, now: datetime) -> Optional[User]:
        query = select(User).where(
            User.verification_token_hash == token_hash,
            User.verification_token_expires_at > now,
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def consume_verification_token(self, user_id: uuid.UUID, token_hash: str, now: datetime) -> bool:
        return await self._conditional_update(
            user_id,
            User.verification_token_hash == token_hash,
            User.verification_token_expires_at > now,
            User.status == UserStatus.PENDING_VERIFICATION,
            values={
                "status": UserStatus.ACTIVE,
                "email_verified": True,
                "verification_token_hash": None,
                "verification_token_expires_at": None,
                "updated_at": now,
            },
        )

    async def find_by_reset_token(self, token_hash: str, now: datetime) -> Optional[User]:
        query = select(User).where(
            User.reset_token_hash == token_hash,
            User.reset_token_expires_at > now,
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def consume_reset_token(
        self,
        user_id: uuid.UUID,
        token_hash: str,
        password_hash: str,
        now: datetime,
    ) -> bool:
        return await self._conditional_update(
            user_id,
            User.reset_token_hash == token_hash,
            User.reset_token_expires_at > now,
            values={
                "password_hash": password_hash,
                "reset_token_hash": None,
                "reset_token_expires_at": None,
                "updated_at": now,
            },
        )

    async def _conditional_update(
        self,
        user_id: uuid.UUID,
        *conditions: Any,
        values: dict[str, Any],
    ) -> bool:
        stmt = (
            update(User)
            .where(User.id == user_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        # Reload so an already-loaded instance does not carry stale values
        await self.session.get(User, user_id, populate_existing=True)
        return True


class SqlAlchemyRefreshTokenStore:
    """RefreshTokenStore backed by the refresh_tokens table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, user_id: uuid.UUID, token_hash: str, expires_at: datetime) -> None:
        self.session.add(
            RefreshToken(user_id=user_id, token_hash=token_hash, expires_at=expires_at)
        )
        await self.session.flush()

    async def revoke(
        self,
        token_hash: str,
        now: datetime,
        user_id: Optional[uuid.UUID] = None,
    ) -> bool:
        conditions = [
            RefreshToken.token_hash == token_hash,
            RefreshToken.revoked.is_(False),
            RefreshToken.expires_at > now,
        ]
        if user_id is not None:
            conditions.append(RefreshToken.user_id == user_id)
        stmt = (
            update(RefreshToken)
            .where(*conditions)
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def is_known(self, token_hash: str) -> bool:
        query = select(RefreshToken.id).where(RefreshToken.token_hash == token_hash)
        result = await self.session.execute(query)
        return result.first() is not None

    async def revoke_all(self, user_id: uuid.UUID) -> int:
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def purge(self, now: datetime) -> int:
        stmt = delete(RefreshToken).where(
            or_(RefreshToken.revoked.is_(True), RefreshToken.expires_at <= now)
        ).execution_options(synchronize_session=False)
        result = await self.session.execute(stmt)
        return result.rowcount
