"""
User model for identity management.

The User row owns the account lifecycle:

    register ──> PENDING_VERIFICATION ──(verify email)──> ACTIVE
                        │                                   │
                        └──────(admin)──> SUSPENDED <──(admin)┘
                                          INACTIVE

Only email verification produces ACTIVE from PENDING_VERIFICATION.
Administrative reinstatement of an account whose email was never verified
lands back in PENDING_VERIFICATION.
"""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Date, DateTime, String, func, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from edupulse.kernel.models.base import Base, TimestampMixin, generate_uuid


class UserRole(str, Enum):
    """User roles in the system."""
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"
    PARENT = "PARENT"


class UserStatus(str, Enum):
    """Account lifecycle states."""
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    INACTIVE = "INACTIVE"


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"
    PREFER_NOT_TO_SAY = "PREFER_NOT_TO_SAY"


# Statuses an administrator may request directly.
ADMIN_STATUS_TARGETS = frozenset({UserStatus.ACTIVE, UserStatus.SUSPENDED, UserStatus.INACTIVE})

# Statuses that end every outstanding session.
SESSION_ENDING_STATUSES = frozenset({UserStatus.SUSPENDED, UserStatus.INACTIVE})


class InvalidStatusTransition(ValueError):
    """Requested status change is not allowed from the current state."""


def normalize_email(email: str) -> str:
    """Canonical form used for storage and lookup (case-insensitive uniqueness)."""
    return email.strip().lower()


def resolve_admin_transition(user: "User", target: UserStatus) -> UserStatus:
    """
    Work out the status an administrative change should actually produce.

    Args:
        user: The account being changed
        target: Status requested by the administrator

    Returns:
        The status to store

    Raises:
        InvalidStatusTransition: If the change is not permitted
    """
    if target not in ADMIN_STATUS_TARGETS:
        raise InvalidStatusTransition(f"Status {target.value} cannot be set administratively")
    if target == user.status:
        raise InvalidStatusTransition(f"Account is already {target.value}")
    if target == UserStatus.ACTIVE and not user.email_verified:
        if user.status == UserStatus.PENDING_VERIFICATION:
            raise InvalidStatusTransition("Account email has not been verified")
        return UserStatus.PENDING_VERIFICATION
    return target


class User(Base, TimestampMixin):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        SAEnum(UserRole, native_enum=False, length=32),
        default=UserRole.STUDENT,
        nullable=False,
    )
    status: Mapped[UserStatus] = mapped_column(
        SAEnum(UserStatus, native_enum=False, length=32),
        default=UserStatus.PENDING_VERIFICATION,
        nullable=False,
        index=True,
    )

    # Contact / profile
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gender: Mapped[Optional[Gender]] = mapped_column(
        SAEnum(Gender, native_enum=False, length=32),
        nullable=True,
    )
    role_profile: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )

    # Email verification (hash + expiry are always set and cleared together)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verification_token_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )
    verification_token_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Password reset (same pairing rule)
    reset_token_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )
    reset_token_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    last_login_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def can_authenticate(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def set_verification_token(self, token_hash: str, expires_at: datetime) -> None:
        self.verification_token_hash = token_hash
        self.verification_token_expires_at = expires_at

    def clear_verification_token(self) -> None:
        self.verification_token_hash = None
        self.verification_token_expires_at = None

    def set_reset_token(self, token_hash: str, expires_at: datetime) -> None:
        self.reset_token_hash = token_hash
        self.reset_token_expires_at = expires_at

    def clear_reset_token(self) -> None:
        self.reset_token_hash = None
        self.reset_token_expires_at = None

    def __repr__(self) -> str:
        return f"<User {self.id} {self.role.value}>"


class RefreshToken(Base):
    """Issued refresh token, stored by hash, for rotation and revocation."""

    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        nullable=False,
        index=True,
    )
    token_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    revoked: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
