"""
Kernel Data Models

SQLAlchemy models owned by the identity core.
"""

from edupulse.kernel.models.base import Base, TimestampMixin, generate_uuid, utcnow
from edupulse.kernel.models.user import (
    User,
    UserRole,
    UserStatus,
    Gender,
    RefreshToken,
    InvalidStatusTransition,
    normalize_email,
    resolve_admin_transition,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "generate_uuid",
    "utcnow",
    # User
    "User",
    "UserRole",
    "UserStatus",
    "Gender",
    "RefreshToken",
    "InvalidStatusTransition",
    "normalize_email",
    "resolve_admin_transition",
]
