"""
Kernel Layer

Framework-independent identity core:
- Models (users, refresh-token revocation records)
- Identity (password hashing, session tokens, single-use email tokens, service)
- Permissions (role and ownership guards)
- Delivery (verification / reset email gateways)

Nothing in this package imports FastAPI; the API layer adapts it.
"""

from edupulse.kernel.models import (
    User,
    UserRole,
    UserStatus,
    Gender,
    RefreshToken,
)

__all__ = [
    "User",
    "UserRole",
    "UserStatus",
    "Gender",
    "RefreshToken",
]
