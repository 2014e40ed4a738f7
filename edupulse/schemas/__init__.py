"""
Pydantic schemas for API request/response validation.
"""

from edupulse.schemas.user import (
    UserResponse,
    UserProfileUpdate,
    UserStatusUpdate,
)
from edupulse.schemas.auth import (
    RegisterRequest,
    LoginRequest,
    RefreshRequest,
    LogoutRequest,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
    ChangePasswordRequest,
    AccessTokenResponse,
    AuthResponse,
)
from edupulse.schemas.common import (
    ErrorResponse,
    SuccessResponse,
    HealthResponse,
)

__all__ = [
    # User
    "UserResponse",
    "UserProfileUpdate",
    "UserStatusUpdate",
    # Auth
    "RegisterRequest",
    "LoginRequest",
    "RefreshRequest",
    "LogoutRequest",
    "ForgotPasswordRequest",
    "ResetPasswordRequest",
    "VerifyEmailRequest",
    "ChangePasswordRequest",
    "AccessTokenResponse",
    "AuthResponse",
    # Common
    "ErrorResponse",
    "SuccessResponse",
    "HealthResponse",
]
