"""
Authentication schemas.
"""

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from edupulse.kernel.models.user import Gender, UserRole
from edupulse.schemas.user import UserResponse

# Registration fields that are folded into User.role_profile
ROLE_PROFILE_FIELDS = (
    "roll_number",
    "grade_level",
    "section",
    "stream",
    "employee_id",
    "department",
    "subjects",
    "qualification",
    "admin_code",
    "occupation",
    "relationship",
    "child_student_id",
)


def validate_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError("Password must be at least 8 characters")
    if not any(c.isupper() for c in v):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in v):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in v):
        raise ValueError("Password must contain at least one digit")
    return v


class RegisterRequest(BaseModel):
    """User registration request."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    role: UserRole
    phone: Optional[str] = Field(None, max_length=32)
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None

    # Student
    roll_number: Optional[str] = None
    grade_level: Optional[str] = None
    section: Optional[str] = None
    stream: Optional[str] = None

    # Teacher
    employee_id: Optional[str] = None
    department: Optional[str] = None
    subjects: Optional[list[str]] = None
    qualification: Optional[str] = None

    # Admin
    admin_code: Optional[str] = None

    # Parent
    child_student_id: Optional[str] = None
    occupation: Optional[str] = None
    relationship: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)

    def role_profile(self) -> dict[str, Any]:
        """Role-specific fields that were supplied."""
        return {
            name: getattr(self, name)
            for name in ROLE_PROFILE_FIELDS
            if getattr(self, name) is not None
        }


class LoginRequest(BaseModel):
    """User login request."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    """Token refresh request (when no refresh cookie is sent)."""

    refresh_token: Optional[str] = None


class LogoutRequest(BaseModel):
    """Logout request."""

    refresh_token: Optional[str] = None
    all_devices: bool = False


class ForgotPasswordRequest(BaseModel):
    """Password reset initiation."""

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Password reset completion."""

    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)


class VerifyEmailRequest(BaseModel):
    """Email verification."""

    token: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    """Password change request."""

    current_password: str
    new_password: str = Field(..., min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)


class AccessTokenResponse(BaseModel):
    """Access token issued by refresh. The refresh token travels in a cookie."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(AccessTokenResponse):
    """Register / login response."""

    user: UserResponse
