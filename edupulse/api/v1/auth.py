"""
Authentication endpoints.

The access token is returned in the body; the refresh token only travels in
an HTTP-only cookie scoped to this router's path.
"""

from typing import Optional

from fastapi import APIRouter, Request, Response, status

from edupulse.api.deps import CurrentIdentity, Identity, get_client_ip
from edupulse.config import get_settings
from edupulse.kernel.errors import AuthenticationError
from edupulse.kernel.identity.jwt import TokenPair
from edupulse.schemas.auth import (
    AccessTokenResponse,
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
)
from edupulse.schemas.common import SuccessResponse
from edupulse.schemas.user import UserProfileUpdate, UserResponse

router = APIRouter()

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def _set_refresh_cookie(response: Response, tokens: TokenPair) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=tokens.refresh_token,
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
        path=settings.refresh_cookie_path,
        httponly=True,
        secure=not settings.is_development,
        samesite="lax",
    )


def _clear_refresh_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        path=settings.refresh_cookie_path,
        httponly=True,
        secure=not settings.is_development,
        samesite="lax",
    )


def _refresh_cookie(request: Request) -> Optional[str]:
    return request.cookies.get(get_settings().refresh_cookie_name)


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: Request,
    response: Response,
    data: RegisterRequest,
    identity_service: Identity,
):
    """
    Register a new user account.

    The account starts in PENDING_VERIFICATION and a verification link is
    emailed. Returns an access token; the refresh token is set as a cookie.
    """
    result = await identity_service.register(
        email=data.email,
        password=data.password,
        first_name=data.first_name,
        last_name=data.last_name,
        role=data.role,
        phone=data.phone,
        date_of_birth=data.date_of_birth,
        gender=data.gender,
        role_profile=data.role_profile(),
        ip_address=get_client_ip(request),
    )
    _set_refresh_cookie(response, result.tokens)
    return AuthResponse(
        access_token=result.tokens.access_token,
        token_type=result.tokens.token_type,
        expires_in=result.tokens.expires_in,
        user=UserResponse.model_validate(result.user),
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    request: Request,
    response: Response,
    data: LoginRequest,
    identity_service: Identity,
):
    """
    Authenticate user and return tokens.
    """
    result = await identity_service.login(
        email=data.email,
        password=data.password,
        ip_address=get_client_ip(request),
    )
    _set_refresh_cookie(response, result.tokens)
    return AuthResponse(
        access_token=result.tokens.access_token,
        token_type=result.tokens.token_type,
        expires_in=result.tokens.expires_in,
        user=UserResponse.model_validate(result.user),
    )


@router.post("/refresh", response_model=AccessTokenResponse)
async def refresh_token(
    request: Request,
    response: Response,
    identity_service: Identity,
    data: Optional[RefreshRequest] = None,
):
    """
    Refresh access token using the refresh cookie (or body).

    Implements refresh token rotation - the presented refresh token is
    invalidated and a new one is set.
    """
    token = _refresh_cookie(request) or (data.refresh_token if data else None)
    if not token:
        raise AuthenticationError("Refresh token required")

    tokens = await identity_service.refresh(token)
    _set_refresh_cookie(response, tokens)
    return AccessTokenResponse(
        access_token=tokens.access_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
    )


@router.post("/logout", response_model=SuccessResponse)
async def logout(
    request: Request,
    response: Response,
    identity: CurrentIdentity,
    identity_service: Identity,
    data: Optional[LogoutRequest] = None,
):
    """
    Log out: revoke the current refresh token (or all of them) and clear the cookie.
    """
    token = _refresh_cookie(request) or (data.refresh_token if data else None)
    await identity_service.logout(
        identity.user_id,
        refresh_token=token,
        all_devices=bool(data and data.all_devices),
    )
    _clear_refresh_cookie(response)
    return SuccessResponse(message="Logged out successfully")


@router.post("/forgot-password", response_model=SuccessResponse)
async def forgot_password(
    data: ForgotPasswordRequest,
    identity_service: Identity,
):
    """
    Request a password reset link.

    Always returns the same response, whether or not the email is registered.
    """
    await identity_service.forgot_password(data.email)
    return SuccessResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=SuccessResponse)
async def reset_password(
    data: ResetPasswordRequest,
    identity_service: Identity,
):
    """
    Set a new password with the emailed reset token. Ends all sessions.
    """
    await identity_service.reset_password(data.token, data.password)
    return SuccessResponse(message="Password has been reset. Please log in with your new password.")


@router.post("/verify-email", response_model=SuccessResponse)
async def verify_email(
    data: VerifyEmailRequest,
    identity_service: Identity,
):
    """
    Activate the account with the emailed verification token.
    """
    await identity_service.verify_email(data.token)
    return SuccessResponse(message="Email verified. Your account is now active.")


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    identity: CurrentIdentity,
    identity_service: Identity,
):
    """
    Get current user's profile.
    """
    user = await identity_service.get_current_user(identity.user_id)
    return UserResponse.model_validate(user)


@router.patch("/me", response_model=UserResponse)
async def update_profile(
    data: UserProfileUpdate,
    identity: CurrentIdentity,
    identity_service: Identity,
):
    """
    Update current user's profile.
    """
    user = await identity_service.update_profile(
        identity.user_id,
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
    )
    return UserResponse.model_validate(user)


@router.post("/change-password", response_model=SuccessResponse)
async def change_password(
    response: Response,
    data: ChangePasswordRequest,
    identity: CurrentIdentity,
    identity_service: Identity,
):
    """
    Change current user's password. Ends all sessions, including this one's refresh cookie.
    """
    await identity_service.change_password(
        identity.user_id,
        current_password=data.current_password,
        new_password=data.new_password,
    )
    _clear_refresh_cookie(response)
    return SuccessResponse(message="Password changed successfully")
