"""
JWT session token management.

Access and refresh tokens are signed with different secrets, so a leaked
refresh key cannot mint access tokens (and vice versa). Verification is
purely cryptographic; revocation lives outside this module.
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import Optional

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from pydantic import BaseModel

from edupulse.config import get_settings
from edupulse.kernel.errors import TokenExpiredError, TokenKindError, TokenSignatureError


class TokenKind(str, Enum):
    """Value of the `type` claim."""
    ACCESS = "access"
    REFRESH = "refresh"


class IdentityClaims(BaseModel):
    """Identity carried by every session token."""

    sub: str  # User ID
    email: str
    role: str

    @property
    def user_id(self) -> uuid.UUID:
        return uuid.UUID(self.sub)


class SessionTokenPayload(IdentityClaims):
    """Decoded, verified session token."""

    type: TokenKind
    iat: datetime
    exp: datetime
    jti: str


class TokenPair(BaseModel):
    """Access and refresh token pair."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # Seconds until access token expires
    refresh_expires_at: datetime


class JWTManager:
    """
    JWT token creation and verification.

    Handles access tokens (short-lived) and refresh tokens (long-lived).
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_token_expire_minutes: int = 15,
        refresh_token_expire_days: int = 7,
    ):
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh tokens require distinct secrets")
        self._secrets = {
            TokenKind.ACCESS: access_secret,
            TokenKind.REFRESH: refresh_secret,
        }
        self.algorithm = algorithm
        self.access_token_expire_minutes = access_token_expire_minutes
        self.refresh_token_expire_days = refresh_token_expire_days

    def _lifetime(self, kind: TokenKind) -> timedelta:
        if kind == TokenKind.ACCESS:
            return timedelta(minutes=self.access_token_expire_minutes)
        return timedelta(days=self.refresh_token_expire_days)

    def _issue(
        self,
        claims: IdentityClaims,
        kind: TokenKind,
        expires_delta: Optional[timedelta] = None,
    ) -> tuple[str, datetime]:
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta if expires_delta is not None else self._lifetime(kind))
        payload = {
            "sub": claims.sub,
            "email": claims.email,
            "role": claims.role,
            "type": kind.value,
            "iat": now,
            "exp": expire,
            "jti": str(uuid.uuid4()),
        }
        token = jwt.encode(payload, self._secrets[kind], algorithm=self.algorithm)
        return token, expire

    def issue_access_token(
        self,
        claims: IdentityClaims,
        expires_delta: Optional[timedelta] = None,
    ) -> tuple[str, datetime]:
        """
        Create a new access token.

        Args:
            claims: Identity to embed
            expires_delta: Optional custom lifetime

        Returns:
            Tuple of (token, expiration_datetime)
        """
        return self._issue(claims, TokenKind.ACCESS, expires_delta)

    def issue_refresh_token(
        self,
        claims: IdentityClaims,
        expires_delta: Optional[timedelta] = None,
    ) -> tuple[str, datetime]:
        """Create a new refresh token. Returns (token, expiration_datetime)."""
        return self._issue(claims, TokenKind.REFRESH, expires_delta)

    def issue_token_pair(self, claims: IdentityClaims) -> TokenPair:
        """Create both access and refresh tokens for the same identity."""
        access_token, access_exp = self.issue_access_token(claims)
        refresh_token, refresh_exp = self.issue_refresh_token(claims)
        expires_in = int((access_exp - datetime.now(timezone.utc)).total_seconds())
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=max(expires_in, 0),
            refresh_expires_at=refresh_exp,
        )

    def verify(self, token: str, expected_kind: TokenKind) -> SessionTokenPayload:
        """
        Verify a token and decode its claims.

        The kind claim is read before the signature is checked so that a
        token of the wrong kind fails as such rather than as a bad signature.
        The claims are only trusted after the signature check below.

        Raises:
            TokenKindError: `type` claim is not `expected_kind`
            TokenExpiredError: `exp` has passed
            TokenSignatureError: bad signature or malformed token
        """
        try:
            unverified = jwt.get_unverified_claims(token)
        except JWTError:
            raise TokenSignatureError()
        if unverified.get("type") != expected_kind.value:
            raise TokenKindError()

        try:
            payload = jwt.decode(
                token,
                self._secrets[expected_kind],
                algorithms=[self.algorithm],
            )
        except ExpiredSignatureError:
            raise TokenExpiredError()
        except JWTError:
            raise TokenSignatureError()

        try:
            return SessionTokenPayload(
                sub=payload["sub"],
                email=payload["email"],
                role=payload["role"],
                type=TokenKind(payload["type"]),
                iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                jti=payload["jti"],
            )
        except (KeyError, ValueError, TypeError):
            raise TokenSignatureError()

    def verify_access_token(self, token: str) -> SessionTokenPayload:
        return self.verify(token, TokenKind.ACCESS)

    def verify_refresh_token(self, token: str) -> SessionTokenPayload:
        return self.verify(token, TokenKind.REFRESH)

    @staticmethod
    def hash_token(token: str) -> str:
        """
        Create a hash of a token for storage.

        Used for storing refresh tokens in the revocation table.
        """
        return hashlib.sha256(token.encode()).hexdigest()


@lru_cache
def get_jwt_manager() -> JWTManager:
    """Get the JWT manager configured from settings."""
    settings = get_settings()
    return JWTManager(
        access_secret=settings.jwt_access_secret,
        refresh_secret=settings.jwt_refresh_secret,
        algorithm=settings.algorithm,
        access_token_expire_minutes=settings.access_token_expire_minutes,
        refresh_token_expire_days=settings.refresh_token_expire_days,
    )
