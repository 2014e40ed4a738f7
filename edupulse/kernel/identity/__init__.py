"""
Identity Core - Authentication and user management.
"""

from edupulse.kernel.identity.password import PasswordHasher, get_password_hasher
from edupulse.kernel.identity.jwt import (
    IdentityClaims,
    JWTManager,
    SessionTokenPayload,
    TokenKind,
    TokenPair,
    get_jwt_manager,
)
from edupulse.kernel.identity.secure_token import generate_secure_token, hash_secure_token
from edupulse.kernel.identity.repository import (
    RefreshTokenStore,
    SqlAlchemyRefreshTokenStore,
    SqlAlchemyUserRepository,
    UserRepository,
)
from edupulse.kernel.identity.identity_service import AuthResult, DeliveryOutbox, IdentityService

__all__ = [
    "PasswordHasher",
    "get_password_hasher",
    "IdentityClaims",
    "JWTManager",
    "SessionTokenPayload",
    "TokenKind",
    "TokenPair",
    "get_jwt_manager",
    "generate_secure_token",
    "hash_secure_token",
    "RefreshTokenStore",
    "SqlAlchemyRefreshTokenStore",
    "SqlAlchemyUserRepository",
    "UserRepository",
    "AuthResult",
    "DeliveryOutbox",
    "IdentityService",
]
