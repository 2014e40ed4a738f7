"""
FastAPI dependencies for authentication, authorization, and database sessions.
"""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from edupulse.api.middleware.rate_limit import client_ip
from edupulse.config import get_settings
from edupulse.database import async_session_maker
from edupulse.kernel.delivery import DeliveryGateway, build_delivery_gateway
from edupulse.kernel.errors import AuthenticationError, IdentityError, InvalidSessionTokenError
from edupulse.kernel.identity.identity_service import DeliveryOutbox, IdentityService
from edupulse.kernel.identity.jwt import JWTManager, SessionTokenPayload, get_jwt_manager
from edupulse.kernel.identity.password import PasswordHasher, get_password_hasher
from edupulse.kernel.identity.repository import SqlAlchemyRefreshTokenStore, SqlAlchemyUserRepository
from edupulse.kernel.models.user import UserRole
from edupulse.kernel.permissions import ensure_owner, ensure_role
from edupulse.logging_config import user_id_var


# Security scheme
security = HTTPBearer(auto_error=False)

# session.info key of the per-request DeliveryOutbox
OUTBOX_KEY = "delivery_outbox"


async def get_db() -> AsyncSession:
    """
    Dependency that yields database sessions.

    Commits on success and on identity errors (the service leaves the
    session consistent before raising, e.g. after revoking a reused refresh
    token); rolls back on anything else. Emails queued on the session's
    outbox are sent only after a commit and dropped after a rollback.
    """
    async with async_session_maker() as session:
        outbox = DeliveryOutbox()
        session.info[OUTBOX_KEY] = outbox
        try:
            yield session
            await session.commit()
        except IdentityError:
            await session.commit()
            outbox.release()
            raise
        except Exception:
            await session.rollback()
            outbox.discard()
            raise
        else:
            outbox.release()
        finally:
            await session.close()


DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_token_manager() -> JWTManager:
    return get_jwt_manager()


def get_hasher() -> PasswordHasher:
    return get_password_hasher()


@lru_cache
def get_delivery_gateway() -> DeliveryGateway:
    """Process-wide delivery gateway (shares one HTTP connection pool)."""
    return build_delivery_gateway(get_settings())


def get_identity_service(
    db: DbSession,
    jwt_manager: Annotated[JWTManager, Depends(get_token_manager)],
    password_hasher: Annotated[PasswordHasher, Depends(get_hasher)],
    delivery: Annotated[DeliveryGateway, Depends(get_delivery_gateway)],
) -> IdentityService:
    """Identity service bound to the request's database session."""
    return IdentityService(
        users=SqlAlchemyUserRepository(db),
        jwt_manager=jwt_manager,
        password_hasher=password_hasher,
        delivery=delivery,
        refresh_tokens=SqlAlchemyRefreshTokenStore(db),
        settings=get_settings(),
        outbox=db.info.get(OUTBOX_KEY),
    )


Identity = Annotated[IdentityService, Depends(get_identity_service)]


async def get_identity_optional(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    jwt_manager: Annotated[JWTManager, Depends(get_token_manager)],
    identity_service: Identity,
) -> Optional[SessionTokenPayload]:
    """
    Resolve the bearer access token, if any.

    Returns None when no token is sent. A token that fails verification
    raises InvalidSessionTokenError; a valid token whose account is gone or
    no longer ACTIVE raises AuthenticationError.
    """
    if not credentials:
        return None
    payload = jwt_manager.verify_access_token(credentials.credentials)
    try:
        user_id = payload.user_id
    except ValueError:
        raise InvalidSessionTokenError()
    await identity_service.authenticate(user_id)
    request.state.user_id = str(user_id)
    user_id_var.set(str(user_id))
    return payload


OptionalIdentity = Annotated[Optional[SessionTokenPayload], Depends(get_identity_optional)]


async def get_current_identity(identity: OptionalIdentity) -> SessionTokenPayload:
    """Verified access-token claims or 401."""
    if identity is None:
        raise AuthenticationError("Not authenticated")
    return identity


CurrentIdentity = Annotated[SessionTokenPayload, Depends(get_current_identity)]


def require_role(*roles: UserRole):
    """
    Dependency factory admitting only the given roles.

    Usage:
        @router.delete("/{user_id}")
        async def delete_user(
            identity: Annotated[SessionTokenPayload, Depends(require_role(UserRole.ADMIN))],
        ):
            ...
    """
    allowed = frozenset(roles)

    async def dependency(identity: OptionalIdentity) -> SessionTokenPayload:
        return ensure_role(identity, allowed)

    return dependency


def require_ownership(param: str = "user_id"):
    """Dependency factory admitting the owner named by a path parameter, or an admin."""

    async def dependency(request: Request, identity: OptionalIdentity) -> SessionTokenPayload:
        return ensure_owner(identity, request.path_params.get(param, ""))

    return dependency


AdminIdentity = Annotated[SessionTokenPayload, Depends(require_role(UserRole.ADMIN))]
OwnerOrAdminIdentity = Annotated[SessionTokenPayload, Depends(require_ownership("user_id"))]


def get_client_ip(request: Request) -> str:
    """Client IP, honouring X-Forwarded-For only from trusted proxies."""
    return client_ip(request, get_settings().trusted_proxies)
