"""
Authorization guards.

Pure predicates over the identity the transport layer has already
verified. They never look at tokens themselves.
"""

import uuid
from typing import Iterable, Optional, Union

from edupulse.kernel.errors import AuthenticationError, AuthorizationError
from edupulse.kernel.identity.jwt import IdentityClaims
from edupulse.kernel.models.user import UserRole


def _role_of(identity: IdentityClaims) -> Optional[UserRole]:
    try:
        return UserRole(identity.role)
    except ValueError:
        return None


def ensure_role(
    identity: Optional[IdentityClaims],
    allowed_roles: Iterable[UserRole],
) -> IdentityClaims:
    """
    Admit the identity only if its role is in allowed_roles.

    Raises:
        AuthenticationError: No identity on the request
        AuthorizationError: Role not allowed
    """
    if identity is None:
        raise AuthenticationError()
    allowed = frozenset(allowed_roles)
    if _role_of(identity) not in allowed:
        raise AuthorizationError()
    return identity


def ensure_owner(
    identity: Optional[IdentityClaims],
    owner_id: Union[uuid.UUID, str],
) -> IdentityClaims:
    """
    Admit the identity if it owns the resource; ADMIN always passes.

    Raises:
        AuthenticationError: No identity on the request
        AuthorizationError: Not the owner and not an admin
    """
    if identity is None:
        raise AuthenticationError()
    if _role_of(identity) == UserRole.ADMIN:
        return identity
    try:
        is_owner = uuid.UUID(str(owner_id)) == identity.user_id
    except ValueError:
        is_owner = False
    if not is_owner:
        raise AuthorizationError("You can only access your own resources")
    return identity
