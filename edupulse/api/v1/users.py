"""
User administration endpoints.
"""

import uuid

from fastapi import APIRouter, Response, status

from edupulse.api.deps import AdminIdentity, Identity, OwnerOrAdminIdentity
from edupulse.schemas.user import UserResponse, UserStatusUpdate

router = APIRouter()


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: uuid.UUID,
    identity: OwnerOrAdminIdentity,
    identity_service: Identity,
):
    """
    Get a user's profile. Owners can read their own; admins can read any.
    """
    user = await identity_service.get_current_user(user_id)
    return UserResponse.model_validate(user)


@router.patch("/{user_id}/status", response_model=UserResponse)
async def change_user_status(
    user_id: uuid.UUID,
    data: UserStatusUpdate,
    identity: AdminIdentity,
    identity_service: Identity,
):
    """
    Suspend, deactivate or reinstate an account (admin only).

    Suspending or deactivating ends every session of the account.
    """
    user = await identity_service.change_status(user_id, data.status)
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: uuid.UUID,
    identity: AdminIdentity,
    identity_service: Identity,
):
    """
    Delete an account (admin only).
    """
    await identity_service.delete_user(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
