from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status

from lotcontrol.core.dependencies import (
    get_current_principal, get_user_service, permission_required
)
from lotcontrol.models.user import UserCreate, UserRead, UserRolesUpdate, UserUpdate
from lotcontrol.services.authorization import Principal
from lotcontrol.services.user import UserService

router = APIRouter()


@router.get(
    "/",
    response_model=List[UserRead],
    summary="List Users"
)
def list_users(
    q: Optional[str] = None,
    principal: Principal = Depends(permission_required("users")),
    service: UserService = Depends(get_user_service)
):
    return service.list_users(query=q)


@router.get(
    "/{user_id}",
    response_model=UserRead,
    summary="Get User"
)
def get_user(
    user_id: UUID,
    principal: Principal = Depends(permission_required("users")),
    service: UserService = Depends(get_user_service)
):
    return service.get_user(user_id)


@router.post(
    "/",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create User"
)
def create_user(
    payload: UserCreate,
    principal: Principal = Depends(get_current_principal),
    service: UserService = Depends(get_user_service)
):
    return service.create_user(principal, payload)


@router.patch(
    "/{user_id}",
    response_model=UserRead,
    summary="Update User"
)
def update_user(
    user_id: UUID,
    payload: UserUpdate,
    principal: Principal = Depends(get_current_principal),
    service: UserService = Depends(get_user_service)
):
    return service.update_user(principal, user_id, payload)


@router.put(
    "/{user_id}/roles",
    response_model=UserRead,
    summary="Replace User Roles",
    description="Users holding a protected role cannot be demoted by someone else."
)
def update_roles(
    user_id: UUID,
    payload: UserRolesUpdate,
    principal: Principal = Depends(get_current_principal),
    service: UserService = Depends(get_user_service)
):
    return service.update_roles(principal, user_id, payload)


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_200_OK,
    summary="Delete User"
)
def delete_user(
    user_id: UUID,
    principal: Principal = Depends(get_current_principal),
    service: UserService = Depends(get_user_service)
):
    return service.delete_user(principal, user_id)


@router.post(
    "/{user_id}/disable-2fa",
    response_model=UserRead,
    summary="Remove Second Factor",
    description="Administrators only. Not allowed on users holding a protected role."
)
def disable_two_factor(
    user_id: UUID,
    principal: Principal = Depends(get_current_principal),
    service: UserService = Depends(get_user_service)
):
    return service.disable_two_factor(principal, user_id)
