from typing import List
from uuid import UUID
from fastapi import APIRouter, Depends, status

from lotcontrol.core.dependencies import (
    get_current_principal, get_role_service, permission_required
)
from lotcontrol.models.role import RoleCreate, RoleUpdate, RoleRead
from lotcontrol.services.authorization import Principal
from lotcontrol.services.role import RoleService

router = APIRouter()


@router.get(
    "/",
    response_model=List[RoleRead],
    summary="List Roles"
)
def list_roles(
    principal: Principal = Depends(permission_required("roles")),
    service: RoleService = Depends(get_role_service)
):
    return service.list_roles()


@router.get(
    "/{role_id}",
    response_model=RoleRead,
    summary="Get Role"
)
def get_role(
    role_id: UUID,
    principal: Principal = Depends(permission_required("roles")),
    service: RoleService = Depends(get_role_service)
):
    return service.get_role(role_id)


@router.post(
    "/",
    response_model=RoleRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create Role"
)
def create_role(
    payload: RoleCreate,
    principal: Principal = Depends(get_current_principal),
    service: RoleService = Depends(get_role_service)
):
    return service.create_role(principal, payload)


@router.patch(
    "/{role_id}",
    response_model=RoleRead,
    summary="Update Role",
    description="Protected roles (level 80 and above) cannot be edited."
)
def update_role(
    role_id: UUID,
    payload: RoleUpdate,
    principal: Principal = Depends(get_current_principal),
    service: RoleService = Depends(get_role_service)
):
    return service.update_role(principal, role_id, payload)


@router.delete(
    "/{role_id}",
    status_code=status.HTTP_200_OK,
    summary="Delete Role",
    description="Protected roles and roles still held by users cannot be deleted."
)
def delete_role(
    role_id: UUID,
    principal: Principal = Depends(get_current_principal),
    service: RoleService = Depends(get_role_service)
):
    return service.delete_role(principal, role_id)
