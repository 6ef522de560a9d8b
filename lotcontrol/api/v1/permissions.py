from typing import List
from fastapi import APIRouter, Depends

from lotcontrol.core.dependencies import get_role_service, permission_required
from lotcontrol.models.role import PermissionRead
from lotcontrol.services.authorization import Principal
from lotcontrol.services.role import RoleService

router = APIRouter()


@router.get(
    "/",
    response_model=List[PermissionRead],
    summary="List Permissions",
    description="The system permission catalog, named 'resource:action'."
)
def list_permissions(
    principal: Principal = Depends(permission_required("roles")),
    service: RoleService = Depends(get_role_service)
):
    return service.list_permissions()
