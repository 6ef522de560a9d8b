from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status

from lotcontrol.core.dependencies import (
    get_current_principal, get_parameter_template_service, permission_required
)
from lotcontrol.db.schema import ParameterKind
from lotcontrol.models.parameter_template import (
    ParameterTemplateCreate, ParameterTemplateUpdate, ParameterTemplateRead
)
from lotcontrol.services.authorization import Principal
from lotcontrol.services.parameter_template import ParameterTemplateService

router = APIRouter()


@router.get(
    "/",
    response_model=List[ParameterTemplateRead],
    status_code=status.HTTP_200_OK,
    summary="List Parameter Templates",
    description="Search the parameter catalog by name or description."
)
def list_templates(
    q: Optional[str] = None,
    kind: Optional[ParameterKind] = None,
    active: Optional[bool] = None,
    principal: Principal = Depends(permission_required("parameters")),
    service: ParameterTemplateService = Depends(get_parameter_template_service)
):
    return service.list_templates(query=q, kind=kind, active=active)


@router.get(
    "/{template_id}",
    response_model=ParameterTemplateRead,
    status_code=status.HTTP_200_OK,
    summary="Get Parameter Template"
)
def get_template(
    template_id: UUID,
    principal: Principal = Depends(permission_required("parameters")),
    service: ParameterTemplateService = Depends(get_parameter_template_service)
):
    return service.get_template(template_id)


@router.post(
    "/",
    response_model=ParameterTemplateRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create Parameter Template",
    description="Range parameters need min_range < max_range."
)
def create_template(
    data: ParameterTemplateCreate,
    principal: Principal = Depends(get_current_principal),
    service: ParameterTemplateService = Depends(get_parameter_template_service)
):
    return service.create_template(principal, data)


@router.patch(
    "/{template_id}",
    response_model=ParameterTemplateRead,
    status_code=status.HTTP_200_OK,
    summary="Update Parameter Template",
    description="Existing product bindings keep the values they copied at bind time."
)
def update_template(
    template_id: UUID,
    data: ParameterTemplateUpdate,
    principal: Principal = Depends(get_current_principal),
    service: ParameterTemplateService = Depends(get_parameter_template_service)
):
    return service.update_template(principal, template_id, data)


@router.post(
    "/{template_id}/deactivate",
    response_model=ParameterTemplateRead,
    status_code=status.HTTP_200_OK,
    summary="Deactivate Parameter Template",
    description="Templates are never deleted."
)
def deactivate_template(
    template_id: UUID,
    principal: Principal = Depends(get_current_principal),
    service: ParameterTemplateService = Depends(get_parameter_template_service)
):
    return service.deactivate_template(principal, template_id)
