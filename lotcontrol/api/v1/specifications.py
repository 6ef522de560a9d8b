from uuid import UUID
from fastapi import APIRouter, Depends, status

from lotcontrol.core.dependencies import (
    get_current_principal, get_specification_service, permission_required
)
from lotcontrol.models.control import EvaluationRequest, EvaluationRead
from lotcontrol.models.specification import SpecificationUpdate, SpecificationRead
from lotcontrol.services.authorization import Principal
from lotcontrol.services.specification import SpecificationService

router = APIRouter()


@router.get(
    "/{specification_id}",
    response_model=SpecificationRead,
    summary="Get Specification"
)
def get_specification(
    specification_id: UUID,
    principal: Principal = Depends(permission_required("specifications")),
    service: SpecificationService = Depends(get_specification_service)
):
    return service.get_specification(specification_id)


@router.patch(
    "/{specification_id}",
    response_model=SpecificationRead,
    summary="Update Specification"
)
def update_specification(
    specification_id: UUID,
    payload: SpecificationUpdate,
    principal: Principal = Depends(get_current_principal),
    service: SpecificationService = Depends(get_specification_service)
):
    return service.update_specification(principal, specification_id, payload)


@router.post(
    "/{specification_id}/deactivate",
    response_model=SpecificationRead,
    summary="Deactivate Specification"
)
def deactivate_specification(
    specification_id: UUID,
    principal: Principal = Depends(get_current_principal),
    service: SpecificationService = Depends(get_specification_service)
):
    return service.deactivate_specification(principal, specification_id)


@router.delete(
    "/{specification_id}",
    status_code=status.HTTP_200_OK,
    summary="Delete Specification",
    description="Fails once controls reference the specification; deactivate it instead."
)
def delete_specification(
    specification_id: UUID,
    principal: Principal = Depends(get_current_principal),
    service: SpecificationService = Depends(get_specification_service)
):
    return service.delete_specification(principal, specification_id)


@router.post(
    "/{specification_id}/evaluate",
    response_model=EvaluationRead,
    summary="Evaluate a Value",
    description="Dry run used by capture forms. Nothing is stored."
)
def evaluate_value(
    specification_id: UUID,
    payload: EvaluationRequest,
    principal: Principal = Depends(permission_required("controls")),
    service: SpecificationService = Depends(get_specification_service)
):
    value = None if payload.value is None else str(payload.value)
    return service.evaluate_value(specification_id, value)
