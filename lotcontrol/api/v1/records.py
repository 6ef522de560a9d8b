from datetime import datetime
from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, status

from lotcontrol.core.dependencies import (
    get_current_principal, get_record_service, permission_required
)
from lotcontrol.db.schema import RecordStatus
from lotcontrol.models.control import ControlRead, ControlSubmission
from lotcontrol.models.record import (
    RecordCreate, RecordUpdate, RecordReject, RecordRead, RecordPage
)
from lotcontrol.services.authorization import Principal
from lotcontrol.services.record import RecordService

router = APIRouter()


@router.get(
    "/",
    response_model=RecordPage,
    status_code=status.HTTP_200_OK,
    summary="List Records",
    description="Newest first. `search` matches internal lot, supplier lot and observations."
)
def list_records(
    search: Optional[str] = None,
    product_id: Optional[UUID] = None,
    status_filter: Optional[RecordStatus] = Query(default=None, alias="status"),
    user_id: Optional[UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    principal: Principal = Depends(permission_required("records")),
    service: RecordService = Depends(get_record_service)
):
    return service.list_records(
        search=search,
        product_id=product_id,
        status=status_filter,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )


@router.post(
    "/",
    response_model=RecordRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register Lot",
    description="Creates a pending record. Internal lots are globally unique."
)
def create_record(
    payload: RecordCreate,
    principal: Principal = Depends(get_current_principal),
    service: RecordService = Depends(get_record_service)
):
    return service.create_record(principal, payload)


@router.get(
    "/{record_id}",
    response_model=RecordRead,
    summary="Get Record"
)
def get_record(
    record_id: UUID,
    principal: Principal = Depends(permission_required("records")),
    service: RecordService = Depends(get_record_service)
):
    return service.get_record(record_id)


@router.patch(
    "/{record_id}",
    response_model=RecordRead,
    summary="Update Record",
    description="Only pending records can be edited."
)
def update_record(
    record_id: UUID,
    payload: RecordUpdate,
    principal: Principal = Depends(get_current_principal),
    service: RecordService = Depends(get_record_service)
):
    return service.update_record(principal, record_id, payload)


@router.delete(
    "/{record_id}",
    status_code=status.HTTP_200_OK,
    summary="Delete Record",
    description="Only pending records can be deleted."
)
def delete_record(
    record_id: UUID,
    principal: Principal = Depends(get_current_principal),
    service: RecordService = Depends(get_record_service)
):
    return service.delete_record(principal, record_id)


@router.post(
    "/{record_id}/approve",
    response_model=RecordRead,
    summary="Approve Record"
)
def approve_record(
    record_id: UUID,
    principal: Principal = Depends(get_current_principal),
    service: RecordService = Depends(get_record_service)
):
    return service.approve_record(principal, record_id)


@router.post(
    "/{record_id}/reject",
    response_model=RecordRead,
    summary="Reject Record",
    description="The reason is appended to the record's observations."
)
def reject_record(
    record_id: UUID,
    payload: RecordReject,
    principal: Principal = Depends(get_current_principal),
    service: RecordService = Depends(get_record_service)
):
    return service.reject_record(principal, record_id, payload.reason)


# ==========================================================================
# QUALITY CONTROL
# ==========================================================================


@router.get(
    "/{record_id}/controls",
    response_model=List[ControlRead],
    summary="List Controls",
    description="Evaluation evidence of the record, ordered by parameter name."
)
def list_controls(
    record_id: UUID,
    principal: Principal = Depends(permission_required("controls")),
    service: RecordService = Depends(get_record_service)
):
    return service.list_controls(record_id)


@router.post(
    "/{record_id}/controls",
    response_model=List[ControlRead],
    status_code=status.HTTP_201_CREATED,
    summary="Submit Quality Control",
    description="Evaluates every active specification of the product. Allowed once per record."
)
def submit_controls(
    record_id: UUID,
    payload: ControlSubmission,
    principal: Principal = Depends(get_current_principal),
    service: RecordService = Depends(get_record_service)
):
    return service.submit_controls(principal, record_id, payload)
