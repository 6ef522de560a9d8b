from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query

from lotcontrol.core.dependencies import get_audit_service, permission_required
from lotcontrol.models.audit import AuditLogPage
from lotcontrol.services.audit import AuditService
from lotcontrol.services.authorization import Principal

router = APIRouter()


@router.get(
    "/",
    response_model=AuditLogPage,
    summary="List Audit Entries",
    description="Newest first. The audit trail is append-only; there are no write routes."
)
def list_entries(
    resource: Optional[str] = None,
    resource_id: Optional[str] = None,
    user_id: Optional[UUID] = None,
    action: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(permission_required("audit")),
    service: AuditService = Depends(get_audit_service)
):
    return service.list_entries(
        resource=resource,
        resource_id=resource_id,
        user_id=user_id,
        action=action,
        page=page,
        limit=limit,
    )
