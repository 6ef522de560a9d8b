import uuid
from typing import Optional
from sqlmodel import Session, select, func, col

from lotcontrol.db.schema import AuditLogEntry
from lotcontrol.models.audit import AuditLogRead, AuditLogPage


class AuditService:
    """Read side of the audit trail. Entries are only ever appended."""

    def __init__(self, session: Session):
        self.session = session

    def list_entries(
        self,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
        action: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> AuditLogPage:
        statement = select(AuditLogEntry)

        if resource:
            statement = statement.where(AuditLogEntry.resource == resource)
        if resource_id:
            statement = statement.where(
                AuditLogEntry.resource_id == resource_id)
        if user_id:
            statement = statement.where(AuditLogEntry.user_id == user_id)
        if action:
            statement = statement.where(AuditLogEntry.action == action)

        total = self.session.exec(
            select(func.count()).select_from(statement.subquery())).one()

        page = max(page, 1)
        results = self.session.exec(
            statement
            .order_by(col(AuditLogEntry.timestamp).desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        return AuditLogPage(
            items=[AuditLogRead.model_validate(e) for e in results],
            total=total,
            page=page,
            limit=limit,
        )
