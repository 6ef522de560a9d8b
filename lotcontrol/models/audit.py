import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlmodel import SQLModel


class AuditLogRead(SQLModel):
    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    details: Dict[str, Any] = {}
    timestamp: datetime


class AuditLogPage(SQLModel):
    items: List[AuditLogRead]
    total: int
    page: int
    limit: int
