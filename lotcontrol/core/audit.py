import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Union

from fastapi.encoders import jsonable_encoder
from loguru import logger
from sqlalchemy.engine import Engine
from sqlmodel import Session

from lotcontrol.db.schema import AuditLogEntry


class AuditTrailRecorder:
    """
    Appends AuditLogEntry rows. There is no update or delete API.

    Each append opens its OWN session on the engine, after the business
    mutation has committed. A failed append is logged and swallowed: the
    audit trail is best-effort evidence, not part of the business transaction.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def append(
        self,
        user_id: Optional[uuid.UUID],
        action: str,
        resource: str,
        resource_id: Union[uuid.UUID, str, None] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLogEntry]:
        payload = dict(details or {})
        payload.setdefault("timestamp", datetime.utcnow().isoformat())

        try:
            with Session(self.engine) as session:
                entry = AuditLogEntry(
                    user_id=user_id,
                    action=action,
                    resource=resource,
                    resource_id=str(
                        resource_id) if resource_id is not None else None,
                    details=jsonable_encoder(payload),
                    timestamp=datetime.utcnow(),
                )
                session.add(entry)
                session.commit()
                session.refresh(entry)
                return entry

        except Exception as e:
            logger.error(
                f"AUDIT LOG FAILED: action={action} resource={resource} "
                f"resource_id={resource_id}: {e}")
            return None
