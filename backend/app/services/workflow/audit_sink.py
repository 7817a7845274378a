"""
Audit Sink

Append-only audit trail for workflow actions. Entries join the caller's
transaction so they commit together with the change they describe.
"""
from datetime import datetime
from typing import Optional, Protocol
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import AuditAction, AuditLogDB

MAX_DETAILS_LENGTH = 1000


class AuditSink(Protocol):
    def log_action(
        self,
        action: AuditAction,
        actor_id: str,
        report_id: Optional[str],
        details: Optional[str] = None,
    ) -> None: ...


class SqlAlchemyAuditSink:
    def __init__(self, db: Session):
        self.db = db

    def log_action(
        self,
        action: AuditAction,
        actor_id: str,
        report_id: Optional[str],
        details: Optional[str] = None,
    ) -> None:
        if details and len(details) > MAX_DETAILS_LENGTH:
            details = details[:MAX_DETAILS_LENGTH]
        self.db.add(AuditLogDB(
            id=str(uuid4()),
            action=action,
            user_id=actor_id,
            report_id=report_id,
            details=details,
            timestamp=datetime.utcnow(),
        ))
