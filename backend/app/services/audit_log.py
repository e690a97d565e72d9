"""
Audit Log Service

Append-only audit trail for gateway activity.

record() is best-effort: a failed write is logged and swallowed, never
raised into the caller. Callers record only after their own state change
has been committed, so rolling back a failed audit write never touches it.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from sqlalchemy.orm import Session

from ..models.db_models import AuditAction, AuditLogDB, utcnow

logger = logging.getLogger(__name__)


class AuditService:
    """Writes and reads audit events."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        user_id: Optional[str],
        action: Union[AuditAction, str],
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLogDB]:
        """
        Append one audit event.

        Returns the stored row, or None when the write failed.
        """
        tag = action.value if isinstance(action, AuditAction) else str(action)
        try:
            entry = AuditLogDB(
                id=str(uuid4()),
                user_id=user_id,
                action=tag,
                details=details or {},
                created_at=utcnow(),
            )
            self.db.add(entry)
            self.db.commit()
            return entry
        except Exception as e:
            logger.error(f"Failed to write audit event {tag} for user {user_id}: {e}")
            try:
                self.db.rollback()
            except Exception as rollback_error:
                logger.error(f"Audit rollback failed: {rollback_error}")
            return None

    def list_logs(
        self,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[AuditLogDB], int]:
        """Filtered audit events, newest first, with the unpaginated total."""
        query = self.db.query(AuditLogDB)
        if user_id:
            query = query.filter(AuditLogDB.user_id == user_id)
        if action:
            query = query.filter(AuditLogDB.action == action)

        total = query.count()
        logs = (
            query.order_by(AuditLogDB.created_at.desc(), AuditLogDB.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return logs, total
