"""
Audit API Routes
Read-only view of the audit trail (admin only).
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import require_admin
from ..models.db_models import UserDB
from ..services.audit_log import AuditService
from .serializers import audit_to_dict

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=dict)
async def get_audit_logs(
    user_id: Optional[str] = Query(None, alias="userId"),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: UserDB = Depends(require_admin),
):
    """Audit events, newest first, optionally filtered by user and action tag."""
    logs, total = AuditService(db).list_logs(
        user_id=user_id,
        action=action,
        limit=limit,
        offset=offset,
    )
    return {"logs": [audit_to_dict(entry) for entry in logs], "total": total}
