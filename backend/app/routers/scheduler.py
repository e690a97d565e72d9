"""
Scheduler API Routes

Internal endpoints for an external poller.
Escalation of commands stuck awaiting approval.
"""
from datetime import timedelta
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Header, Query
from sqlalchemy.orm import Session

from .. import config
from ..database import get_db
from ..services.gateway import ApprovalAggregator


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != config.INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/escalations", response_model=dict)
async def run_escalations(
    timeout_minutes: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Escalate commands awaiting approval longer than the timeout.

    Informational only - commands stay awaiting_approval.
    """
    timeout = timedelta(minutes=timeout_minutes) if timeout_minutes else None
    return ApprovalAggregator(db).run_escalations(timeout)
