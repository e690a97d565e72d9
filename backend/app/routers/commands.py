"""
Command API Routes

Submission, history, approval voting and resubmission.
Thin glue: every endpoint maps onto one gateway service operation.
"""
from typing import Literal
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user, require_admin
from ..models.db_models import UserDB
from ..services.gateway import (
    ApprovalAggregator,
    GatewayRepository,
    SubmissionOrchestrator,
)
from .serializers import command_to_dict


router = APIRouter(prefix="/commands", tags=["commands"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class SubmitCommandRequest(BaseModel):
    """Request to run a command through the gateway."""
    command_text: str = Field(..., min_length=1, description="Command text to gate")


class VoteRequest(BaseModel):
    """Admin vote on a command awaiting approval."""
    decision: Literal["approved", "rejected"]


# =============================================================================
# USER ENDPOINTS
# =============================================================================

@router.post("", response_model=dict)
async def submit_command(
    request: SubmitCommandRequest,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Submit a command.

    The command is matched against the rule set and executed, rejected, or
    queued for admin approval.
    """
    result = SubmissionOrchestrator(db).submit(current_user, request.command_text)
    return result.to_dict()


@router.get("", response_model=dict)
async def list_commands(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Command history. Admins see every user's commands, members their own.
    """
    user_filter = None if current_user.is_admin else current_user.id
    commands, total = GatewayRepository(db).list_commands(user_filter, limit=limit, offset=offset)
    return {"commands": [command_to_dict(c) for c in commands], "total": total}


@router.get("/pending/approvals", response_model=list)
async def list_pending_approvals(
    db: Session = Depends(get_db),
    _: UserDB = Depends(require_admin),
):
    """
    Commands awaiting approval, oldest first (admin only).
    """
    return [command_to_dict(c) for c in ApprovalAggregator(db).pending_approvals()]


@router.get("/{command_id}", response_model=dict)
async def get_command(
    command_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Single command with rule and vote detail.
    """
    command = GatewayRepository(db).get_command(command_id, with_details=True)
    if command is None:
        raise HTTPException(status_code=404, detail="Command not found.")

    if not current_user.is_admin and command.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Access denied.")

    return command_to_dict(command)


@router.post("/{command_id}/approve", response_model=dict)
async def vote_on_command(
    command_id: str,
    request: VoteRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """
    Approve or reject a command (admin only).

    A single rejection is final. The command executes once enough distinct
    admins have approved it.
    """
    command = GatewayRepository(db).get_command(command_id)
    if command is None:
        raise HTTPException(status_code=404, detail="Command not found.")

    outcome = ApprovalAggregator(db).cast_vote(command, admin, request.decision)
    return outcome.to_dict()


@router.post("/{command_id}/resubmit", response_model=dict)
async def resubmit_command(
    command_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Re-check an existing command's approvals and execute it if the
    threshold is now met.
    """
    result = SubmissionOrchestrator(db).resubmit(current_user, command_id)
    return result.to_dict()
