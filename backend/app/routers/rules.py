"""
Rule API Routes

Rule listing for every user; creation, updates, deletion and pattern tests
for admins.
"""
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user, require_admin
from ..models.db_models import UserDB
from ..services.gateway import RuleService
from .serializers import rule_to_dict


router = APIRouter(prefix="/rules", tags=["rules"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CreateRuleRequest(BaseModel):
    """
    Shape only. Action, threshold, window and pattern values are checked by
    RuleService so every bad value answers 400.
    """
    pattern: str = Field(..., description="Regular expression matched against command text")
    action: str = Field(..., description="AUTO_ACCEPT, AUTO_REJECT or REQUIRE_APPROVAL")
    priority: int = Field(default=0, description="Higher priority is evaluated first")
    approvalThreshold: int = Field(default=1, description="Base approval count, at least 1")
    timeRestrictions: Optional[Dict[str, Any]] = Field(
        None, description='{"allowAutoAcceptDuring": {"days": [...], "startHour": h, "endHour": h}}'
    )


class UpdateRuleRequest(BaseModel):
    pattern: Optional[str] = None
    action: Optional[str] = None
    priority: Optional[int] = None
    approvalThreshold: Optional[int] = None
    timeRestrictions: Optional[Dict[str, Any]] = None


class TestPatternRequest(BaseModel):
    pattern: str
    testCommand: str


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=list)
async def list_rules(
    db: Session = Depends(get_db),
    _: UserDB = Depends(get_current_user),
):
    """All rules in evaluation order."""
    return [rule_to_dict(r) for r in RuleService(db).list_rules()]


@router.post("/test", response_model=dict)
async def test_pattern(
    request: TestPatternRequest,
    db: Session = Depends(get_db),
    _: UserDB = Depends(require_admin),
):
    """Check whether a pattern matches a sample command (admin only)."""
    return RuleService(db).test_pattern(request.pattern, request.testCommand)


@router.get("/{rule_id}", response_model=dict)
async def get_rule(
    rule_id: str,
    db: Session = Depends(get_db),
    _: UserDB = Depends(get_current_user),
):
    return rule_to_dict(RuleService(db).get_rule(rule_id))


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_rule(
    request: CreateRuleRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """
    Create a rule (admin only).

    Rejected with 400 for an invalid pattern and 409 when the pattern
    overlaps an existing rule on the probe commands.
    """
    rule = RuleService(db).create_rule(
        admin,
        pattern=request.pattern,
        action=request.action,
        priority=request.priority,
        approval_threshold=request.approvalThreshold,
        time_restrictions=request.timeRestrictions,
    )
    return rule_to_dict(rule)


@router.put("/{rule_id}", response_model=dict)
async def update_rule(
    rule_id: str,
    request: UpdateRuleRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Partial rule update (admin only)."""
    updates = {
        "pattern": request.pattern,
        "action": request.action,
        "priority": request.priority,
        "approval_threshold": request.approvalThreshold,
    }
    # Explicit null clears the window; omitted keeps it
    if "timeRestrictions" in request.model_fields_set:
        updates["time_restrictions"] = request.timeRestrictions

    rule = RuleService(db).update_rule(admin, rule_id, **updates)
    return rule_to_dict(rule)


@router.delete("/{rule_id}", response_model=dict)
async def delete_rule(
    rule_id: str,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Delete a rule (admin only)."""
    RuleService(db).delete_rule(admin, rule_id)
    return {"message": "Rule deleted successfully."}
