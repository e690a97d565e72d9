"""
Command Gateway - Response serializers
Shared JSON shapes for commands, rules and audit events.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from ..models.db_models import (
    AuditLogDB, CommandDB, CommandStatus, RuleAction, RuleDB, VoteDecision,
)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def rule_to_dict(rule: RuleDB) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "pattern": rule.pattern,
        "action": RuleAction(rule.action).value,
        "priority": rule.priority,
        "approvalThreshold": rule.approval_threshold,
        "timeRestrictions": rule.time_restrictions,
        "createdById": rule.created_by_id,
        "createdBy": {"name": rule.created_by.name} if rule.created_by else None,
        "createdAt": _iso(rule.created_at),
        "updatedAt": _iso(rule.updated_at),
    }


def command_to_dict(command: CommandDB) -> Dict[str, Any]:
    rule = command.matched_rule
    return {
        "id": command.id,
        "userId": command.user_id,
        "commandText": command.command_text,
        "status": CommandStatus(command.status).value,
        "matchedRuleId": command.matched_rule_id,
        "createdAt": _iso(command.created_at),
        "executedAt": _iso(command.executed_at),
        "user": {
            "name": command.user.name,
            "tier": command.user.tier,
        } if command.user else None,
        "matchedRule": {
            "pattern": rule.pattern,
            "action": RuleAction(rule.action).value,
            "approvalThreshold": rule.approval_threshold,
        } if rule else None,
        "approvals": [
            {
                "approverId": vote.approver_id,
                "approver": {"name": vote.approver.name} if vote.approver else None,
                "decision": VoteDecision(vote.decision).value,
                "createdAt": _iso(vote.created_at),
            }
            for vote in command.approvals
        ],
    }


def audit_to_dict(entry: AuditLogDB) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "userId": entry.user_id,
        "action": entry.action,
        "details": entry.details,
        "createdAt": _iso(entry.created_at),
    }
