"""Command Gateway - Data Models"""
from .db_models import (
    # Enums
    RuleAction, CommandStatus, VoteDecision, UserRole, UserTier, AuditAction,
    # Tables
    UserDB, RuleDB, CommandDB, ApprovalDB, AuditLogDB,
)

__all__ = [
    "RuleAction", "CommandStatus", "VoteDecision", "UserRole", "UserTier", "AuditAction",
    "UserDB", "RuleDB", "CommandDB", "ApprovalDB", "AuditLogDB",
]
