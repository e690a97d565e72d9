"""
Rule administration: create, update, delete, list and pattern testing.

Every write validates first (action, threshold, time window, pattern,
probe-corpus conflicts) and changes nothing when validation fails.
"""
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ...models.db_models import AuditAction, RuleAction, RuleDB, UserDB, utcnow
from ..audit_log import AuditService
from .errors import ConflictError, NotFoundError, ValidationError
from .repository import GatewayRepository
from .rule_engine import RuleEngine, parse_time_restrictions, validate_pattern

logger = logging.getLogger(__name__)

_UNSET = object()


def _parse_action(action: Any) -> RuleAction:
    try:
        return RuleAction(action)
    except ValueError:
        raise ValidationError('Action must be "AUTO_ACCEPT", "AUTO_REJECT", or "REQUIRE_APPROVAL".')


def _check_threshold(threshold: Any) -> int:
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 1:
        raise ValidationError("approvalThreshold must be a positive integer.")
    return threshold


def _check_priority(priority: Any) -> int:
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError("priority must be an integer.")
    return priority


def _check_time_restrictions(raw: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    try:
        parsed = parse_time_restrictions(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid timeRestrictions: {e.errors()[0]['msg']}")
    if parsed is None:
        return None
    return parsed.model_dump(exclude_none=True) or None


class RuleService:
    """Admin-facing rule management."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.repo = GatewayRepository(db)
        self.audit = audit or AuditService(db)
        self.engine = RuleEngine(db)

    def list_rules(self) -> List[RuleDB]:
        """Rules in evaluation order."""
        return self.repo.list_rules()

    def get_rule(self, rule_id: str) -> RuleDB:
        rule = self.repo.get_rule(rule_id)
        if rule is None:
            raise NotFoundError("Rule not found.")
        return rule

    def create_rule(
        self,
        admin: UserDB,
        pattern: str,
        action: Any,
        priority: int = 0,
        approval_threshold: int = 1,
        time_restrictions: Optional[Dict[str, Any]] = None,
    ) -> RuleDB:
        """
        Raises:
            ValidationError / InvalidPatternError: bad input
            ConflictError: pattern overlaps existing rules on the probe corpus
        """
        if not pattern or not isinstance(pattern, str):
            raise ValidationError("Pattern is required.")
        rule_action = _parse_action(action)
        priority = _check_priority(priority)
        approval_threshold = _check_threshold(approval_threshold)
        time_restrictions = _check_time_restrictions(time_restrictions)
        validate_pattern(pattern)
        self._ensure_no_conflict(pattern)

        now = utcnow()
        rule = RuleDB(
            id=str(uuid4()),
            pattern=pattern,
            action=rule_action,
            priority=priority,
            approval_threshold=approval_threshold,
            time_restrictions=time_restrictions,
            created_by_id=admin.id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(rule)
        self.db.commit()
        logger.info(f"Rule {rule.id} created by {admin.id}: {pattern!r} -> {rule_action.value}")

        self.audit.record(admin.id, AuditAction.RULE_CREATED, {
            "ruleId": rule.id,
            "pattern": pattern,
            "action": rule_action.value,
        })
        return rule

    def update_rule(
        self,
        admin: UserDB,
        rule_id: str,
        pattern: Optional[str] = None,
        action: Any = None,
        priority: Optional[int] = None,
        approval_threshold: Optional[int] = None,
        time_restrictions: Any = _UNSET,
    ) -> RuleDB:
        """
        Partial update. `time_restrictions=None` clears the window; leaving
        it unset keeps the current one.
        """
        rule = self.get_rule(rule_id)
        changes: Dict[str, Any] = {}

        if pattern is not None:
            if not isinstance(pattern, str) or not pattern:
                raise ValidationError("Pattern must be a non-empty string.")
            validate_pattern(pattern)
            self._ensure_no_conflict(pattern, exclude_rule_id=rule_id)
            changes["pattern"] = pattern
        if action is not None:
            changes["action"] = _parse_action(action)
        if priority is not None:
            changes["priority"] = _check_priority(priority)
        if approval_threshold is not None:
            changes["approval_threshold"] = _check_threshold(approval_threshold)
        if time_restrictions is not _UNSET:
            changes["time_restrictions"] = _check_time_restrictions(time_restrictions)

        for key, value in changes.items():
            setattr(rule, key, value)
        rule.updated_at = utcnow()
        self.db.commit()

        self.audit.record(admin.id, AuditAction.RULE_UPDATED, {
            "ruleId": rule_id,
            "changes": {
                key: (value.value if isinstance(value, RuleAction) else value)
                for key, value in changes.items()
            },
        })
        return rule

    def delete_rule(self, admin: UserDB, rule_id: str) -> None:
        """Commands that matched the rule keep existing with matched_rule_id cleared."""
        rule = self.get_rule(rule_id)
        pattern = rule.pattern
        self.db.delete(rule)
        self.db.commit()
        logger.info(f"Rule {rule_id} deleted by {admin.id}")

        self.audit.record(admin.id, AuditAction.RULE_DELETED, {
            "ruleId": rule_id,
            "pattern": pattern,
        })

    def test_pattern(self, pattern: str, test_command: str) -> Dict[str, Any]:
        """Does `pattern` match `test_command`? Nothing is stored."""
        if not pattern or not test_command:
            raise ValidationError("Pattern and testCommand are required.")
        regex = validate_pattern(pattern)
        return {
            "pattern": pattern,
            "testCommand": test_command,
            "matches": bool(regex.search(test_command)),
        }

    def _ensure_no_conflict(self, pattern: str, exclude_rule_id: Optional[str] = None) -> None:
        report = self.engine.detect_conflict(pattern, exclude_rule_id=exclude_rule_id)
        if report.has_conflict:
            raise ConflictError("Pattern conflicts with existing rules.", report.summary())
