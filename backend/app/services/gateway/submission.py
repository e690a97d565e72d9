"""
Submission Orchestrator

Entry workflow for commands submitted by users:

1. No credits -> refused before anything is written.
2. Same text already awaiting approval for this user -> continue that
   workflow (execute if the threshold is met, otherwise report the tally).
3. Otherwise a new command is created, classified by the rule engine and
   dispatched:
     no rule         -> rejected (fail closed)
     AUTO_ACCEPT     -> executed
     AUTO_REJECT     -> rejected
     REQUIRE_APPROVAL -> awaiting_approval

Resubmission continues an existing command. It never re-runs rule
matching; the command keeps its original matched rule.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ...models.db_models import CommandDB, CommandStatus, RuleAction, UserDB
from ..audit_log import AuditService
from ..notifications import NotificationService
from .approval_aggregator import ApprovalAggregator
from .errors import (
    ExecutionFailedError,
    ForbiddenError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from .execution_engine import ExecutionEngine
from .repository import GatewayRepository
from .rule_engine import RuleEngine, effective_action, required_approvals

logger = logging.getLogger(__name__)

NO_MATCH_REASON = "No matching rule found"


@dataclass
class SubmissionResult:
    id: str
    status: str
    message: Optional[str] = None
    reason: Optional[str] = None
    new_balance: Optional[int] = None
    credits: Optional[int] = None
    approval_count: Optional[int] = None
    required_approvals: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        body = {"id": self.id, "status": self.status}
        if self.message is not None:
            body["message"] = self.message
        if self.reason is not None:
            body["reason"] = self.reason
        if self.new_balance is not None:
            body["new_balance"] = self.new_balance
        if self.credits is not None:
            body["credits"] = self.credits
        if self.approval_count is not None:
            body["approval_count"] = self.approval_count
            body["required_approvals"] = self.required_approvals
        return body


class SubmissionOrchestrator:
    """Ties rule engine, execution engine and approval aggregator together."""

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.repo = GatewayRepository(db)
        self.audit = audit or AuditService(db)
        self.notifier = notifier or NotificationService(db)
        self.rules = RuleEngine(db)
        self.executor = ExecutionEngine(db, audit=self.audit)
        self.approvals = ApprovalAggregator(db, audit=self.audit, notifier=self.notifier)

    # =========================================================================
    # SUBMIT
    # =========================================================================

    def submit(self, user: UserDB, command_text: str) -> SubmissionResult:
        """
        Submit `command_text` on behalf of `user`.

        Raises:
            ValidationError: empty command text
            InsufficientCreditsError: user has no credits
            ExecutionFailedError: an auto-accepted command could not be executed
        """
        if not command_text or not isinstance(command_text, str) or not command_text.strip():
            raise ValidationError("command_text is required.")

        if user.credits <= 0:
            raise InsufficientCreditsError(user.credits)

        existing = self.repo.latest_awaiting_command(user.id, command_text)
        if existing is not None and existing.matched_rule_id:
            continued = self._continue_existing(user, existing)
            if continued is not None:
                return continued

        command = self.repo.create_command(user.id, command_text)
        rule = self.rules.match_command(command_text)

        if rule is None:
            self.executor.reject(user, command, NO_MATCH_REASON)
            logger.info(f"Command {command.id} rejected: no matching rule")
            return SubmissionResult(
                id=command.id,
                status=CommandStatus.REJECTED.value,
                reason=f"{NO_MATCH_REASON}. Command rejected for safety.",
                credits=user.credits,
            )

        self.repo.set_matched_rule(command, rule.id)
        action = effective_action(rule)
        logger.info(f"Command {command.id} matched rule {rule.id} -> {action.value}")

        if action == RuleAction.AUTO_ACCEPT:
            return self._execute(user, command, "Command executed successfully.")

        if action == RuleAction.AUTO_REJECT:
            self.executor.reject(user, command, f"Matched dangerous pattern: {rule.pattern}")
            return SubmissionResult(
                id=command.id,
                status=CommandStatus.REJECTED.value,
                reason=f'Command rejected: matches dangerous pattern "{rule.pattern}"',
                credits=user.credits,
            )

        required = required_approvals(rule.approval_threshold, user.tier)
        self.executor.mark_awaiting_approval(user, command, required)
        self._notify_pending(command, user, required)
        return SubmissionResult(
            id=command.id,
            status=CommandStatus.AWAITING_APPROVAL.value,
            message=f"Command requires {required} admin approval(s).",
            credits=user.credits,
            approval_count=0,
            required_approvals=required,
        )

    def _continue_existing(self, user: UserDB, command: CommandDB) -> Optional[SubmissionResult]:
        """
        Resubmission of identical text continues the open workflow.

        Returns None when the existing command could not be executed and a
        fresh submission should be made instead. A command another request
        already finalized is reported as it stands, never reopened.
        """
        counts = self.approvals.tally(command)
        approval_count = counts["approval_count"]
        required = counts["required_approvals"]

        if approval_count < required:
            return SubmissionResult(
                id=command.id,
                status=CommandStatus.AWAITING_APPROVAL.value,
                message=f"Command still requires approval. {approval_count}/{required} received.",
                credits=user.credits,
                approval_count=approval_count,
                required_approvals=required,
            )

        result = self.executor.execute(user, command)
        if result.success:
            return SubmissionResult(
                id=command.id,
                status=CommandStatus.EXECUTED.value,
                message="Command executed successfully (previously approved).",
                new_balance=result.new_balance,
            )
        if result.already_finalized:
            return self._current_state(command.id, approval_count, required)
        logger.info(f"Existing command {command.id} not executed ({result.error}); opening a new one")
        return None

    # =========================================================================
    # RESUBMIT
    # =========================================================================

    def resubmit(self, user: UserDB, command_id: str) -> SubmissionResult:
        """
        Re-check an existing command's tally and execute it if satisfied.

        Raises:
            NotFoundError: unknown command
            ForbiddenError: caller does not own the command
            ValidationError: command already executed, or has no matched rule
            ExecutionFailedError: threshold met but the debit could not be made
        """
        command = self.repo.get_command(command_id)
        if command is None:
            raise NotFoundError("Command not found.")
        if command.user_id != user.id:
            raise ForbiddenError("Access denied.")
        if CommandStatus(command.status) == CommandStatus.EXECUTED:
            raise ValidationError("Command was already executed.")
        if not command.matched_rule_id:
            raise ValidationError("No matched rule for this command.")

        counts = self.approvals.tally(command)
        approval_count = counts["approval_count"]
        required = counts["required_approvals"]

        if approval_count >= required and CommandStatus(command.status) == CommandStatus.AWAITING_APPROVAL:
            result = self.executor.execute(user, command)
            if result.success:
                return SubmissionResult(
                    id=command.id,
                    status=CommandStatus.EXECUTED.value,
                    message="Command executed successfully after approval.",
                    new_balance=result.new_balance,
                )
            if not result.already_finalized:
                current = self.repo.get_command(command_id)
                raise ExecutionFailedError(
                    result.error or "Execution failed.",
                    command_id=command_id,
                    status=CommandStatus(current.status).value,
                )

        return self._current_state(command_id, approval_count, required)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _current_state(self, command_id: str, approval_count: int, required: int) -> SubmissionResult:
        """Report a command as it stands now, without acting on it."""
        current = self.repo.get_command(command_id)
        status = CommandStatus(current.status)
        if status == CommandStatus.AWAITING_APPROVAL:
            message = f"Still awaiting approvals. {approval_count}/{required} received."
        else:
            message = f"Command was already finalized ({status.value})."
        return SubmissionResult(
            id=current.id,
            status=status.value,
            message=message,
            approval_count=approval_count,
            required_approvals=required,
        )

    def _execute(self, user: UserDB, command: CommandDB, message: str) -> SubmissionResult:
        command_id = command.id
        result = self.executor.execute(user, command)
        if not result.success:
            current = self.repo.get_command(command_id)
            raise ExecutionFailedError(
                result.error or "Execution failed.",
                command_id=command_id,
                status=CommandStatus(current.status).value,
            )
        self._notify_executed(command, user, result.new_balance)
        return SubmissionResult(
            id=command_id,
            status=CommandStatus.EXECUTED.value,
            message=message,
            new_balance=result.new_balance,
        )

    def _notify_pending(self, command: CommandDB, user: UserDB, required: int) -> None:
        try:
            self.notifier.notify_pending_approval(command, user, required)
        except Exception as e:
            logger.error(f"Pending-approval notification for command {command.id} failed: {e}")

    def _notify_executed(self, command: CommandDB, user: UserDB, new_balance: Optional[int]) -> None:
        try:
            self.notifier.notify_executed(command, user, new_balance)
        except Exception as e:
            logger.error(f"Execution notification for command {command.id} failed: {e}")
