"""
Approval Aggregator

Collects admin votes on commands awaiting approval and executes a command
once its tier-adjusted threshold is met.

State machine per command (transitions driven only by votes):

    awaiting_approval --approved x N--> executed
    awaiting_approval --rejected x 1--> rejected

A single rejection is terminal; there is no rejection quorum.

Concurrency:
- One vote per (command, approver) is enforced by the unique constraint on
  the approvals table. A duplicate that slips past the read check fails the
  insert and is reported as ALREADY_VOTED.
- Two approvals that both cross the threshold both reach the execution
  engine, but only one can claim the command there. The other gets
  ALREADY_FINALIZED and nothing is debited twice.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import (
    AuditAction,
    CommandDB,
    CommandStatus,
    UserDB,
    VoteDecision,
    utcnow,
)
from ..audit_log import AuditService
from ..notifications import NotificationService
from .errors import ForbiddenError, NotFoundError, ValidationError
from .execution_engine import ExecutionEngine
from .repository import GatewayRepository
from .rule_engine import required_approvals

logger = logging.getLogger(__name__)


class VoteResult(str, Enum):
    ALREADY_VOTED = "already_voted"
    REJECTED = "rejected"
    VOTE_RECORDED = "vote_recorded"
    EXECUTED = "executed"
    EXECUTION_FAILED = "execution_failed"
    ALREADY_FINALIZED = "already_finalized"


@dataclass
class VoteOutcome:
    result: VoteResult
    command_status: str
    message: str
    approval_count: Optional[int] = None
    required_approvals: Optional[int] = None
    new_balance: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.result in (VoteResult.REJECTED, VoteResult.VOTE_RECORDED, VoteResult.EXECUTED)

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "success": self.success,
            "result": self.result.value,
            "commandStatus": self.command_status,
            "message": self.message,
        }
        if self.approval_count is not None:
            body["approvalCount"] = self.approval_count
            body["requiredApprovals"] = self.required_approvals
        if self.new_balance is not None:
            body["newBalance"] = self.new_balance
        return body


def _status_value(status) -> str:
    return CommandStatus(status).value


class ApprovalAggregator:
    """Vote intake, tallying and escalation queries."""

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
        self.executor = ExecutionEngine(db, audit=self.audit)

    # =========================================================================
    # TALLY
    # =========================================================================

    def tally(self, command: CommandDB) -> Dict[str, int]:
        """
        Current approved-vote count and the threshold for this command.

        The threshold uses the matched rule's base (1 if the rule is gone)
        and the command OWNER's tier as it is right now.
        """
        owner = self.repo.get_user(command.user_id)
        rule = self.repo.get_rule(command.matched_rule_id) if command.matched_rule_id else None
        base = rule.approval_threshold if rule else 1
        return {
            "approval_count": self.repo.count_approvals(command.id),
            "required_approvals": required_approvals(base, owner.tier if owner else None),
        }

    # =========================================================================
    # VOTING
    # =========================================================================

    def cast_vote(
        self,
        command: CommandDB,
        approver: UserDB,
        decision: Union[VoteDecision, str],
    ) -> VoteOutcome:
        """
        Record `approver`'s vote and apply its consequence.

        Raises:
            ValidationError: unknown decision, or command not awaiting approval
            ForbiddenError: approver is not an admin
        """
        try:
            decision = VoteDecision(decision)
        except ValueError:
            raise ValidationError('Decision must be "approved" or "rejected".')

        if not approver.is_admin:
            raise ForbiddenError("Admin access required.")

        command_id = command.id
        approver_id = approver.id

        if CommandStatus(command.status) != CommandStatus.AWAITING_APPROVAL:
            raise ValidationError(
                "Command is not awaiting approval.",
                currentStatus=_status_value(command.status),
            )

        # Fast path; the unique constraint is the real guard
        if self.repo.find_vote(command_id, approver_id) is not None:
            return self._already_voted(command_id)

        try:
            self.repo.add_vote(command_id, approver_id, decision)
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Duplicate vote by {approver_id} on command {command_id} rejected by constraint")
            return self._already_voted(command_id)

        audit_action = (
            AuditAction.COMMAND_APPROVED if decision == VoteDecision.APPROVED
            else AuditAction.COMMAND_REJECTED
        )
        self.audit.record(approver_id, audit_action, {
            "commandId": command_id,
            "commandText": command.command_text,
            "decision": decision.value,
        })

        command = self.repo.get_command(command_id)
        if command is None:
            raise NotFoundError("Command not found.")
        owner = self.repo.get_user(command.user_id)

        if decision == VoteDecision.REJECTED:
            return self._apply_rejection(command, owner, approver)

        return self._apply_approval(command, owner, approver)

    def _apply_rejection(self, command: CommandDB, owner: UserDB, approver: UserDB) -> VoteOutcome:
        moved = self.repo.transition_status(
            command.id,
            (CommandStatus.AWAITING_APPROVAL,),
            CommandStatus.REJECTED,
        )
        self.db.commit()

        if not moved:
            current = self.repo.get_command(command.id)
            return VoteOutcome(
                result=VoteResult.ALREADY_FINALIZED,
                command_status=_status_value(current.status),
                message="Command was already finalized.",
            )

        self._notify_decision(command, owner, approver, approved=False)
        return VoteOutcome(
            result=VoteResult.REJECTED,
            command_status=CommandStatus.REJECTED.value,
            message="Command has been rejected.",
        )

    def _apply_approval(self, command: CommandDB, owner: UserDB, approver: UserDB) -> VoteOutcome:
        counts = self.tally(command)
        approval_count = counts["approval_count"]
        required = counts["required_approvals"]

        if approval_count < required:
            # Approval notice only while more votes are needed
            self._notify_decision(command, owner, approver, approved=True)
            return VoteOutcome(
                result=VoteResult.VOTE_RECORDED,
                command_status=CommandStatus.AWAITING_APPROVAL.value,
                message=f"Approval recorded. {approval_count}/{required} approvals received.",
                approval_count=approval_count,
                required_approvals=required,
            )

        result = self.executor.execute(owner, command)

        if result.success:
            self._notify_executed(command, owner, result.new_balance)
            return VoteOutcome(
                result=VoteResult.EXECUTED,
                command_status=CommandStatus.EXECUTED.value,
                message=f"Command approved and executed. New balance: {result.new_balance}",
                approval_count=approval_count,
                required_approvals=required,
                new_balance=result.new_balance,
            )

        current = self.repo.get_command(command.id)
        if result.already_finalized:
            return VoteOutcome(
                result=VoteResult.ALREADY_FINALIZED,
                command_status=_status_value(current.status),
                message="Command was already finalized.",
                approval_count=approval_count,
                required_approvals=required,
            )

        return VoteOutcome(
            result=VoteResult.EXECUTION_FAILED,
            command_status=_status_value(current.status),
            message=result.error or "Execution failed.",
            approval_count=approval_count,
            required_approvals=required,
        )

    def _already_voted(self, command_id: str) -> VoteOutcome:
        current = self.repo.get_command(command_id)
        return VoteOutcome(
            result=VoteResult.ALREADY_VOTED,
            command_status=_status_value(current.status),
            message="You have already voted on this command.",
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def pending_approvals(self) -> List[CommandDB]:
        """Commands awaiting approval, oldest first, with owner, rule and votes loaded."""
        return self.repo.awaiting_commands()

    def pending_escalations(self, timeout: Optional[timedelta] = None) -> List[CommandDB]:
        """Commands still awaiting approval that were created more than `timeout` ago."""
        if timeout is None:
            timeout = timedelta(minutes=config.ESCALATION_TIMEOUT_MINUTES)
        return self.repo.awaiting_commands(created_before=utcnow() - timeout)

    def escalate(self, command: CommandDB) -> None:
        """Flag a stale command for priority review. Logging only - no state change."""
        self.audit.record(command.user_id, AuditAction.COMMAND_ESCALATED, {
            "commandId": command.id,
            "commandText": command.command_text,
            "reason": "Approval timeout exceeded",
        })
        logger.warning(f"[ESCALATION] Command {command.id} escalated to admin review")

    def run_escalations(self, timeout: Optional[timedelta] = None) -> Dict[str, Any]:
        """Escalate every stale command. Meant for an external poller."""
        stale = self.pending_escalations(timeout)
        command_ids = [command.id for command in stale]
        for command in stale:
            self.escalate(command)
        return {"escalated": len(command_ids), "command_ids": command_ids}

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _notify_decision(self, command: CommandDB, owner: Optional[UserDB], approver: UserDB, approved: bool) -> None:
        if owner is None:
            return
        try:
            self.notifier.notify_decision(command, owner, approver, approved)
        except Exception as e:
            logger.error(f"Decision notification for command {command.id} failed: {e}")

    def _notify_executed(self, command: CommandDB, owner: UserDB, new_balance: Optional[int]) -> None:
        try:
            self.notifier.notify_executed(command, owner, new_balance)
        except Exception as e:
            logger.error(f"Execution notification for command {command.id} failed: {e}")
