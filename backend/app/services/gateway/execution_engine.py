"""
Execution Engine

Performs the (simulated) execution of a command: one credit debited and
the command marked executed, both inside a single transaction.

Exactly-once rule: the command is claimed with a conditional UPDATE
(status IN pending/awaiting_approval -> executed). Only one transaction can
win that claim; a loser rolls back and debits nothing.

Audit events are written after the transaction has committed or rolled
back. A failed audit write never undoes an execution.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import AuditAction, CommandDB, CommandStatus, UserDB, utcnow
from ..audit_log import AuditService
from .errors import InsufficientCreditsError
from .repository import GatewayRepository

logger = logging.getLogger(__name__)

EXECUTABLE_STATUSES = (CommandStatus.PENDING, CommandStatus.AWAITING_APPROVAL)


@dataclass
class ExecutionResult:
    """Outcome of one execution attempt."""
    success: bool
    new_balance: Optional[int] = None
    error: Optional[str] = None
    # True when another request had already moved the command out of an executable state
    already_finalized: bool = False


class _AlreadyFinalized(Exception):
    pass


class ExecutionEngine:
    """Credit-debiting execution plus the simple reject / await transitions."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.repo = GatewayRepository(db)
        self.audit = audit or AuditService(db)

    # =========================================================================
    # EXECUTE
    # =========================================================================

    def execute(self, user: UserDB, command: CommandDB) -> ExecutionResult:
        """
        Debit one credit and mark the command executed, atomically.

        The balance is re-read (and row-locked where the database supports
        it) inside the transaction; the decrement itself is guarded by
        `credits >= cost`, so the balance can never go negative.
        """
        user_id = user.id
        command_id = command.id
        command_text = command.command_text
        cost = config.EXECUTION_CREDIT_COST
        previous_credits = None

        try:
            current = self.repo.lock_user(user_id)
            if current is None or current.credits <= 0:
                raise InsufficientCreditsError(current.credits if current else 0)
            previous_credits = current.credits

            claimed = self.repo.transition_status(
                command_id,
                EXECUTABLE_STATUSES,
                CommandStatus.EXECUTED,
                executed_at=utcnow(),
            )
            if claimed == 0:
                raise _AlreadyFinalized()

            if self.repo.debit_credits(user_id, cost) == 0:
                raise InsufficientCreditsError(previous_credits)

            self.db.commit()
        except _AlreadyFinalized:
            self.db.rollback()
            logger.info(f"Command {command_id} already finalized; skipping execution")
            return ExecutionResult(
                success=False,
                error="Command was already finalized.",
                already_finalized=True,
            )
        except (InsufficientCreditsError, SQLAlchemyError) as e:
            self.db.rollback()
            message = e.message if isinstance(e, InsufficientCreditsError) else "Execution failed."
            logger.error(f"Execution of command {command_id} failed: {e}")
            self.audit.record(user_id, AuditAction.COMMAND_EXECUTION_FAILED, {
                "commandId": command_id,
                "commandText": command_text,
                "error": message,
            })
            return ExecutionResult(success=False, new_balance=previous_credits, error=message)

        new_balance = self.repo.get_credits(user_id)
        logger.info(f"[MOCK EXECUTION] user={user_id} command={command_text!r}")

        self.audit.record(user_id, AuditAction.COMMAND_EXECUTED, {
            "commandId": command_id,
            "commandText": command_text,
            "previousCredits": previous_credits,
            "newCredits": new_balance,
        })
        return ExecutionResult(success=True, new_balance=new_balance)

    # =========================================================================
    # REJECT / AWAIT
    # =========================================================================

    def reject(self, user: UserDB, command: CommandDB, reason: str) -> bool:
        """
        Mark the command rejected. Returns False when it had already left
        pending/awaiting_approval (nothing changed, nothing audited).
        """
        moved = self.repo.transition_status(command.id, EXECUTABLE_STATUSES, CommandStatus.REJECTED)
        self.db.commit()
        if not moved:
            return False

        self.audit.record(user.id, AuditAction.COMMAND_REJECTED, {
            "commandId": command.id,
            "commandText": command.command_text,
            "reason": reason,
        })
        return True

    def mark_awaiting_approval(self, user: UserDB, command: CommandDB, required_approvals: int) -> None:
        self.repo.transition_status(
            command.id,
            (CommandStatus.PENDING,),
            CommandStatus.AWAITING_APPROVAL,
        )
        self.db.commit()

        self.audit.record(user.id, AuditAction.COMMAND_PENDING_APPROVAL, {
            "commandId": command.id,
            "commandText": command.command_text,
            "requiredApprovals": required_approvals,
        })
