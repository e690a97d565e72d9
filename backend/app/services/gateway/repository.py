"""
Gateway Repository

All reads and writes the gateway core makes against the database.
Every service receives its own Session; nothing here holds process-wide
state.

Status changes are conditional UPDATEs (WHERE status IN ...) so that two
requests racing on the same command cannot both move it. Callers check the
affected row count.
"""
from datetime import datetime
from typing import Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload

from ...models.db_models import (
    ApprovalDB,
    CommandDB,
    CommandStatus,
    RuleDB,
    UserDB,
    VoteDecision,
    utcnow,
)


class GatewayRepository:
    """Thin query layer over the gateway tables."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # RULES
    # =========================================================================

    def list_rules(self, exclude_rule_id: Optional[str] = None) -> List[RuleDB]:
        """
        All rules in evaluation order.

        priority DESC, then creation order, then id - ties always resolve
        the same way.
        """
        query = self.db.query(RuleDB)
        if exclude_rule_id:
            query = query.filter(RuleDB.id != exclude_rule_id)
        return query.order_by(
            RuleDB.priority.desc(),
            RuleDB.created_at.asc(),
            RuleDB.id.asc(),
        ).all()

    def get_rule(self, rule_id: str) -> Optional[RuleDB]:
        return self.db.query(RuleDB).filter(RuleDB.id == rule_id).first()

    # =========================================================================
    # USERS
    # =========================================================================

    def get_user(self, user_id: str) -> Optional[UserDB]:
        return self.db.query(UserDB).filter(UserDB.id == user_id).first()

    def lock_user(self, user_id: str) -> Optional[UserDB]:
        """Re-read the user row, locking it for the current transaction."""
        return (
            self.db.query(UserDB)
            .filter(UserDB.id == user_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def debit_credits(self, user_id: str, amount: int) -> int:
        """Atomic guarded decrement. Returns affected rows (0 = not enough credits)."""
        return (
            self.db.query(UserDB)
            .filter(UserDB.id == user_id, UserDB.credits >= amount)
            .update({UserDB.credits: UserDB.credits - amount}, synchronize_session=False)
        )

    def get_credits(self, user_id: str) -> Optional[int]:
        row = self.db.query(UserDB.credits).filter(UserDB.id == user_id).first()
        return row[0] if row else None

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def get_command(self, command_id: str, with_details: bool = False) -> Optional[CommandDB]:
        query = self.db.query(CommandDB).filter(CommandDB.id == command_id)
        if with_details:
            query = query.options(
                joinedload(CommandDB.user),
                joinedload(CommandDB.matched_rule),
                selectinload(CommandDB.approvals).joinedload(ApprovalDB.approver),
            )
        return query.populate_existing().first()

    def create_command(self, user_id: str, command_text: str) -> CommandDB:
        command = CommandDB(
            id=str(uuid4()),
            user_id=user_id,
            command_text=command_text,
            status=CommandStatus.PENDING,
            created_at=utcnow(),
        )
        self.db.add(command)
        self.db.commit()
        return command

    def set_matched_rule(self, command: CommandDB, rule_id: str) -> None:
        command.matched_rule_id = rule_id
        self.db.commit()

    def latest_awaiting_command(self, user_id: str, command_text: str) -> Optional[CommandDB]:
        """The user's most recent own command with this exact text still awaiting approval."""
        return (
            self.db.query(CommandDB)
            .filter(
                CommandDB.user_id == user_id,
                CommandDB.command_text == command_text,
                CommandDB.status == CommandStatus.AWAITING_APPROVAL,
            )
            .order_by(CommandDB.created_at.desc(), CommandDB.id.desc())
            .first()
        )

    def transition_status(
        self,
        command_id: str,
        from_statuses: Iterable[CommandStatus],
        to_status: CommandStatus,
        executed_at: Optional[datetime] = None,
    ) -> int:
        """
        Move a command to `to_status` only if it is currently in one of
        `from_statuses`. Returns affected rows (0 = someone else moved it).
        """
        values = {CommandDB.status: to_status}
        if executed_at is not None:
            values[CommandDB.executed_at] = executed_at
        return (
            self.db.query(CommandDB)
            .filter(CommandDB.id == command_id, CommandDB.status.in_(list(from_statuses)))
            .update(values, synchronize_session=False)
        )

    def list_commands(
        self,
        user_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ):
        """Newest first. `user_id=None` lists everyone's commands."""
        query = self.db.query(CommandDB)
        if user_id:
            query = query.filter(CommandDB.user_id == user_id)
        total = query.count()
        commands = (
            query.options(
                joinedload(CommandDB.user),
                joinedload(CommandDB.matched_rule),
                selectinload(CommandDB.approvals).joinedload(ApprovalDB.approver),
            )
            .order_by(CommandDB.created_at.desc(), CommandDB.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return commands, total

    def awaiting_commands(self, created_before: Optional[datetime] = None) -> List[CommandDB]:
        """Commands awaiting approval, oldest first, with owner/rule/votes loaded."""
        query = self.db.query(CommandDB).filter(
            CommandDB.status == CommandStatus.AWAITING_APPROVAL
        )
        if created_before is not None:
            query = query.filter(CommandDB.created_at < created_before)
        return (
            query.options(
                joinedload(CommandDB.user),
                joinedload(CommandDB.matched_rule),
                selectinload(CommandDB.approvals).joinedload(ApprovalDB.approver),
            )
            .order_by(CommandDB.created_at.asc(), CommandDB.id.asc())
            .all()
        )

    # =========================================================================
    # VOTES
    # =========================================================================

    def find_vote(self, command_id: str, approver_id: str) -> Optional[ApprovalDB]:
        return (
            self.db.query(ApprovalDB)
            .filter(
                ApprovalDB.command_id == command_id,
                ApprovalDB.approver_id == approver_id,
            )
            .first()
        )

    def add_vote(self, command_id: str, approver_id: str, decision: VoteDecision) -> ApprovalDB:
        """
        Insert and commit a vote.

        Raises sqlalchemy.exc.IntegrityError when the approver already voted
        on this command; the session is left for the caller to roll back.
        """
        vote = ApprovalDB(
            id=str(uuid4()),
            command_id=command_id,
            approver_id=approver_id,
            decision=decision,
            created_at=utcnow(),
        )
        self.db.add(vote)
        self.db.commit()
        return vote

    def count_approvals(self, command_id: str) -> int:
        return (
            self.db.query(func.count(ApprovalDB.id))
            .filter(
                ApprovalDB.command_id == command_id,
                ApprovalDB.decision == VoteDecision.APPROVED,
            )
            .scalar()
        ) or 0
