"""
Command Gateway - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================

class RuleAction(str, Enum):
    """What the gateway does with a command matching a rule."""
    AUTO_ACCEPT = "AUTO_ACCEPT"
    AUTO_REJECT = "AUTO_REJECT"
    REQUIRE_APPROVAL = "REQUIRE_APPROVAL"


class CommandStatus(str, Enum):
    """Command lifecycle. EXECUTED and REJECTED are terminal."""
    PENDING = "pending"
    EXECUTED = "executed"
    REJECTED = "rejected"
    AWAITING_APPROVAL = "awaiting_approval"


class VoteDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class UserRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class UserTier(str, Enum):
    """Requester seniority - scales the approval threshold down."""
    JUNIOR = "junior"
    SENIOR = "senior"
    LEAD = "lead"


class AuditAction(str, Enum):
    """Audit tags written by the gateway core."""
    COMMAND_EXECUTED = "COMMAND_EXECUTED"
    COMMAND_EXECUTION_FAILED = "COMMAND_EXECUTION_FAILED"
    COMMAND_REJECTED = "COMMAND_REJECTED"
    COMMAND_PENDING_APPROVAL = "COMMAND_PENDING_APPROVAL"
    COMMAND_APPROVED = "COMMAND_APPROVED"
    COMMAND_ESCALATED = "COMMAND_ESCALATED"
    RULE_CREATED = "RULE_CREATED"
    RULE_UPDATED = "RULE_UPDATED"
    RULE_DELETED = "RULE_DELETED"


# =============================================================================
# TABLES
# =============================================================================

class UserDB(Base):
    """
    Gateway user.

    Accounts are managed outside the gateway core. The core reads role and
    tier, and only ever changes credits through the execution engine.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=True, index=True)
    api_key_hash = Column(String(255), nullable=True)  # bcrypt
    role = Column(String(20), nullable=False, default=UserRole.MEMBER.value)
    tier = Column(String(20), nullable=False, default=UserTier.JUNIOR.value)
    credits = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    commands = relationship("CommandDB", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


class RuleDB(Base):
    """Pattern-to-action policy entry. Higher priority is evaluated first."""
    __tablename__ = "rules"

    id = Column(String(36), primary_key=True)  # UUID
    pattern = Column(Text, nullable=False)
    action = Column(SQLEnum(RuleAction), nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    approval_threshold = Column(Integer, nullable=False, default=1)

    # {"allowAutoAcceptDuring": {"days": [1, 2, 3, 4, 5], "startHour": 9, "endHour": 18}}
    # days use 0 = Sunday
    time_restrictions = Column(JSON, nullable=True)

    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    created_by = relationship("UserDB")
    commands = relationship("CommandDB", back_populates="matched_rule")

    __table_args__ = (
        Index("ix_rules_priority_created", "priority", "created_at"),
    )


class CommandDB(Base):
    """A submitted command and where it sits in the gateway lifecycle."""
    __tablename__ = "commands"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    command_text = Column(Text, nullable=False)
    status = Column(SQLEnum(CommandStatus), nullable=False, default=CommandStatus.PENDING)

    # Reference, not a copy - the rule row is read again at vote time
    matched_rule_id = Column(String(36), ForeignKey("rules.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    executed_at = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("UserDB", back_populates="commands")
    matched_rule = relationship("RuleDB", back_populates="commands")
    approvals = relationship(
        "ApprovalDB",
        back_populates="command",
        cascade="all, delete-orphan",
        order_by="ApprovalDB.created_at",
    )

    __table_args__ = (
        Index("ix_commands_user_status", "user_id", "status"),
    )


class ApprovalDB(Base):
    """
    One admin vote on one command.

    UNIQUE(command_id, approver_id) is the one-vote-per-admin guarantee.
    Inserts rely on it; any earlier read is only a fast path.
    """
    __tablename__ = "approvals"

    id = Column(String(36), primary_key=True)  # UUID
    command_id = Column(String(36), ForeignKey("commands.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    decision = Column(SQLEnum(VoteDecision), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    command = relationship("CommandDB", back_populates="approvals")
    approver = relationship("UserDB")

    __table_args__ = (
        UniqueConstraint("command_id", "approver_id", name="uq_approvals_command_approver"),
    )


class AuditLogDB(Base):
    """Append-only audit trail. No updates, no deletes."""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), nullable=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
