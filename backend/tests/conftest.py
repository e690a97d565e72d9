"""
Shared fixtures: an in-memory SQLite database per test plus small factories
for users, rules and commands.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models.db_models import (
    ApprovalDB,
    CommandDB,
    CommandStatus,
    RuleAction,
    RuleDB,
    UserDB,
    UserRole,
    UserTier,
    VoteDecision,
    utcnow,
)


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_user(db):
    def _make_user(
        name="user",
        role=UserRole.MEMBER,
        tier=UserTier.JUNIOR,
        credits=10,
        email=None,
        api_key_hash=None,
    ) -> UserDB:
        user = UserDB(
            id=str(uuid4()),
            name=name,
            email=email,
            role=role.value if isinstance(role, UserRole) else role,
            tier=tier.value if isinstance(tier, UserTier) else tier,
            credits=credits,
            api_key_hash=api_key_hash,
        )
        db.add(user)
        db.commit()
        return user
    return _make_user


@pytest.fixture
def make_rule(db):
    # Monotonic creation times so tie-breaks are predictable
    counter = {"n": 0}

    def _make_rule(
        pattern,
        action=RuleAction.AUTO_ACCEPT,
        priority=0,
        approval_threshold=1,
        time_restrictions=None,
    ) -> RuleDB:
        counter["n"] += 1
        rule = RuleDB(
            id=str(uuid4()),
            pattern=pattern,
            action=action,
            priority=priority,
            approval_threshold=approval_threshold,
            time_restrictions=time_restrictions,
            created_at=utcnow() - timedelta(hours=1) + timedelta(seconds=counter["n"]),
        )
        db.add(rule)
        db.commit()
        return rule
    return _make_rule


@pytest.fixture
def make_command(db):
    def _make_command(
        user,
        text,
        status=CommandStatus.AWAITING_APPROVAL,
        rule=None,
        created_at=None,
    ) -> CommandDB:
        command = CommandDB(
            id=str(uuid4()),
            user_id=user.id,
            command_text=text,
            status=status,
            matched_rule_id=rule.id if rule else None,
            created_at=created_at or utcnow(),
        )
        db.add(command)
        db.commit()
        return command
    return _make_command


@pytest.fixture
def add_vote(db):
    def _add_vote(command, approver, decision=VoteDecision.APPROVED) -> ApprovalDB:
        vote = ApprovalDB(
            id=str(uuid4()),
            command_id=command.id,
            approver_id=approver.id,
            decision=decision,
            created_at=utcnow(),
        )
        db.add(vote)
        db.commit()
        return vote
    return _add_vote


@pytest.fixture
def admins(make_user):
    return [
        make_user(name=f"admin-{i}", role=UserRole.ADMIN, tier=UserTier.LEAD, credits=1000)
        for i in range(3)
    ]
