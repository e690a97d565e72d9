"""
Command Gateway Services

Decision and execution pipeline for submitted commands:
- RuleEngine: priority-ordered first-match classification, time windows,
  tier thresholds, probe-corpus conflict detection
- ExecutionEngine: atomic credit debit + executed transition
- ApprovalAggregator: one vote per admin, threshold execution, escalation
- SubmissionOrchestrator: submit / resubmit workflow
- RuleService: rule administration
"""

from .errors import (
    GatewayError,
    ValidationError,
    InvalidPatternError,
    NotFoundError,
    ForbiddenError,
    ConflictError,
    InsufficientCreditsError,
    ExecutionFailedError,
)
from .repository import GatewayRepository
from .rule_engine import (
    RuleEngine,
    ConflictReport,
    validate_pattern,
    effective_action,
    required_approvals,
)
from .execution_engine import ExecutionEngine, ExecutionResult
from .approval_aggregator import ApprovalAggregator, VoteOutcome, VoteResult
from .submission import SubmissionOrchestrator, SubmissionResult
from .rule_service import RuleService

__all__ = [
    # Errors
    'GatewayError',
    'ValidationError',
    'InvalidPatternError',
    'NotFoundError',
    'ForbiddenError',
    'ConflictError',
    'InsufficientCreditsError',
    'ExecutionFailedError',
    # Core
    'GatewayRepository',
    'RuleEngine',
    'ConflictReport',
    'validate_pattern',
    'effective_action',
    'required_approvals',
    'ExecutionEngine',
    'ExecutionResult',
    'ApprovalAggregator',
    'VoteOutcome',
    'VoteResult',
    'SubmissionOrchestrator',
    'SubmissionResult',
    'RuleService',
]
