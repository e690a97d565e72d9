"""
Rule Engine

Classifies command text against the rule set.

Precedence model: rules are evaluated by priority (highest first), ties in
creation order, and the FIRST rule whose pattern matches wins. An admin can
predict the winning rule by reading priorities alone.

No side effects beyond reading the rules table.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator
from sqlalchemy.orm import Session

from ...models.db_models import RuleAction, RuleDB, UserTier
from .errors import InvalidPatternError
from .repository import GatewayRepository

logger = logging.getLogger(__name__)


# Probe corpus for conflict detection: representative benign and dangerous commands.
# Two patterns conflict when any probe matches both.
CONFLICT_PROBES = (
    "ls -la",
    "cat file.txt",
    "rm -rf /",
    "git status",
    "git log",
    "sudo apt-get install",
    "docker run nginx",
    ":(){ :|:& };:",
    "mkfs.ext4 /dev/sda",
    "echo hello",
    "pwd",
)

# Fraction of the base threshold each tier must collect
TIER_THRESHOLD_FACTORS = {
    UserTier.LEAD.value: 0.5,
    UserTier.SENIOR.value: 0.75,
}


# =============================================================================
# TIME RESTRICTIONS
# =============================================================================

class AutoAcceptWindow(BaseModel):
    """Weekly window during which REQUIRE_APPROVAL relaxes to AUTO_ACCEPT."""
    days: List[int] = Field(..., description="Weekday indices, 0 = Sunday")
    startHour: int = Field(..., ge=0, le=24)
    endHour: int = Field(..., ge=0, le=24)

    @model_validator(mode="after")
    def check_window(self):
        for day in self.days:
            if day < 0 or day > 6:
                raise ValueError(f"Invalid weekday index {day}, expected 0-6")
        if self.startHour > self.endHour:
            raise ValueError("startHour must not be after endHour")
        return self


class TimeRestrictions(BaseModel):
    allowAutoAcceptDuring: Optional[AutoAcceptWindow] = None


def parse_time_restrictions(raw: Optional[Dict[str, Any]]) -> Optional[TimeRestrictions]:
    """Parse stored/requested restrictions. Raises pydantic.ValidationError on bad shape."""
    if not raw:
        return None
    return TimeRestrictions.model_validate(raw)


def weekday_index(moment: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return moment.isoweekday() % 7


def is_within_auto_accept_window(raw: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> bool:
    """True when `now` (local clock) falls inside the half-open [startHour, endHour) window."""
    try:
        restrictions = parse_time_restrictions(raw)
    except PydanticValidationError as e:
        logger.warning(f"Ignoring malformed time restrictions {raw}: {e}")
        return False

    if restrictions is None or restrictions.allowAutoAcceptDuring is None:
        return False

    window = restrictions.allowAutoAcceptDuring
    now = now or datetime.now()
    return (
        weekday_index(now) in window.days
        and window.startHour <= now.hour < window.endHour
    )


# =============================================================================
# PURE RULE LOGIC
# =============================================================================

def validate_pattern(pattern: str) -> re.Pattern:
    """Compile `pattern`, raising InvalidPatternError with the compiler message."""
    try:
        return re.compile(pattern)
    except (re.error, TypeError) as e:
        raise InvalidPatternError(pattern, str(e))


def effective_action(rule: RuleDB, now: Optional[datetime] = None) -> RuleAction:
    """
    The rule's action after applying its time window.

    Only REQUIRE_APPROVAL is affected; AUTO_ACCEPT and AUTO_REJECT ignore
    time restrictions.
    """
    action = RuleAction(rule.action)
    if action == RuleAction.REQUIRE_APPROVAL and is_within_auto_accept_window(rule.time_restrictions, now):
        return RuleAction.AUTO_ACCEPT
    return action


def required_approvals(base_threshold: int, tier: Optional[str]) -> int:
    """
    Votes needed for a requester of `tier`.

    lead: half, senior: three quarters, junior/unknown: full. Never below 1.
    """
    if isinstance(tier, UserTier):
        tier = tier.value
    base = int(base_threshold or 1)
    factor = TIER_THRESHOLD_FACTORS.get(tier)
    if factor is None:
        return max(1, base)
    return max(1, int(base * factor))


@dataclass
class ConflictReport:
    """Result of checking a pattern against the existing rule set."""
    has_conflict: bool
    conflicting_rules: List[RuleDB] = field(default_factory=list)
    # probe string that triggered each conflict, keyed by rule id
    probes: Dict[str, str] = field(default_factory=dict)

    def summary(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": rule.id,
                "pattern": rule.pattern,
                "action": RuleAction(rule.action).value,
                "probe": self.probes.get(rule.id),
            }
            for rule in self.conflicting_rules
        ]


# =============================================================================
# RULE ENGINE
# =============================================================================

class RuleEngine:
    """Rule matching and conflict detection over the rules table."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = GatewayRepository(db)

    def match_command(self, command_text: str) -> Optional[RuleDB]:
        """
        First rule (by precedence) whose pattern matches the text.

        Rules whose pattern no longer compiles are skipped, not fatal.
        """
        for rule in self.repo.list_rules():
            try:
                regex = re.compile(rule.pattern)
            except re.error as e:
                logger.warning(f"Skipping rule {rule.id}: invalid pattern {rule.pattern!r} ({e})")
                continue
            if regex.search(command_text):
                return rule
        return None

    def detect_conflict(self, new_pattern: str, exclude_rule_id: Optional[str] = None) -> ConflictReport:
        """
        Heuristic overlap check on the probe corpus.

        Regex containment is undecidable in general; a conflict is only
        declared when a probe string matches both patterns.
        """
        new_regex = validate_pattern(new_pattern)
        new_hits = [probe for probe in CONFLICT_PROBES if new_regex.search(probe)]

        report = ConflictReport(has_conflict=False)
        if not new_hits:
            return report

        for rule in self.repo.list_rules(exclude_rule_id=exclude_rule_id):
            try:
                existing = re.compile(rule.pattern)
            except re.error:
                continue
            for probe in new_hits:
                if existing.search(probe):
                    report.conflicting_rules.append(rule)
                    report.probes[rule.id] = probe
                    break

        report.has_conflict = bool(report.conflicting_rules)
        return report
