"""
Gateway error taxonomy.

Every error carries the HTTP status the API layer answers with. Validation
and conflict errors are raised before anything is written.
"""
from typing import Any, Dict, List, Optional


class GatewayError(Exception):
    """Base class for all gateway errors."""

    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message}
        body.update(self.extra)
        return body


class ValidationError(GatewayError):
    """Malformed pattern, action, decision or request state."""
    status_code = 400


class InvalidPatternError(ValidationError):
    """Pattern does not compile as a regular expression."""

    def __init__(self, pattern: str, reason: str):
        super().__init__(f"Invalid regex pattern: {reason}", pattern=pattern)
        self.pattern = pattern
        self.reason = reason


class NotFoundError(GatewayError):
    status_code = 404


class ForbiddenError(GatewayError):
    """Role or ownership check failed."""
    status_code = 403


class ConflictError(GatewayError):
    """New rule pattern overlaps existing rules on the probe corpus."""
    status_code = 409

    def __init__(self, message: str, conflicting_rules: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, conflictingRules=conflicting_rules or [])
        self.conflicting_rules = conflicting_rules or []


class InsufficientCreditsError(GatewayError):
    status_code = 403

    def __init__(self, credits: int):
        super().__init__("Insufficient credits.", credits=credits)
        self.credits = credits


class ExecutionFailedError(GatewayError):
    """Transactional debit/update failed. The command keeps its prior state."""
    status_code = 500

    def __init__(self, message: str, command_id: Optional[str] = None, status: Optional[str] = None):
        super().__init__(message, id=command_id, status=status)
        self.command_id = command_id
        self.status = status
