"""
Error taxonomy for the rate card engine.

Every error is scoped to one card or one revision. Validation and configuration
errors carry the complete list of offending records so that a bulk upload can
be fixed in a single pass.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from ..dataclasses import Violation

MAX_RENDERED_VIOLATIONS = 10


class RateEngineError(Exception):
    """Base exception for rate card engine errors"""

    def __init__(self, message: str, violations: Optional[Iterable[Violation]] = None):
        self.message = message
        self.violations: List[Violation] = list(violations or [])
        super().__init__(message)

    def __str__(self) -> str:
        if not self.violations:
            return self.message
        lines = [f"{self.message} ({len(self.violations)} problem(s))"]
        for v in self.violations[:MAX_RENDERED_VIOLATIONS]:
            lines.append(f"  {v.render()}")
        extra = len(self.violations) - MAX_RENDERED_VIOLATIONS
        if extra > 0:
            lines.append(f"  ...and {extra} more errors")
        return "\n".join(lines)

    def as_dict(self) -> dict:
        return {
            "detail": self.message,
            "errors": [v.as_dict() for v in self.violations],
        }


class ValidationError(RateEngineError):
    """Raised when rate entries or card data are malformed; nothing is written"""
    pass


class ConfigurationError(RateEngineError):
    """Raised when a profit rule set is incomplete or ambiguous"""
    pass


class DependencyError(RateEngineError):
    """Raised when a parent card or parent revision is missing at derivation time"""
    pass


class PreconditionError(RateEngineError):
    """Raised when an operation is attempted on a card in the wrong state"""
    pass


class ConcurrencyError(RateEngineError):
    """Raised when two writers collide on the same (card, revision) key"""
    pass


class RateNotFound(RateEngineError):
    """Raised when a number has no rateable entry on the active revision"""
    pass


class CardNotFound(RateEngineError):
    """Raised when a card id does not exist"""
    pass
