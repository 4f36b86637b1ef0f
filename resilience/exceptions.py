"""
Self-Healing Exceptions

Exception hierarchy raised at the boundary of the self-healing core.
Failures internal to the core (categorization, persistence, rule
evaluation) are logged and never surface through these types.
"""

from typing import Any, Optional


class SelfHealingError(Exception):
    """Base class for all self-healing errors."""


class OperationFailedError(SelfHealingError):
    """An automation operation failed and could not be recovered."""

    def __init__(self, message: str, original_error: Any = None, diagnostic: Optional[Any] = None):
        super().__init__(message)
        self.original_error = original_error
        self.diagnostic = diagnostic


class HealingCancelledError(SelfHealingError):
    """The heal-and-retry step was aborted by a cancellation signal or deadline."""
