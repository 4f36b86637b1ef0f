"""
Failure Diagnostics

Structured diagnostic attached to an unrecoverable failure: what kind of
failure it was, why it usually happens, the best fix learned so far and
whether it has been seen before.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from resilience.error_collector import ErrorCategory, FailureRecord, SimilarError
from resilience.pattern_learner import FixSuggestion


LIKELY_CAUSES: Dict[ErrorCategory, List[str]] = {
    ErrorCategory.SELECTOR_NOT_FOUND: [
        "Page had not finished loading",
        "Element is generated dynamically",
        "Selector is misspelled or malformed",
        "Element lives inside an iframe",
    ],
    ErrorCategory.SELECTOR_INVALID: [
        "Special characters are not escaped",
        "Brackets or quotes are not closed",
        "Unsupported pseudo-selector",
    ],
    ErrorCategory.ELEMENT_NOT_CLICKABLE: [
        "An overlay or popup covers the element",
        "Element is disabled",
        "Element is outside the viewport",
        "An animation has not finished",
    ],
    ErrorCategory.ELEMENT_NOT_VISIBLE: [
        "Element is hidden (display: none)",
        "Element has zero opacity",
        "Element is outside the viewport",
        "A parent element is hidden",
    ],
    ErrorCategory.TIMEOUT: [
        "Slow network connection",
        "Server is overloaded",
        "Page is very heavy",
        "Element never loads",
    ],
    ErrorCategory.NAVIGATION_FAILED: [
        "URL is wrong or invalid",
        "Server is unavailable",
        "SSL/TLS certificate problem",
        "Too many redirects",
    ],
    ErrorCategory.NETWORK_ERROR: [
        "No network connection",
        "Request blocked by CORS policy",
        "Firewall or proxy is blocking the request",
        "DNS resolution failed",
    ],
    ErrorCategory.BROWSER_NOT_INITIALIZED: [
        "Browser session was never started",
        "Browser crashed",
        "Previous session was not closed properly",
    ],
    ErrorCategory.CAPTCHA_FAILED: [
        "Captcha timed out",
        "Unsupported captcha type",
        "Page structure changed",
    ],
    ErrorCategory.JAVASCRIPT_ERROR: [
        "Syntax error in the script",
        "Undefined variable or function",
        "Script ran in a different page context",
        "Security restriction",
    ],
    ErrorCategory.PERMISSION_DENIED: [
        "File system access denied",
        "Browser permission blocked",
        "Cross-origin restriction",
    ],
    ErrorCategory.FILE_NOT_FOUND: [
        "File path is wrong",
        "File was moved or deleted",
        "Directory does not exist",
    ],
    ErrorCategory.UNKNOWN: [
        "Failure does not match any known pattern, inspect the raw message",
    ],
}


@dataclass
class FailureDiagnostic:
    """Enriched explanation of a failure the core could not recover from"""
    record_id: str
    category: ErrorCategory
    message: str
    likely_causes: List[str] = field(default_factory=list)
    suggested_fix: Optional[FixSuggestion] = None
    seen_before: bool = False
    similar_errors: int = 0
    heal_attempted: bool = False
    alternatives_considered: List[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'record_id': self.record_id,
            'category': self.category.value,
            'message': self.message,
            'likely_causes': list(self.likely_causes),
            'suggested_fix': self.suggested_fix.to_dict() if self.suggested_fix else None,
            'seen_before': self.seen_before,
            'similar_errors': self.similar_errors,
            'heal_attempted': self.heal_attempted,
            'alternatives_considered': list(self.alternatives_considered),
            'cancelled': self.cancelled,
        }


def build_diagnostic(record: FailureRecord, suggestion: Optional[FixSuggestion] = None,
                     similar: Optional[List[SimilarError]] = None, heal_attempted: bool = False,
                     alternatives: Optional[List[str]] = None, cancelled: bool = False) -> FailureDiagnostic:
    """Assemble the diagnostic for a failure record."""
    similar = similar or []
    return FailureDiagnostic(
        record_id=record.id,
        category=record.category,
        message=record.message,
        likely_causes=list(LIKELY_CAUSES.get(record.category, LIKELY_CAUSES[ErrorCategory.UNKNOWN])),
        suggested_fix=suggestion,
        seen_before=bool(similar),
        similar_errors=len(similar),
        heal_attempted=heal_attempted,
        alternatives_considered=list(alternatives or []),
        cancelled=cancelled,
    )
