"""
Result Validator

Scores tool results that report success, catching problems the tool
itself does not: empty content, unchanged pages, error pages, slow
execution and healed selectors that should be fixed at the source.
"""

import threading
from collections import Counter, deque
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from resilience.validation_rules import (
    ValidationRule, UNIVERSAL_RULES, VALIDATION_RULES, ERROR, WARNING
)
from utils.config import settings
from utils.logger import get_logger


MAX_SCORE = 100


@dataclass
class ValidationIssue:
    """Issue found while validating a result"""
    issue_type: str
    message: str
    severity: str = WARNING


@dataclass
class ValidationResult:
    """Quality report for one tool result"""
    tool_name: str
    is_valid: bool = True
    score: int = MAX_SCORE
    issues: List[ValidationIssue] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_issue(self, issue_type: str, message: str, severity: str = WARNING, deduction: int = 10):
        self.issues.append(ValidationIssue(issue_type, message, severity))
        self.score = max(0, min(MAX_SCORE, self.score - deduction))
        if severity == ERROR:
            self.is_valid = False

    def add_warning(self, message: str):
        self.warnings.append(message)

    def has_issue(self, issue_type: str) -> bool:
        return any(issue.issue_type == issue_type for issue in self.issues)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ResultValidator:
    """
    Data-driven validator for successful tool results

    Universal rules run for every tool, then the rules registered for the
    tool name. A rule that raises is logged and skipped. Every call is
    recorded in a bounded history used for aggregate statistics.
    """

    def __init__(self, config: Optional[Dict] = None):
        """Initialize result validator"""
        self.config = config or {}
        self.logger = get_logger("result_validator")

        self.universal_rules: List[ValidationRule] = list(
            self.config.get('universal_rules', UNIVERSAL_RULES)
        )
        self.rules: Dict[str, List[ValidationRule]] = {
            tool: list(rules) for tool, rules in self.config.get('rules', VALIDATION_RULES).items()
        }

        history_size = self.config.get('history_size', settings.validation_history_size)
        self._lock = threading.RLock()
        self.history: deque = deque(maxlen=history_size)

    def validate(self, tool_name: str, result: Any, params: Optional[Mapping[str, Any]] = None,
                 context: Optional[Mapping[str, Any]] = None) -> ValidationResult:
        """
        Validate a tool result

        Args:
            tool_name: Name of the tool that produced the result
            result: Result mapping returned by the tool
            params: Parameters the tool was called with
            context: Execution context (``duration`` in seconds, page state)

        Returns:
            ValidationResult with score, issues and validity
        """
        params = params or {}
        context = context or {}
        validation = ValidationResult(tool_name=tool_name)

        if not isinstance(result, Mapping):
            validation.add_warning("Result is not a mapping, nothing to validate")
        elif result.get('success') is False or result.get('error'):
            validation.add_warning("Tool reported failure, handled by the error collector")
        else:
            for rule in self.universal_rules + self.rules.get(tool_name, []):
                self._apply_rule(validation, rule, result, params, context)

        self._record_validation(validation)

        if validation.issues:
            self.logger.info(
                f"Validation of {tool_name}: score {validation.score}, {len(validation.issues)} issues",
                tool_name=tool_name,
                score=validation.score,
                issues=[issue.issue_type for issue in validation.issues],
            )
        return validation

    def register_rule(self, tool_name: str, rule: ValidationRule):
        """Add a rule for a tool, including tools with no built-in rules."""
        with self._lock:
            self.rules.setdefault(tool_name, []).append(rule)

    def needs_warning(self, validation: ValidationResult) -> bool:
        """Whether a successful result should still be reported with issues."""
        return validation.score < MAX_SCORE and bool(validation.issues)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            history = list(self.history)

        if not history:
            return {'total_validations': 0, 'average_score': 0, 'common_issues': []}

        issue_counts = Counter(issue for entry in history for issue in entry['issues'])
        return {
            'total_validations': len(history),
            'average_score': round(sum(entry['score'] for entry in history) / len(history)),
            'common_issues': [
                {'issue': issue, 'count': count} for issue, count in issue_counts.most_common(5)
            ],
        }

    def _apply_rule(self, validation: ValidationResult, rule: ValidationRule,
                    result: Mapping[str, Any], params: Mapping[str, Any], context: Mapping[str, Any]):
        try:
            if rule.applies(result, params, context):
                validation.add_issue(
                    rule.name, rule.render(result, params, context), rule.severity, rule.deduction
                )
        except Exception as e:
            self.logger.warning(f"Validation rule {rule.name} failed for {validation.tool_name}: {e}")

    def _record_validation(self, validation: ValidationResult):
        with self._lock:
            self.history.append({
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'tool_name': validation.tool_name,
                'score': validation.score,
                'issue_count': len(validation.issues),
                'issues': [issue.issue_type for issue in validation.issues],
            })
