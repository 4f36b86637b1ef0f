"""
Resilience Components

Failure capture, locator healing, pattern learning and result
validation for browser automation.
"""

from .candidates import Candidate
from .dom import DomQueryable, BoundingBox, ElementInfo, PageFunction
from .element_finder import ElementFinder
from .error_collector import ErrorCollector, ErrorCategory, FailureRecord, categorize
from .exceptions import SelfHealingError, OperationFailedError, HealingCancelledError
from .pattern_learner import PatternLearner, FixInfo, FixSuggestion, MatchStrategy
from .result_validator import ResultValidator, ValidationResult
from .selector_healer import SelectorHealer
from .signature import normalize_message, normalize_selector
from .validation_rules import ValidationRule

__version__ = "0.1.0"

__all__ = [
    'Candidate',
    'DomQueryable',
    'BoundingBox',
    'ElementInfo',
    'PageFunction',
    'ElementFinder',
    'ErrorCollector',
    'ErrorCategory',
    'FailureRecord',
    'categorize',
    'SelfHealingError',
    'OperationFailedError',
    'HealingCancelledError',
    'PatternLearner',
    'FixInfo',
    'FixSuggestion',
    'MatchStrategy',
    'ResultValidator',
    'ValidationResult',
    'SelectorHealer',
    'normalize_message',
    'normalize_selector',
    'ValidationRule',
]
