"""
Error Collector

Captures, categorizes and stores every failed automation operation so the
rest of the self-healing core can reason about failure history.

Features:
- Categorization against a fixed, ordered rule list (first match wins)
- Redaction of sensitive parameters before anything is stored
- Code location extraction from the exception traceback
- Indices by tool and by category with FIFO eviction at capacity
- Similarity search over normalized failure signatures
- Best-effort JSON snapshot persistence
"""

import re
import threading
import time
import traceback
import uuid
from collections import defaultdict
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern, Tuple, Union

from resilience.signature import normalize_message, normalize_selector, word_overlap
from utils.config import settings
from utils.file_utils import FileUtils
from utils.logger import get_logger


class ErrorCategory(Enum):
    """Failure categories for classification"""
    SELECTOR_NOT_FOUND = "selector-not-found"
    SELECTOR_INVALID = "selector-invalid"
    ELEMENT_NOT_CLICKABLE = "element-not-clickable"
    ELEMENT_NOT_VISIBLE = "element-not-visible"
    TIMEOUT = "timeout"
    NAVIGATION_FAILED = "navigation-failed"
    NETWORK_ERROR = "network-error"
    BROWSER_NOT_INITIALIZED = "browser-not-initialized"
    CAPTCHA_FAILED = "captcha-failed"
    JAVASCRIPT_ERROR = "javascript-error"
    PERMISSION_DENIED = "permission-denied"
    FILE_NOT_FOUND = "file-not-found"
    UNKNOWN = "unknown"


# Ordered: overlapping messages resolve to the first rule that matches
ERROR_RULES: List[Tuple[Pattern, ErrorCategory]] = [
    (re.compile(r'not found|no element|cannot find', re.IGNORECASE), ErrorCategory.SELECTOR_NOT_FOUND),
    (re.compile(r'invalid selector|syntax error in selector', re.IGNORECASE), ErrorCategory.SELECTOR_INVALID),
    (re.compile(r'not clickable|click intercepted|not an element', re.IGNORECASE),
     ErrorCategory.ELEMENT_NOT_CLICKABLE),
    (re.compile(r'not visible|hidden|display.*none', re.IGNORECASE), ErrorCategory.ELEMENT_NOT_VISIBLE),
    (re.compile(r'timeout|timed out|exceeded', re.IGNORECASE), ErrorCategory.TIMEOUT),
    (re.compile(r'navigation|goto|navigate', re.IGNORECASE), ErrorCategory.NAVIGATION_FAILED),
    (re.compile(r'network|fetch|request failed|ERR_', re.IGNORECASE), ErrorCategory.NETWORK_ERROR),
    (re.compile(r'browser not initialized|call browser_init', re.IGNORECASE),
     ErrorCategory.BROWSER_NOT_INITIALIZED),
    (re.compile(r'captcha|turnstile|recaptcha', re.IGNORECASE), ErrorCategory.CAPTCHA_FAILED),
    (re.compile(r'javascript|evaluate|execution context', re.IGNORECASE), ErrorCategory.JAVASCRIPT_ERROR),
    (re.compile(r'permission|access denied|forbidden', re.IGNORECASE), ErrorCategory.PERMISSION_DENIED),
    (re.compile(r'ENOENT|file not found|no such file', re.IGNORECASE), ErrorCategory.FILE_NOT_FOUND),
]

SENSITIVE_FIELDS = ('password', 'token', 'secret', 'key', 'auth', 'credential')
REDACTED = '[REDACTED]'

DEPENDENCY_PATHS = ('site-packages', 'dist-packages', 'node_modules')


def categorize(message: Optional[str]) -> ErrorCategory:
    """Categorize an error message, UNKNOWN when no rule matches."""
    if not message:
        return ErrorCategory.UNKNOWN
    for pattern, category in ERROR_RULES:
        if pattern.search(message):
            return category
    return ErrorCategory.UNKNOWN


def redact_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Copy ``params`` with sensitive values replaced."""
    redacted = dict(params or {})
    for key in redacted:
        if any(sensitive in str(key).lower() for sensitive in SENSITIVE_FIELDS):
            redacted[key] = REDACTED
    return redacted


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CodeLocation:
    """Where in the host code a failure originated"""
    file: str
    line: int
    function: Optional[str] = None
    raw: Optional[str] = None


@dataclass
class FailureContext:
    """Redacted context captured with a failure"""
    params: Dict[str, Any] = field(default_factory=dict)
    url: Optional[str] = None
    selector: Optional[str] = None
    page_title: Optional[str] = None


@dataclass
class FailureRecord:
    """A single captured failure"""
    id: str
    timestamp: str
    tool_name: str
    category: ErrorCategory
    message: str
    message_signature: Optional[str] = None
    selector_signature: Optional[str] = None
    code_location: Optional[CodeLocation] = None
    context: FailureContext = field(default_factory=FailureContext)
    resolved: bool = False
    fix: Optional[Dict[str, Any]] = None
    resolved_at: Optional[str] = None

    @property
    def selector(self) -> Optional[str]:
        return self.context.selector

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['category'] = self.category.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailureRecord":
        location = data.get('code_location')
        try:
            category = ErrorCategory(data.get('category'))
        except ValueError:
            category = ErrorCategory.UNKNOWN

        return cls(
            id=data['id'],
            timestamp=data.get('timestamp') or _now(),
            tool_name=data.get('tool_name', ''),
            category=category,
            message=data.get('message', ''),
            message_signature=data.get('message_signature'),
            selector_signature=data.get('selector_signature'),
            code_location=CodeLocation(**location) if location else None,
            context=FailureContext(**(data.get('context') or {})),
            resolved=bool(data.get('resolved', False)),
            fix=data.get('fix'),
            resolved_at=data.get('resolved_at'),
        )


@dataclass
class SimilarError:
    """A stored failure resembling the one being analyzed"""
    record: FailureRecord
    similarity: float
    was_resolved: bool
    fix: Optional[Dict[str, Any]] = None


class ErrorCollector:
    """
    Captures and manages all tool failures

    Records are held in three indices (all, by tool, by category) that
    always contain the same set of records. Mutation is serialized with a
    re-entrant lock so concurrent browser sessions can share one store.
    """

    def __init__(self, config: Optional[Dict] = None):
        """Initialize error collector"""
        self.config = config or {}
        self.logger = get_logger("error_collector")

        # Configuration
        self.max_errors = self.config.get('max_errors', settings.max_errors)
        self.persist_limit = self.config.get('persist_limit', settings.errors_persist_limit)
        self.persist_path = self.config.get('persist_path', settings.errors_file)
        self.auto_persist = self.config.get('auto_persist', settings.auto_persist)
        self.similarity_threshold = self.config.get('similarity_threshold', settings.similarity_threshold)

        # Error storage
        self._lock = threading.RLock()
        self.errors: List[FailureRecord] = []
        self.errors_by_tool: Dict[str, List[FailureRecord]] = defaultdict(list)
        self.errors_by_category: Dict[ErrorCategory, List[FailureRecord]] = defaultdict(list)
        self.stats = self._empty_stats()

        self._load_persisted_errors()

    def capture(self, tool_name: str, error: Union[BaseException, str],
                context: Optional[Dict[str, Any]] = None) -> FailureRecord:
        """
        Capture a failure with its context

        Args:
            tool_name: Name of the operation that failed
            error: Exception or error message
            context: Optional ``params``, ``url``, ``selector`` and ``page_title``

        Returns:
            The stored FailureRecord
        """
        context = context or {}
        message = self._error_message(error)
        params = context.get('params') or {}
        selector = context.get('selector') or params.get('selector')

        record = FailureRecord(
            id=f"err_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}",
            timestamp=_now(),
            tool_name=tool_name,
            category=self._safe_categorize(message),
            message=message,
            message_signature=self._message_signature(message, selector),
            selector_signature=normalize_selector(selector),
            code_location=self._extract_code_location(error),
            context=FailureContext(
                params=redact_params(params),
                url=context.get('url'),
                selector=selector,
                page_title=context.get('page_title'),
            ),
        )

        with self._lock:
            self._store_error(record)
            self._update_stats()

        if self.auto_persist:
            self.persist()

        self.logger.info(
            f"Captured: {tool_name} - {record.category.value} - {message[:100]}",
            error_id=record.id,
            category=record.category.value,
        )
        return record

    def get_errors(self) -> List[FailureRecord]:
        with self._lock:
            return list(self.errors)

    def get_errors_by_tool(self, tool_name: str) -> List[FailureRecord]:
        with self._lock:
            return list(self.errors_by_tool.get(tool_name, []))

    def get_errors_by_category(self, category: Union[ErrorCategory, str]) -> List[FailureRecord]:
        with self._lock:
            return list(self.errors_by_category.get(ErrorCategory(category), []))

    def get_recent_errors(self, count: int = 10) -> List[FailureRecord]:
        with self._lock:
            return self.errors[-count:] if count > 0 else []

    def get_unresolved_errors(self) -> List[FailureRecord]:
        with self._lock:
            return [e for e in self.errors if not e.resolved]

    def get_error_by_id(self, record_id: str) -> Optional[FailureRecord]:
        with self._lock:
            return next((e for e in self.errors if e.id == record_id), None)

    def mark_resolved(self, record_id: str, fix: Optional[Dict[str, Any]] = None) -> bool:
        """Mark a captured failure as resolved by ``fix``."""
        fix = fix or {}
        with self._lock:
            record = self.get_error_by_id(record_id)
            if record is None:
                return False

            record.resolved = True
            record.resolved_at = _now()
            record.fix = fix
            self.stats['fixes_applied'] += 1
            if fix.get('success'):
                self.stats['fixes_successful'] += 1

        if self.auto_persist:
            self.persist()
        return True

    def find_similar_errors(self, record: FailureRecord,
                            threshold: Optional[float] = None) -> List[SimilarError]:
        """
        Find stored failures similar to ``record``

        Similarity is a weighted average of same tool (3), same category
        (3), identical normalized selector (2) and message signature word
        overlap (2).
        """
        threshold = self.similarity_threshold if threshold is None else threshold

        similar = []
        for stored in self.get_errors():
            if stored.id == record.id:
                continue
            similarity = self.calculate_similarity(record, stored)
            if similarity >= threshold:
                similar.append(SimilarError(
                    record=stored,
                    similarity=similarity,
                    was_resolved=stored.resolved,
                    fix=stored.fix,
                ))

        similar.sort(key=lambda s: s.similarity, reverse=True)
        return similar

    @staticmethod
    def calculate_similarity(first: FailureRecord, second: FailureRecord) -> float:
        score = 0.0
        if first.tool_name == second.tool_name:
            score += 3
        if first.category == second.category:
            score += 3
        if first.selector_signature and first.selector_signature == second.selector_signature:
            score += 2
        score += 2 * word_overlap(first.message_signature or first.message,
                                  second.message_signature or second.message)
        return round(score / 10, 4)

    def clear(self):
        """Drop every stored failure and reset statistics."""
        with self._lock:
            self.errors.clear()
            self.errors_by_tool.clear()
            self.errors_by_category.clear()
            self.stats = self._empty_stats()

        if self.auto_persist:
            self.persist()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            applied = self.stats['fixes_applied']
            return {
                **self.stats,
                'errors_by_hour': dict(self.stats['errors_by_hour']),
                'errors_by_tool': {k: len(v) for k, v in self.errors_by_tool.items() if v},
                'errors_by_category': {k.value: len(v) for k, v in self.errors_by_category.items() if v},
                'stored_errors': len(self.errors),
                'unresolved_count': sum(1 for e in self.errors if not e.resolved),
                'resolution_rate': round(self.stats['fixes_successful'] / applied * 100, 1)
                if applied else None,
            }

    def persist(self) -> bool:
        """Write the snapshot document; failures are logged, never raised."""
        if not self.persist_path:
            return False

        try:
            with self._lock:
                snapshot = {
                    'errors': [e.to_dict() for e in self.errors[-self.persist_limit:]],
                    'stats': {**self.stats, 'errors_by_hour': dict(self.stats['errors_by_hour'])},
                    'savedAt': _now(),
                }
            FileUtils.write_json(self.persist_path, snapshot)
            return True
        except Exception as e:
            self.logger.warning(f"Failed to persist errors: {e}")
            return False

    def _store_error(self, record: FailureRecord):
        self.errors.append(record)
        self.errors_by_tool[record.tool_name].append(record)
        self.errors_by_category[record.category].append(record)

        while len(self.errors) > self.max_errors:
            evicted = self.errors.pop(0)
            self._remove_from_index(self.errors_by_tool, evicted.tool_name, evicted)
            self._remove_from_index(self.errors_by_category, evicted.category, evicted)

    @staticmethod
    def _remove_from_index(index: Dict[Any, List[FailureRecord]], key: Any, record: FailureRecord):
        bucket = index.get(key)
        if not bucket:
            return
        index[key] = [r for r in bucket if r is not record]
        if not index[key]:
            del index[key]

    def _update_stats(self):
        self.stats['total_errors'] += 1
        self.stats['total_captured'] += 1
        hour = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H')
        self.stats['errors_by_hour'][hour] = self.stats['errors_by_hour'].get(hour, 0) + 1

    def _safe_categorize(self, message: str) -> ErrorCategory:
        try:
            return categorize(message)
        except Exception as e:
            self.logger.warning(f"Categorization failed: {e}")
            return ErrorCategory.UNKNOWN

    @staticmethod
    def _error_message(error: Union[BaseException, str]) -> str:
        if isinstance(error, BaseException):
            return str(error) or type(error).__name__
        return str(error)

    @staticmethod
    def _message_signature(message: str, selector: Optional[str]) -> Optional[str]:
        """Normalized message with the failing selector reduced to its shape."""
        if selector and selector in message:
            message = message.replace(selector, normalize_selector(selector))
        return normalize_message(message)

    @staticmethod
    def _extract_code_location(error: Union[BaseException, str]) -> Optional[CodeLocation]:
        """First traceback frame, innermost first, outside dependency paths."""
        if not isinstance(error, BaseException) or error.__traceback__ is None:
            return None

        for frame in reversed(traceback.extract_tb(error.__traceback__)):
            if any(marker in frame.filename for marker in DEPENDENCY_PATHS):
                continue
            return CodeLocation(
                file=frame.filename,
                line=frame.lineno,
                function=frame.name,
                raw=f'File "{frame.filename}", line {frame.lineno}, in {frame.name}',
            )
        return None

    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {
            'total_errors': 0,
            'total_captured': 0,
            'errors_by_hour': {},
            'fixes_applied': 0,
            'fixes_successful': 0,
        }

    def _load_persisted_errors(self):
        if not self.persist_path or not FileUtils.file_exists(self.persist_path):
            return

        try:
            data = FileUtils.read_json(self.persist_path)
            with self._lock:
                for item in data.get('errors') or []:
                    self._store_error(FailureRecord.from_dict(item))
                self.stats.update(data.get('stats') or {})
            self.logger.info(f"Loaded {len(self.errors)} persisted errors")
        except Exception as e:
            self.logger.warning(f"Failed to load persisted errors: {e}")
