"""
Pattern Learner

Learns from confirmed fixes and suggests them again when a similar
failure recurs. Pattern confidence is blended with the observed success
rate every time a pattern is used, so reliable fixes rise and unreliable
ones fade.

Features:
- Store failure signatures together with the fix that resolved them
- Candidate lookup through tool, category and selector-shape indices
- Exact or fuzzy (word Jaccard) signature matching
- Online confidence updates from usage outcomes
- Bounded store with lowest-value eviction and JSON snapshot persistence
"""

import threading
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from resilience.candidates import clamp_confidence
from resilience.error_collector import FailureRecord, ErrorCategory
from resilience.signature import normalize_message, normalize_selector, jaccard_similarity
from utils.config import settings
from utils.file_utils import FileUtils
from utils.logger import get_logger


class MatchStrategy(Enum):
    """Signature matching strategies"""
    EXACT = "exact"
    FUZZY = "fuzzy"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class FixInfo:
    """A fix that resolved a failure"""
    kind: str = "code_change"
    before: Optional[str] = None
    after: Optional[str] = None
    description: Optional[str] = None
    file: Optional[str] = None
    confidence: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FixInfo":
        return cls(
            kind=data.get('kind') or data.get('type') or "code_change",
            before=data.get('before'),
            after=data.get('after'),
            description=data.get('description'),
            file=data.get('file'),
            confidence=data.get('confidence'),
        )


@dataclass
class PatternSignature:
    """Normalized failure shape a pattern matches against"""
    tool_name: str
    category: str
    message_pattern: Optional[str] = None
    selector_pattern: Optional[str] = None
    code_location: Optional[Dict[str, Any]] = None


@dataclass
class PatternMetrics:
    """Usage history of a pattern"""
    times_matched: int = 0
    times_successful: int = 0
    last_used: Optional[str] = None
    confidence: float = 0.8

    @property
    def success_rate(self) -> float:
        return self.times_successful / max(self.times_matched, 1)


@dataclass
class Pattern:
    """A learned association between a failure signature and its fix"""
    id: str
    created_at: str
    signature: PatternSignature
    original_error: Dict[str, Any]
    fix: FixInfo
    metrics: PatternMetrics = field(default_factory=PatternMetrics)

    @property
    def retention_score(self) -> float:
        return self.metrics.confidence * max(self.metrics.times_matched, 1)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pattern":
        metrics = data.get('metrics') or {}
        return cls(
            id=data['id'],
            created_at=data.get('created_at') or _now(),
            signature=PatternSignature(**data['signature']),
            original_error=dict(data.get('original_error') or {}),
            fix=FixInfo.from_dict(data.get('fix') or {}),
            metrics=PatternMetrics(
                times_matched=int(metrics.get('times_matched', 0)),
                times_successful=int(metrics.get('times_successful', 0)),
                last_used=metrics.get('last_used'),
                confidence=clamp_confidence(metrics.get('confidence', 0.8)),
            ),
        )


@dataclass
class PatternMatch:
    """A pattern scored against a failure"""
    pattern: Pattern
    similarity: float
    confidence: float
    success_rate: float
    rank_score: float


@dataclass
class FixSuggestion:
    """Best known fix for a failure"""
    fix: FixInfo
    confidence: float
    similarity: float
    pattern_id: str
    original_error: Dict[str, Any]
    success_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fix': asdict(self.fix),
            'confidence': self.confidence,
            'similarity': self.similarity,
            'based_on': {
                'pattern_id': self.pattern_id,
                'original_error': self.original_error,
                'success_rate': self.success_rate,
            },
        }


class PatternLearner:
    """
    Learns from failure patterns and the fixes that resolved them

    The pattern list and its three indices (tool, category, selector
    pattern) always hold the same patterns. Mutation is serialized with a
    re-entrant lock.
    """

    def __init__(self, config: Optional[Dict] = None):
        """Initialize pattern learner"""
        self.config = config or {}
        self.logger = get_logger("pattern_learner")

        # Configuration
        self.max_patterns = self.config.get('max_patterns', settings.max_patterns)
        self.min_confidence = self.config.get('min_confidence', settings.pattern_min_confidence)
        self.default_confidence = self.config.get('default_confidence', settings.default_fix_confidence)
        self.persist_path = self.config.get('persist_path', settings.patterns_file)
        self.auto_persist = self.config.get('auto_persist', settings.auto_persist)

        # Pattern storage
        self._lock = threading.RLock()
        self.patterns: List[Pattern] = []
        self.by_tool: Dict[str, List[Pattern]] = defaultdict(list)
        self.by_category: Dict[str, List[Pattern]] = defaultdict(list)
        self.by_selector: Dict[str, List[Pattern]] = defaultdict(list)
        self.stats = self._empty_stats()

        self._load_patterns()

    def learn(self, record: FailureRecord, fix_info: Union[FixInfo, Dict[str, Any]]) -> Pattern:
        """
        Learn a pattern from a resolved failure

        Args:
            record: The failure that was fixed
            fix_info: What fixed it; ``confidence`` sets the initial confidence

        Returns:
            The stored Pattern
        """
        fix = fix_info if isinstance(fix_info, FixInfo) else FixInfo.from_dict(fix_info)
        initial = self.default_confidence if fix.confidence is None else fix.confidence

        pattern = Pattern(
            id=f"pat_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}",
            created_at=_now(),
            signature=PatternSignature(
                tool_name=record.tool_name,
                category=self._category_value(record.category),
                message_pattern=record.message_signature or normalize_message(record.message),
                selector_pattern=record.selector_signature or normalize_selector(record.selector),
                code_location=asdict(record.code_location) if record.code_location else None,
            ),
            original_error={
                'message': record.message,
                'selector': record.selector,
                'url': record.context.url,
            },
            fix=fix,
            metrics=PatternMetrics(confidence=clamp_confidence(initial)),
        )

        with self._lock:
            self._store_pattern(pattern)
            self.stats['learned_fixes'] += 1

        if self.auto_persist:
            self.persist()

        self.logger.info(
            f"Learned new pattern: {pattern.signature.tool_name} - {pattern.signature.category}",
            pattern_id=pattern.id,
            fix_kind=fix.kind,
        )
        return pattern

    def find_similar(self, record: FailureRecord, max_results: int = 5,
                     min_confidence: Optional[float] = None,
                     strategy: MatchStrategy = MatchStrategy.FUZZY) -> List[PatternMatch]:
        """
        Find learned patterns similar to a failure

        Args:
            record: Failure to match
            max_results: Maximum number of matches returned
            min_confidence: Minimum similarity for a pattern to qualify
            strategy: EXACT or FUZZY signature comparison

        Returns:
            Matches sorted by similarity x confidence x success rate
        """
        threshold = self.min_confidence if min_confidence is None else min_confidence
        strategy = MatchStrategy(strategy)

        matches = []
        with self._lock:
            for pattern in self._get_candidates(record):
                similarity = self.calculate_similarity(record, pattern, strategy)
                if similarity < threshold:
                    continue

                metrics = pattern.metrics
                success_rate = metrics.success_rate if metrics.times_matched else 0.5
                matches.append(PatternMatch(
                    pattern=pattern,
                    similarity=similarity,
                    confidence=clamp_confidence(similarity * metrics.confidence),
                    success_rate=round(success_rate, 4),
                    rank_score=similarity * metrics.confidence * success_rate,
                ))

            matches.sort(key=lambda m: m.rank_score, reverse=True)
            results = matches[:max_results]

            if results:
                self.stats['successful_matches'] += 1
            else:
                self.stats['failed_matches'] += 1

        return results

    def get_suggested_fix(self, record: FailureRecord) -> Optional[FixSuggestion]:
        """Best fix from the single top-ranked pattern, if any."""
        matches = self.find_similar(record, max_results=1)
        if not matches:
            return None

        best = matches[0]
        return FixSuggestion(
            fix=best.pattern.fix,
            confidence=best.confidence,
            similarity=best.similarity,
            pattern_id=best.pattern.id,
            original_error=dict(best.pattern.original_error),
            success_rate=best.success_rate,
        )

    def record_usage(self, pattern_id: str, successful: bool) -> bool:
        """
        Record the outcome of applying a pattern's fix

        Confidence becomes ``0.5 * confidence + 0.5 * success_rate``.

        Returns:
            False when the pattern is unknown
        """
        with self._lock:
            pattern = self.get_pattern_by_id(pattern_id)
            if pattern is None:
                return False

            metrics = pattern.metrics
            metrics.times_matched += 1
            if successful:
                metrics.times_successful += 1
            metrics.last_used = _now()
            metrics.confidence = clamp_confidence(0.5 * metrics.confidence + 0.5 * metrics.success_rate)

        if self.auto_persist:
            self.persist()

        self.logger.debug(
            f"Pattern {pattern_id} used ({'success' if successful else 'failure'}), "
            f"confidence now {metrics.confidence}"
        )
        return True

    def get_patterns(self) -> List[Pattern]:
        with self._lock:
            return list(self.patterns)

    def get_pattern_by_id(self, pattern_id: str) -> Optional[Pattern]:
        with self._lock:
            return next((p for p in self.patterns if p.id == pattern_id), None)

    def get_patterns_by_tool(self, tool_name: str) -> List[Pattern]:
        with self._lock:
            return list(self.by_tool.get(tool_name, []))

    def get_patterns_by_category(self, category: Union[ErrorCategory, str]) -> List[Pattern]:
        with self._lock:
            return list(self.by_category.get(self._category_value(category), []))

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            attempts = self.stats['successful_matches'] + self.stats['failed_matches']
            return {
                **self.stats,
                'total_patterns': len(self.patterns),
                'patterns_by_tool': {k: len(v) for k, v in self.by_tool.items() if v},
                'patterns_by_category': {k: len(v) for k, v in self.by_category.items() if v},
                'match_rate': round(self.stats['successful_matches'] / attempts * 100, 1)
                if attempts else None,
            }

    def clear(self):
        """Drop every learned pattern."""
        with self._lock:
            self.patterns.clear()
            self._rebuild_indices()
            self.stats['total_patterns'] = 0

        if self.auto_persist:
            self.persist()

    def persist(self) -> bool:
        """Write the snapshot document; failures are logged, never raised."""
        if not self.persist_path:
            return False

        try:
            with self._lock:
                snapshot = {
                    'patterns': [p.to_dict() for p in self.patterns],
                    'stats': dict(self.stats),
                    'savedAt': _now(),
                }
            FileUtils.write_json(self.persist_path, snapshot)
            return True
        except Exception as e:
            self.logger.warning(f"Failed to persist patterns: {e}")
            return False

    @staticmethod
    def calculate_similarity(record: FailureRecord, pattern: Pattern,
                             strategy: MatchStrategy = MatchStrategy.FUZZY) -> float:
        """Weighted tool (3), category (3), message (2) and selector (2) similarity."""
        signature = pattern.signature
        fuzzy = strategy == MatchStrategy.FUZZY
        score = 0.0

        if record.tool_name == signature.tool_name:
            score += 3
        if PatternLearner._category_value(record.category) == signature.category:
            score += 3

        message_pattern = record.message_signature or normalize_message(record.message)
        if message_pattern == signature.message_pattern:
            score += 2
        elif fuzzy:
            score += 2 * jaccard_similarity(message_pattern, signature.message_pattern)

        selector_pattern = record.selector_signature or normalize_selector(record.selector)
        if selector_pattern and selector_pattern == signature.selector_pattern:
            score += 2
        elif fuzzy and selector_pattern and signature.selector_pattern:
            score += 2 * jaccard_similarity(selector_pattern, signature.selector_pattern)

        return round(score / 10, 4)

    def _get_candidates(self, record: FailureRecord) -> List[Pattern]:
        seen = set()
        candidates = []
        selector_pattern = record.selector_signature or normalize_selector(record.selector)

        buckets = [
            self.by_tool.get(record.tool_name, []),
            self.by_category.get(self._category_value(record.category), []),
            self.by_selector.get(selector_pattern, []) if selector_pattern else [],
        ]
        for bucket in buckets:
            for pattern in bucket:
                if pattern.id not in seen:
                    seen.add(pattern.id)
                    candidates.append(pattern)
        return candidates

    def _store_pattern(self, pattern: Pattern):
        self.patterns.append(pattern)

        if len(self.patterns) > self.max_patterns:
            while len(self.patterns) > self.max_patterns:
                # lowest retention score goes first, oldest on ties
                victim = min(range(len(self.patterns)),
                             key=lambda i: (self.patterns[i].retention_score, i))
                evicted = self.patterns.pop(victim)
                self.logger.debug(f"Evicted pattern {evicted.id}")
            self._rebuild_indices()
        else:
            self._add_to_indices(pattern)

        self.stats['total_patterns'] = len(self.patterns)

    def _add_to_indices(self, pattern: Pattern):
        signature = pattern.signature
        self.by_tool[signature.tool_name].append(pattern)
        self.by_category[signature.category].append(pattern)
        if signature.selector_pattern:
            self.by_selector[signature.selector_pattern].append(pattern)

    def _rebuild_indices(self):
        self.by_tool.clear()
        self.by_category.clear()
        self.by_selector.clear()
        for pattern in self.patterns:
            self._add_to_indices(pattern)

    @staticmethod
    def _category_value(category: Union[ErrorCategory, str]) -> str:
        return category.value if isinstance(category, ErrorCategory) else str(category)

    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {
            'total_patterns': 0,
            'successful_matches': 0,
            'failed_matches': 0,
            'learned_fixes': 0,
        }

    def _load_patterns(self):
        if not self.persist_path or not FileUtils.file_exists(self.persist_path):
            return

        try:
            data = FileUtils.read_json(self.persist_path)
            with self._lock:
                for item in data.get('patterns') or []:
                    self._store_pattern(Pattern.from_dict(item))
                self.stats.update(data.get('stats') or {})
                self.stats['total_patterns'] = len(self.patterns)
            self.logger.info(f"Loaded {len(self.patterns)} patterns")
        except Exception as e:
            self.logger.warning(f"Failed to load patterns: {e}")
