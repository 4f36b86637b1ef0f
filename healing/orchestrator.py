"""
Healing Orchestrator

Per-operation state machine tying the self-healing components together.

Flow:
- ATTEMPT: run the operation
- SUCCESS: validate the result, learn from any heal, update statistics
- FAILURE: capture and diagnose; for locator failures try one learned or
  freshly healed selector and retry exactly once

The orchestrator owns its stores, so hosts create one instance per
session or per process depending on the isolation they need.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from resilience.candidates import Candidate
from resilience.dom import DomQueryable
from resilience.element_finder import ElementFinder
from resilience.error_collector import ErrorCategory, ErrorCollector, FailureRecord
from resilience.exceptions import HealingCancelledError, OperationFailedError
from resilience.pattern_learner import FixInfo, FixSuggestion, PatternLearner
from resilience.result_validator import ResultValidator, ValidationResult
from resilience.selector_healer import SelectorHealer
from healing.diagnostics import FailureDiagnostic, build_diagnostic
from healing.metrics import ExecutionStats
from utils.config import settings
from utils.logger import get_logger


Operation = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]

# Categories where a different selector can plausibly fix the failure
LOCATOR_CATEGORIES = frozenset({
    ErrorCategory.SELECTOR_NOT_FOUND,
    ErrorCategory.SELECTOR_INVALID,
    ErrorCategory.ELEMENT_NOT_VISIBLE,
})

SELECTOR_SUBSTITUTION = "selector_substitution"


class OperationState(Enum):
    """Operation lifecycle states"""
    ATTEMPT = "attempt"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class HealProvenance:
    """Marker attached to a result recovered by a selector substitution"""
    original_selector: str
    healed_selector: str
    strategy: str
    confidence: float
    pattern_id: Optional[str] = None
    healed: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'healed': self.healed,
            'original_selector': self.original_selector,
            'healed_selector': self.healed_selector,
            'strategy': self.strategy,
            'confidence': self.confidence,
            'pattern_id': self.pattern_id,
        }


@dataclass
class OperationOutcome:
    """Terminal outcome of one orchestrated operation"""
    tool_name: str
    state: OperationState
    result: Any = None
    error: Any = None
    validation: Optional[ValidationResult] = None
    diagnostic: Optional[FailureDiagnostic] = None
    healing: Optional[HealProvenance] = None
    record_id: Optional[str] = None
    retry_error: Any = None
    cancelled: bool = False
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.state == OperationState.SUCCESS

    @property
    def healed(self) -> bool:
        return self.healing is not None

    def raise_for_failure(self) -> "OperationOutcome":
        """Raise OperationFailedError unless the operation succeeded."""
        if not self.success:
            raise OperationFailedError(
                f"{self.tool_name} failed: {self.error}",
                original_error=self.error,
                diagnostic=self.diagnostic,
            )
        return self


@dataclass
class _HealAttempt:
    """Mutable progress of the single heal-and-retry step"""
    alternatives: List[str] = field(default_factory=list)
    rejected_patterns: List[str] = field(default_factory=list)
    pattern_id: Optional[str] = None
    candidate: Optional[Candidate] = None
    retried: bool = False
    result: Any = None
    error: Any = None


class HealingOrchestrator:
    """
    Self-healing execution wrapper for automation operations

    Components can be injected; otherwise each is built from its section
    of ``config`` ('error_collector', 'pattern_learner', 'result_validator').
    """

    def __init__(self, config: Optional[Dict] = None,
                 error_collector: Optional[ErrorCollector] = None,
                 pattern_learner: Optional[PatternLearner] = None,
                 selector_healer: Optional[SelectorHealer] = None,
                 element_finder: Optional[ElementFinder] = None,
                 result_validator: Optional[ResultValidator] = None,
                 stats: Optional[ExecutionStats] = None):
        """Initialize the orchestrator and its stores"""
        self.config = config or {}
        self.logger = get_logger("healing_orchestrator")

        self.error_collector = error_collector or ErrorCollector(self.config.get('error_collector', {}))
        self.pattern_learner = pattern_learner or PatternLearner(self.config.get('pattern_learner', {}))
        self.selector_healer = selector_healer or SelectorHealer()
        self.element_finder = element_finder or ElementFinder()
        self.result_validator = result_validator or ResultValidator(self.config.get('result_validator', {}))
        self.stats = stats or ExecutionStats()

        # Configuration
        self.auto_heal_enabled = self.config.get('auto_heal_enabled', settings.auto_heal_enabled)
        self.max_alternatives = self.config.get('max_alternatives', settings.heal_max_alternatives)

        self.logger.info(f"HealingOrchestrator initialized with auto_heal={self.auto_heal_enabled}")

    async def execute(self, tool_name: str, operation: Operation,
                      params: Optional[Mapping[str, Any]] = None,
                      queryable: Optional[DomQueryable] = None,
                      context: Optional[Mapping[str, Any]] = None,
                      cancel_event: Optional[asyncio.Event] = None,
                      timeout: Optional[float] = None) -> OperationOutcome:
        """
        Run an operation with failure capture and one heal-and-retry

        Args:
            tool_name: Name of the tool being run
            operation: Callable taking the params mapping, sync or async
            params: Operation parameters; ``selector`` enables healing
            queryable: DOM capability used to heal broken selectors
            context: Page state (``url``, ``page_title``, ``last_known_text``,
                ``last_known_attributes``) plus validator context keys
            cancel_event: Set to abort the heal-and-retry step
            timeout: Deadline in seconds for the heal-and-retry step

        Returns:
            OperationOutcome in state SUCCESS or FAILURE
        """
        params = dict(params or {})
        context = dict(context or {})
        start = time.monotonic()

        self.logger.debug(f"{OperationState.ATTEMPT.value}: {tool_name}")
        result, error = await self._attempt(operation, params)
        if error is None:
            return await self._on_success(tool_name, result, params, context, start)

        return await self._on_failure(tool_name, operation, params, queryable, context,
                                      result, error, start, cancel_event, timeout)

    async def find_element(self, queryable: DomQueryable, query: str, **options: Any):
        """Semantic element search, see ElementFinder.find."""
        return await self.element_finder.find(queryable, query, **options)

    async def heal_selector(self, queryable: DomQueryable, broken_selector: str,
                            **options: Any) -> List[Candidate]:
        """Alternative selectors for a broken one, see SelectorHealer.heal."""
        return await self.selector_healer.heal(queryable, broken_selector, **options)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'execution': self.stats.get_stats(),
            'errors': self.error_collector.get_stats(),
            'patterns': self.pattern_learner.get_stats(),
            'validation': self.result_validator.get_stats(),
        }

    def shutdown(self):
        """Persist store snapshots."""
        self.error_collector.persist()
        self.pattern_learner.persist()
        self.logger.info("HealingOrchestrator shutdown completed")

    async def _attempt(self, operation: Operation, params: Dict[str, Any]) -> Tuple[Any, Any]:
        """Run the operation once; returns (result, error) with error None on success."""
        try:
            result = operation(params)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return None, e

        if isinstance(result, Mapping) and result.get('success') is False:
            return result, result.get('error') or "Operation reported failure"
        return result, None

    async def _store_call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a store mutation in a worker thread; auto-persist writes happen there."""
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def _on_success(self, tool_name: str, result: Any, params: Dict[str, Any],
                          context: Dict[str, Any], start: float,
                          record: Optional[FailureRecord] = None,
                          attempt: Optional[_HealAttempt] = None) -> OperationOutcome:
        duration = time.monotonic() - start
        provenance = None

        if attempt is not None and attempt.candidate is not None:
            candidate = attempt.candidate
            provenance = HealProvenance(
                original_selector=params['selector'],
                healed_selector=candidate.selector,
                strategy=candidate.strategy,
                confidence=candidate.confidence,
                pattern_id=attempt.pattern_id,
            )
            if isinstance(result, Mapping):
                result = {**result, 'healing': provenance.to_dict()}
            else:
                result = {'success': True, 'result': result, 'healing': provenance.to_dict()}

        validation_context = {**context, 'duration': context.get('duration', duration)}
        validation = self.result_validator.validate(tool_name, result, params, validation_context)

        if provenance is not None and record is not None:
            await self._learn_from_heal(record, provenance)

        self.stats.record(tool_name, True, healed=provenance is not None, duration=duration)
        self.logger.info(
            f"{OperationState.SUCCESS.value}: {tool_name}"
            + (f" (healed '{provenance.original_selector}' -> '{provenance.healed_selector}')"
               if provenance else ""),
            tool_name=tool_name,
            score=validation.score,
        )

        return OperationOutcome(
            tool_name=tool_name,
            state=OperationState.SUCCESS,
            result=result,
            validation=validation if self.result_validator.needs_warning(validation) else None,
            healing=provenance,
            record_id=record.id if record else None,
            duration=duration,
        )

    async def _on_failure(self, tool_name: str, operation: Operation, params: Dict[str, Any],
                          queryable: Optional[DomQueryable], context: Dict[str, Any],
                          result: Any, error: Any, start: float,
                          cancel_event: Optional[asyncio.Event],
                          timeout: Optional[float]) -> OperationOutcome:
        record = await self._store_call(self.error_collector.capture, tool_name, error, {
            'params': params,
            'url': context.get('url'),
            'selector': params.get('selector'),
            'page_title': context.get('page_title'),
        })
        suggestion = self.pattern_learner.get_suggested_fix(record)
        similar = self.error_collector.find_similar_errors(record)

        selector = params.get('selector')
        can_heal = (
            self.auto_heal_enabled
            and queryable is not None
            and bool(selector)
            and record.category in LOCATOR_CATEGORIES
        )
        if not can_heal:
            return self._on_unrecovered(tool_name, record, result, error, start,
                                        suggestion, similar, None)

        attempt = _HealAttempt()
        cancelled = False
        try:
            await self._with_cancellation(
                self._heal_and_retry(attempt, operation, params, queryable, suggestion, context),
                cancel_event, timeout,
            )
        except HealingCancelledError as e:
            cancelled = True
            self.logger.warning(f"Heal-and-retry for {tool_name} cancelled: {e}")
        except Exception as e:
            self.logger.exception(f"Heal-and-retry for {tool_name} failed internally: {e}")

        for pattern_id in attempt.rejected_patterns:
            await self._store_call(self.pattern_learner.record_usage, pattern_id, False)

        if not cancelled and attempt.retried and attempt.error is None:
            return await self._on_success(tool_name, attempt.result, params, context, start,
                                          record=record, attempt=attempt)

        if attempt.retried and attempt.pattern_id:
            await self._store_call(self.pattern_learner.record_usage, attempt.pattern_id, False)

        return self._on_unrecovered(tool_name, record, result, error, start,
                                    suggestion, similar, attempt, cancelled=cancelled)

    async def _heal_and_retry(self, attempt: _HealAttempt, operation: Operation,
                              params: Dict[str, Any], queryable: DomQueryable,
                              suggestion: Optional[FixSuggestion], context: Dict[str, Any]):
        broken_selector = params['selector']

        # A learned substitution only applies to the selector it was learned for.
        if (suggestion and suggestion.fix.kind == SELECTOR_SUBSTITUTION and suggestion.fix.after
                and suggestion.fix.before == broken_selector):
            learned = suggestion.fix.after
            attempt.alternatives.append(learned)
            check = await self.selector_healer.test_selector(queryable, learned)
            if check.get('valid'):
                attempt.pattern_id = suggestion.pattern_id
                attempt.candidate = Candidate(
                    selector=learned,
                    confidence=suggestion.confidence,
                    strategy='learned_pattern',
                    reason=f"Learned from pattern {suggestion.pattern_id}",
                    visible=bool(check.get('visible')),
                    tag=check.get('tag'),
                )
            else:
                attempt.rejected_patterns.append(suggestion.pattern_id)

        if attempt.candidate is None:
            alternatives = await self.selector_healer.heal(
                queryable, broken_selector,
                last_known_text=context.get('last_known_text'),
                last_known_attributes=context.get('last_known_attributes'),
                max_alternatives=self.max_alternatives,
            )
            attempt.alternatives.extend(c.selector for c in alternatives)
            if alternatives:
                attempt.candidate = alternatives[0]

        if attempt.candidate is None:
            self.logger.info(f"No alternative selector found for '{broken_selector}'")
            return

        self.logger.info(
            f"Retrying with '{attempt.candidate.selector}' instead of '{broken_selector}'",
            strategy=attempt.candidate.strategy,
            confidence=attempt.candidate.confidence,
        )
        retry_params = {**params, 'selector': attempt.candidate.selector}
        attempt.result, attempt.error = await self._attempt(operation, retry_params)
        attempt.retried = True

    async def _with_cancellation(self, coro: Awaitable[Any], cancel_event: Optional[asyncio.Event],
                                 timeout: Optional[float]) -> Any:
        """Await ``coro`` unless ``cancel_event`` fires or ``timeout`` elapses first."""
        if cancel_event is None and timeout is None:
            return await coro

        if cancel_event is not None and cancel_event.is_set():
            coro.close()
            raise HealingCancelledError("cancellation requested before heal-and-retry started")

        task = asyncio.ensure_future(coro)
        waiters = {task}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        if cancel_event is not None and cancel_event.is_set():
            raise HealingCancelledError("cancellation requested")
        raise HealingCancelledError(f"deadline of {timeout}s exceeded")

    async def _learn_from_heal(self, record: FailureRecord, provenance: HealProvenance):
        if provenance.pattern_id:
            await self._store_call(self.pattern_learner.record_usage, provenance.pattern_id, True)
        else:
            await self._store_call(self.pattern_learner.learn, record, FixInfo(
                kind=SELECTOR_SUBSTITUTION,
                before=provenance.original_selector,
                after=provenance.healed_selector,
                description=f"Replace selector '{provenance.original_selector}' "
                            f"with '{provenance.healed_selector}' ({provenance.strategy})",
            ))

        await self._store_call(self.error_collector.mark_resolved, record.id, {
            'kind': SELECTOR_SUBSTITUTION,
            'before': provenance.original_selector,
            'after': provenance.healed_selector,
            'pattern_id': provenance.pattern_id,
            'success': True,
        })

    def _on_unrecovered(self, tool_name: str, record: FailureRecord, result: Any, error: Any,
                        start: float, suggestion: Optional[FixSuggestion], similar: List[Any],
                        attempt: Optional[_HealAttempt], cancelled: bool = False) -> OperationOutcome:
        duration = time.monotonic() - start
        diagnostic = build_diagnostic(
            record,
            suggestion=suggestion,
            similar=similar,
            heal_attempted=attempt is not None,
            alternatives=attempt.alternatives if attempt else None,
            cancelled=cancelled,
        )

        self.stats.record(tool_name, False, duration=duration, cancelled=cancelled)
        self.logger.warning(
            f"{OperationState.FAILURE.value}: {tool_name} - {record.category.value}",
            tool_name=tool_name,
            error_id=record.id,
            seen_before=diagnostic.seen_before,
        )

        return OperationOutcome(
            tool_name=tool_name,
            state=OperationState.FAILURE,
            result=result,
            error=error,
            diagnostic=diagnostic,
            record_id=record.id,
            retry_error=attempt.error if attempt and attempt.retried else None,
            cancelled=cancelled,
            duration=duration,
        )
