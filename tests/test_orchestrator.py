"""
Test Suite for Healing Orchestrator

End-to-end tests of capture, heal-and-retry, learning from recovered
failures, cancellation and statistics over static login pages.
"""

import asyncio
import threading
import time

import pytest

from healing.orchestrator import HealingOrchestrator, OperationState, SELECTOR_SUBSTITUTION
from resilience.adapters import SoupQueryable
from resilience.error_collector import ErrorCategory, ErrorCollector
from resilience.exceptions import OperationFailedError
from resilience.pattern_learner import PatternLearner
from resilience.selector_healer import SelectorHealer


REDESIGNED_PAGE = """
<html><body>
  <form id="login-form">
    <button id="submit-v3" class="btn">Submit</button>
  </form>
</body></html>
"""

TOOLBAR_PAGE = """
<html><body>
  <div class="toolbar">
    <button id="submit-new">Submit</button>
    <button id="cancel-new">Cancel</button>
  </div>
</body></html>
"""


def make_click(page, delay_on_retry=0.0, original="#submit-old"):
    """Click operation that fails when the selector does not resolve."""
    async def click(params):
        selector = params['selector']
        if delay_on_retry and selector != original:
            await asyncio.sleep(delay_on_retry)
        if await page.query_one(selector) is None:
            raise RuntimeError(f"Element not found: {selector}")
        return {'success': True, 'clicked': selector}
    return click


def always_missing(params):
    raise RuntimeError(f"Element not found: {params.get('selector')}")


class ThreadRecordingCollector(ErrorCollector):
    """Collector whose snapshot writes note the thread and take a while."""

    def __init__(self, config, write_delay=0.0):
        super().__init__(config)
        self.write_delay = write_delay
        self.persist_threads = []

    def persist(self):
        self.persist_threads.append(threading.get_ident())
        time.sleep(self.write_delay)
        return super().persist()


class BrokenHealer(SelectorHealer):
    async def heal(self, queryable, broken_selector, **options):
        raise RuntimeError("heuristic table corrupted")


@pytest.fixture
def orchestrator(store_config):
    return HealingOrchestrator(store_config)


@pytest.fixture
def heal_context():
    return {'last_known_text': "Submit", 'url': "https://shop.test/login"}


class TestSuccessPath:
    """Test cases for operations that succeed on the first attempt."""

    @pytest.mark.asyncio
    async def test_plain_success(self, orchestrator, login_page):
        outcome = await orchestrator.execute("click", make_click(login_page), {'selector': "#submit-new"},
                                             queryable=login_page)

        assert outcome.success is True
        assert outcome.state == OperationState.SUCCESS
        assert outcome.result == {'success': True, 'clicked': "#submit-new"}
        assert outcome.healed is False
        assert outcome.validation is None
        assert orchestrator.error_collector.get_errors() == []

    @pytest.mark.asyncio
    async def test_sync_operation(self, orchestrator):
        outcome = await orchestrator.execute("execute_js", lambda params: {'result': 42})

        assert outcome.success is True
        assert outcome.result == {'result': 42}

    @pytest.mark.asyncio
    async def test_low_quality_result_carries_validation(self, orchestrator):
        outcome = await orchestrator.execute("get_content", lambda params: {'success': True, 'content': ""})

        assert outcome.success is True
        assert outcome.validation is not None
        assert outcome.validation.has_issue("content_empty")
        assert outcome.validation.is_valid is False


class TestHealAndRetry:
    """Test cases for recovery through a substituted selector."""

    @pytest.mark.asyncio
    async def test_heals_and_learns(self, orchestrator, login_page, heal_context):
        outcome = await orchestrator.execute("click", make_click(login_page), {'selector': "#submit-old"},
                                             queryable=login_page, context=heal_context)

        assert outcome.success is True
        assert outcome.healed is True
        assert outcome.healing.healed_selector == "#submit-new"
        assert outcome.healing.strategy == "by_text"
        assert outcome.result['clicked'] == "#submit-new"
        assert outcome.result['healing']['original_selector'] == "#submit-old"
        assert outcome.validation.score == 90
        assert outcome.validation.has_issue("healed_selector")

        patterns = orchestrator.pattern_learner.get_patterns()
        assert len(patterns) == 1
        assert patterns[0].fix.kind == SELECTOR_SUBSTITUTION
        assert patterns[0].fix.after == "#submit-new"

        record = orchestrator.error_collector.get_error_by_id(outcome.record_id)
        assert record.resolved is True
        assert record.fix['success'] is True
        assert orchestrator.stats.get_stats()['healed'] == 1

    @pytest.mark.asyncio
    async def test_learned_pattern_is_reused(self, orchestrator, login_page, heal_context):
        click = make_click(login_page)
        await orchestrator.execute("click", click, {'selector': "#submit-old"},
                                   queryable=login_page, context=heal_context)

        outcome = await orchestrator.execute("click", click, {'selector': "#submit-old"},
                                             queryable=login_page)

        assert outcome.success is True
        assert outcome.healing.strategy == "learned_pattern"
        assert outcome.healing.confidence == 0.8

        patterns = orchestrator.pattern_learner.get_patterns()
        assert len(patterns) == 1
        assert outcome.healing.pattern_id == patterns[0].id
        assert patterns[0].metrics.times_successful == 1
        assert patterns[0].metrics.confidence == 0.9

    @pytest.mark.asyncio
    async def test_stale_pattern_falls_back_to_healing(self, orchestrator, login_page, heal_context):
        await orchestrator.execute("click", make_click(login_page), {'selector': "#submit-old"},
                                   queryable=login_page, context=heal_context)
        stale = orchestrator.pattern_learner.get_patterns()[0]

        redesigned = SoupQueryable(REDESIGNED_PAGE)
        outcome = await orchestrator.execute("click", make_click(redesigned), {'selector': "#submit-old"},
                                             queryable=redesigned, context=heal_context)

        assert outcome.success is True
        assert outcome.healing.healed_selector == "#submit-v3"
        assert outcome.healing.pattern_id is None
        assert stale.metrics.times_matched == 1
        assert stale.metrics.times_successful == 0
        assert len(orchestrator.pattern_learner.get_patterns()) == 2

    @pytest.mark.asyncio
    async def test_pattern_for_other_selector_is_not_reused(self, orchestrator):
        toolbar = SoupQueryable(TOOLBAR_PAGE)
        click = make_click(toolbar)
        await orchestrator.execute("click", click, {'selector': "#submit-old"},
                                   queryable=toolbar, context={'last_known_text': "Submit"})
        submit_pattern = orchestrator.pattern_learner.get_patterns()[0]

        outcome = await orchestrator.execute("click", click, {'selector': "#cancel-old"},
                                             queryable=toolbar, context={'last_known_text': "Cancel"})

        assert outcome.success is True
        assert outcome.result['clicked'] == "#cancel-new"
        assert outcome.healing.pattern_id is None
        assert outcome.healing.strategy == "by_text"
        assert submit_pattern.metrics.times_matched == 0

        patterns = orchestrator.pattern_learner.get_patterns()
        assert len(patterns) == 2
        assert patterns[1].fix.before == "#cancel-old"
        assert patterns[1].fix.after == "#cancel-new"

    @pytest.mark.asyncio
    async def test_sync_operation_with_non_mapping_result(self, orchestrator, login_page, heal_context):
        def read_text(params):
            element = login_page.soup.select_one(params['selector'])
            if element is None:
                raise RuntimeError(f"Element not found: {params['selector']}")
            return element.get_text(strip=True)

        outcome = await orchestrator.execute("get_text", read_text, {'selector': "#submit-old"},
                                             queryable=login_page, context=heal_context)

        assert outcome.success is True
        assert outcome.result['result'] == "Submit"
        assert outcome.result['healing']['healed'] is True


class TestUnrecoveredFailures:
    """Test cases for failures that end in a diagnostic."""

    @pytest.mark.asyncio
    async def test_no_alternative_found(self, orchestrator, login_page):
        outcome = await orchestrator.execute("click", make_click(login_page), {'selector': "#missing"},
                                             queryable=login_page)

        assert outcome.success is False
        assert outcome.state == OperationState.FAILURE
        assert outcome.diagnostic.category == ErrorCategory.SELECTOR_NOT_FOUND
        assert outcome.diagnostic.heal_attempted is True
        assert outcome.diagnostic.alternatives_considered == []
        assert outcome.diagnostic.likely_causes
        assert outcome.retry_error is None

        with pytest.raises(OperationFailedError) as exc_info:
            outcome.raise_for_failure()
        assert exc_info.value.diagnostic is outcome.diagnostic
        assert isinstance(exc_info.value.original_error, RuntimeError)

    @pytest.mark.asyncio
    async def test_non_locator_failure_is_not_healed(self, orchestrator, login_page):
        def slow_click(params):
            raise TimeoutError("Timeout 3000ms exceeded")

        outcome = await orchestrator.execute("click", slow_click, {'selector': "#submit-new"},
                                             queryable=login_page)

        assert outcome.success is False
        assert outcome.diagnostic.category == ErrorCategory.TIMEOUT
        assert outcome.diagnostic.heal_attempted is False
        assert "Slow network connection" in outcome.diagnostic.likely_causes

    @pytest.mark.asyncio
    async def test_failed_retry_penalizes_pattern(self, orchestrator, login_page):
        seed = orchestrator.error_collector.capture("click", "Element not found: #submit-old",
                                                    {'selector': "#submit-old"})
        pattern = orchestrator.pattern_learner.learn(
            seed, {'kind': SELECTOR_SUBSTITUTION, 'before': "#submit-old", 'after': "#submit-new"}
        )

        outcome = await orchestrator.execute("click", always_missing, {'selector': "#submit-old"},
                                             queryable=login_page)

        assert outcome.success is False
        assert outcome.retry_error is not None
        assert outcome.diagnostic.seen_before is True
        assert outcome.diagnostic.suggested_fix.pattern_id == pattern.id
        assert outcome.diagnostic.alternatives_considered == ["#submit-new"]
        assert pattern.metrics.times_matched == 1
        assert pattern.metrics.times_successful == 0
        assert orchestrator.stats.get_stats()['failed'] == 1

    @pytest.mark.asyncio
    async def test_reported_failure_result(self, orchestrator):
        outcome = await orchestrator.execute(
            "form_automator", lambda params: {'success': False, 'error': "Form submission rejected"}
        )

        assert outcome.success is False
        assert outcome.error == "Form submission rejected"
        assert outcome.result == {'success': False, 'error': "Form submission rejected"}
        assert outcome.diagnostic.category == ErrorCategory.UNKNOWN

    @pytest.mark.asyncio
    async def test_auto_heal_disabled(self, store_config, login_page, heal_context):
        orchestrator = HealingOrchestrator({**store_config, 'auto_heal_enabled': False})

        outcome = await orchestrator.execute("click", make_click(login_page), {'selector': "#submit-old"},
                                             queryable=login_page, context=heal_context)

        assert outcome.success is False
        assert outcome.diagnostic.heal_attempted is False
        assert orchestrator.pattern_learner.get_patterns() == []

    @pytest.mark.asyncio
    async def test_sensitive_params_never_stored(self, orchestrator, login_page):
        await orchestrator.execute("type", make_click(login_page),
                                   {'selector': "#missing", 'password': "hunter2"}, queryable=login_page)

        record = orchestrator.error_collector.get_errors()[0]
        assert record.context.params['password'] == "[REDACTED]"

    @pytest.mark.asyncio
    async def test_internal_heal_error_is_logged_with_traceback(self, store_config, login_page,
                                                                heal_context, caplog):
        orchestrator = HealingOrchestrator(store_config, selector_healer=BrokenHealer())

        outcome = await orchestrator.execute("click", make_click(login_page), {'selector': "#submit-old"},
                                             queryable=login_page, context=heal_context)

        assert outcome.success is False
        assert outcome.diagnostic.heal_attempted is True
        assert outcome.retry_error is None

        logged = [r for r in caplog.records if r.name == "healing_orchestrator" and r.exc_info]
        assert len(logged) == 1
        assert logged[0].levelname == "ERROR"
        assert "failed internally" in logged[0].getMessage()
        assert isinstance(logged[0].exc_info[1], RuntimeError)


class TestCancellation:
    """Test cases for aborting the heal-and-retry step."""

    @pytest.mark.asyncio
    async def test_cancel_before_heal(self, orchestrator, login_page, heal_context):
        cancel_event = asyncio.Event()
        cancel_event.set()

        outcome = await orchestrator.execute("click", make_click(login_page), {'selector': "#submit-old"},
                                             queryable=login_page, context=heal_context,
                                             cancel_event=cancel_event)

        assert outcome.success is False
        assert outcome.cancelled is True
        assert outcome.diagnostic.cancelled is True
        assert orchestrator.pattern_learner.get_patterns() == []
        assert orchestrator.stats.get_stats()['cancelled'] == 1

    @pytest.mark.asyncio
    async def test_deadline_aborts_slow_retry(self, orchestrator, login_page, heal_context):
        click = make_click(login_page, delay_on_retry=1.0)

        outcome = await orchestrator.execute("click", click, {'selector': "#submit-old"},
                                             queryable=login_page, context=heal_context, timeout=0.05)

        assert outcome.success is False
        assert outcome.cancelled is True
        assert orchestrator.pattern_learner.get_patterns() == []
        assert orchestrator.error_collector.get_unresolved_errors()

    @pytest.mark.asyncio
    async def test_event_set_during_retry(self, orchestrator, login_page, heal_context):
        cancel_event = asyncio.Event()
        click = make_click(login_page, delay_on_retry=1.0)

        async def cancel_soon():
            await asyncio.sleep(0.05)
            cancel_event.set()

        canceller = asyncio.ensure_future(cancel_soon())
        outcome = await orchestrator.execute("click", click, {'selector': "#submit-old"},
                                             queryable=login_page, context=heal_context,
                                             cancel_event=cancel_event)
        await canceller

        assert outcome.cancelled is True
        assert outcome.success is False


class TestOrchestratorServices:
    """Test cases for pass-through services, statistics and shutdown."""

    @pytest.mark.asyncio
    async def test_find_element(self, orchestrator, login_page):
        best = await orchestrator.find_element(login_page, "submit button")
        assert best.selector == "#submit-new"

    @pytest.mark.asyncio
    async def test_heal_selector(self, orchestrator, login_page):
        alternatives = await orchestrator.heal_selector(login_page, "#submit-old", last_known_text="Submit")
        assert alternatives[0].selector == "#submit-new"

    @pytest.mark.asyncio
    async def test_get_stats(self, orchestrator, login_page, heal_context):
        await orchestrator.execute("click", make_click(login_page), {'selector': "#submit-old"},
                                   queryable=login_page, context=heal_context)
        await orchestrator.execute("wait", lambda params: {'success': False, 'error': "Timeout exceeded"})

        stats = orchestrator.get_stats()

        assert stats['execution']['total'] == 2
        assert stats['execution']['successful'] == 1
        assert stats['execution']['healed'] == 1
        assert stats['errors']['total_errors'] == 2
        assert stats['errors']['resolution_rate'] == 100.0
        assert stats['patterns']['total_patterns'] == 1
        assert stats['validation']['total_validations'] == 1

    @pytest.mark.asyncio
    async def test_shutdown_persists_stores(self, orchestrator, store_config, login_page, heal_context):
        await orchestrator.execute("click", make_click(login_page), {'selector': "#submit-old"},
                                   queryable=login_page, context=heal_context)

        orchestrator.shutdown()

        reloaded = PatternLearner(store_config['pattern_learner'])
        assert len(reloaded.get_patterns()) == 1
        assert reloaded.get_patterns()[0].fix.after == "#submit-new"


class TestStoreWrites:
    """Test cases for snapshot writes made while operations run."""

    @pytest.mark.asyncio
    async def test_auto_persist_runs_off_the_event_loop(self, store_config, login_page, heal_context):
        collector = ThreadRecordingCollector({**store_config['error_collector'], 'auto_persist': True})
        orchestrator = HealingOrchestrator(store_config, error_collector=collector)

        outcome = await orchestrator.execute("click", make_click(login_page), {'selector': "#submit-old"},
                                             queryable=login_page, context=heal_context)

        assert outcome.success is True
        # capture and mark_resolved each wrote a snapshot
        assert len(collector.persist_threads) == 2
        assert threading.get_ident() not in collector.persist_threads

    @pytest.mark.asyncio
    async def test_slow_snapshot_write_does_not_stall_other_tasks(self, store_config, login_page,
                                                                  heal_context):
        collector = ThreadRecordingCollector({**store_config['error_collector'], 'auto_persist': True},
                                             write_delay=0.2)
        orchestrator = HealingOrchestrator(store_config, error_collector=collector)
        ticks = []
        stop = asyncio.Event()

        async def heartbeat():
            while not stop.is_set():
                ticks.append(time.monotonic())
                await asyncio.sleep(0.01)

        beat = asyncio.ensure_future(heartbeat())
        outcome = await orchestrator.execute("click", make_click(login_page), {'selector': "#submit-old"},
                                             queryable=login_page, context=heal_context)
        stop.set()
        await beat

        assert outcome.success is True
        assert len(ticks) >= 10

    @pytest.mark.asyncio
    async def test_failed_snapshot_write_does_not_fail_operation(self, store_config, tmp_path,
                                                                 login_page, heal_context):
        unwritable = tmp_path / "snapshots"
        unwritable.mkdir()
        config = {
            **store_config,
            'error_collector': {'persist_path': str(unwritable), 'auto_persist': True},
            'pattern_learner': {'persist_path': str(unwritable), 'auto_persist': True},
        }
        orchestrator = HealingOrchestrator(config)

        outcome = await orchestrator.execute("click", make_click(login_page), {'selector': "#submit-old"},
                                             queryable=login_page, context=heal_context)

        assert outcome.success is True
        assert outcome.healing.healed_selector == "#submit-new"
        assert len(orchestrator.pattern_learner.get_patterns()) == 1
        assert orchestrator.error_collector.get_errors()[0].resolved is True
