"""
Healing Orchestration

Per-operation execution wrapper that captures failures, retries once
with a healed selector and feeds outcomes back into the learning stores.
"""

from .diagnostics import FailureDiagnostic, build_diagnostic, LIKELY_CAUSES
from .metrics import ExecutionStats
from .orchestrator import HealingOrchestrator, OperationOutcome, OperationState, HealProvenance

__all__ = [
    'FailureDiagnostic',
    'build_diagnostic',
    'LIKELY_CAUSES',
    'ExecutionStats',
    'HealingOrchestrator',
    'OperationOutcome',
    'OperationState',
    'HealProvenance',
]
