"""
Execution Metrics

Rolling statistics over orchestrated operations: totals, successes,
failures, healed recoveries and a per-tool breakdown.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from utils.logger import get_logger


@dataclass
class ToolStats:
    """Counters for a single tool"""
    total: int = 0
    successful: int = 0
    failed: int = 0
    healed: int = 0
    total_duration: float = 0.0

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.total if self.total else 0.0


class ExecutionStats:
    """
    Thread-safe execution counters

    Tracks every orchestrated operation so hosts can see how often
    healing turns a failure into a success.
    """

    def __init__(self, config: Optional[Dict] = None):
        """Initialize execution statistics"""
        self.config = config or {}
        self.logger = get_logger("execution_stats")

        self._lock = threading.RLock()
        self.total = 0
        self.successful = 0
        self.failed = 0
        self.healed = 0
        self.cancelled = 0
        self.by_tool: Dict[str, ToolStats] = defaultdict(ToolStats)

    def record(self, tool_name: str, success: bool, healed: bool = False,
               duration: float = 0.0, cancelled: bool = False):
        """Record the outcome of one operation."""
        with self._lock:
            tool = self.by_tool[tool_name]
            self.total += 1
            tool.total += 1
            tool.total_duration += duration

            if success:
                self.successful += 1
                tool.successful += 1
            else:
                self.failed += 1
                tool.failed += 1

            if healed:
                self.healed += 1
                tool.healed += 1
            if cancelled:
                self.cancelled += 1

    @property
    def success_rate(self) -> float:
        with self._lock:
            return self.successful / self.total if self.total else 0.0

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'total': self.total,
                'successful': self.successful,
                'failed': self.failed,
                'healed': self.healed,
                'cancelled': self.cancelled,
                'success_rate': round(self.successful / self.total, 4) if self.total else 0.0,
                'by_tool': {
                    name: {**asdict(stats), 'average_duration': round(stats.average_duration, 4)}
                    for name, stats in self.by_tool.items()
                },
            }

    def reset(self):
        with self._lock:
            self.total = self.successful = self.failed = self.healed = self.cancelled = 0
            self.by_tool.clear()
        self.logger.info("Execution statistics reset")
