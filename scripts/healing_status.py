#!/usr/bin/env python3
"""
Healing System Status

Reports statistics from the persisted error and pattern snapshots.

Features:
- Error totals, unresolved count and resolution rate
- Breakdown by tool and by category
- Learned pattern counts and match rate
- JSON output for scripting
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.append(str(project_root))

from resilience.error_collector import ErrorCollector
from resilience.pattern_learner import PatternLearner
from utils.config import load_config, settings
from utils.logger import get_logger


def collect_status(errors_file: Optional[str], patterns_file: Optional[str]) -> Dict[str, Any]:
    """Load both snapshots read-only and return their statistics."""
    collector = ErrorCollector({'persist_path': errors_file, 'auto_persist': False})
    learner = PatternLearner({'persist_path': patterns_file, 'auto_persist': False})
    return {
        'errors': collector.get_stats(),
        'patterns': learner.get_stats(),
        'recent_errors': [
            {
                'id': record.id,
                'tool_name': record.tool_name,
                'category': record.category.value,
                'message': record.message[:100],
                'resolved': record.resolved,
            }
            for record in collector.get_recent_errors(5)
        ],
    }


def format_status(status: Dict[str, Any]) -> str:
    errors = status['errors']
    patterns = status['patterns']
    resolution = errors['resolution_rate']
    match_rate = patterns['match_rate']

    lines = [
        "Self-Healing Status",
        "===================",
        f"Errors stored:     {errors['stored_errors']} (captured {errors['total_captured']})",
        f"Unresolved:        {errors['unresolved_count']}",
        f"Fixes applied:     {errors['fixes_applied']} ({errors['fixes_successful']} successful)",
        f"Resolution rate:   {'N/A' if resolution is None else f'{resolution}%'}",
        f"Patterns learned:  {patterns['total_patterns']} ({patterns['learned_fixes']} fixes learned)",
        f"Match rate:        {'N/A' if match_rate is None else f'{match_rate}%'}",
    ]

    if errors['errors_by_category']:
        lines.append("")
        lines.append("Errors by category:")
        for category, count in sorted(errors['errors_by_category'].items(), key=lambda kv: -kv[1]):
            lines.append(f"  {category:<26} {count}")

    if errors['errors_by_tool']:
        lines.append("")
        lines.append("Errors by tool:")
        for tool, count in sorted(errors['errors_by_tool'].items(), key=lambda kv: -kv[1]):
            lines.append(f"  {tool:<26} {count}")

    if status['recent_errors']:
        lines.append("")
        lines.append("Recent errors:")
        for record in status['recent_errors']:
            marker = "resolved" if record['resolved'] else "open"
            lines.append(f"  [{marker}] {record['tool_name']} {record['category']}: {record['message']}")

    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Show self-healing statistics from persisted snapshots")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--errors-file", help="Error snapshot path (overrides configuration)")
    parser.add_argument("--patterns-file", help="Pattern snapshot path (overrides configuration)")
    parser.add_argument("--json", action="store_true", help="Print raw statistics as JSON")
    parser.add_argument("--version", action="version",
                        version=f"{settings.app_name} {settings.app_version}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = get_logger("healing_status")

    try:
        config = load_config(args.config)
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    status = collect_status(args.errors_file or config.errors_file,
                            args.patterns_file or config.patterns_file)

    if args.json:
        print(json.dumps(status, indent=2, default=str))
    else:
        print(format_status(status))
    return 0


if __name__ == "__main__":
    sys.exit(main())
