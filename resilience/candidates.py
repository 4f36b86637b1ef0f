"""
Locator Candidates

Confidence-scored locator suggestions produced by the element finder
and the selector healer, plus helpers for building safe CSS selectors.
"""

import re
from dataclasses import dataclass, asdict
from typing import Dict, Any, Iterable, List, Optional


_CSS_IDENTIFIER = re.compile(r'^-?[A-Za-z_][\w-]*$')


@dataclass
class Candidate:
    """A suggested locator with its confidence"""
    selector: str
    confidence: float
    strategy: str
    reason: str = ""
    visible: bool = True
    tag: Optional[str] = None
    text: Optional[str] = None

    def __post_init__(self):
        self.confidence = clamp_confidence(self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def clamp_confidence(value: float) -> float:
    """Clamp a confidence value into [0, 1], rounded to 4 places."""
    return round(max(0.0, min(1.0, float(value))), 4)


def rank_candidates(candidates: Iterable[Candidate]) -> List[Candidate]:
    """
    Deduplicate candidates by selector and sort them by confidence.

    When a selector appears more than once the highest confidence wins;
    on equal confidence the first occurrence is kept. Sorting is stable,
    so equally confident candidates keep their discovery order.
    """
    best: Dict[str, Candidate] = {}
    for candidate in candidates:
        existing = best.get(candidate.selector)
        if existing is None or candidate.confidence > existing.confidence:
            best[candidate.selector] = candidate

    return sorted(best.values(), key=lambda c: c.confidence, reverse=True)


def css_string(value: str) -> str:
    """Quote a value for use inside a CSS attribute selector."""
    escaped = str(value).replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


def attribute_selector(name: str, value: str, operator: str = "=", tag: str = "") -> str:
    """Build ``tag[name<op>"value"]``."""
    return f'{tag}[{name}{operator}{css_string(value)}]'


def id_selector(element_id: str) -> str:
    """Build an id selector, falling back to an attribute form for unusual ids."""
    if _CSS_IDENTIFIER.match(element_id):
        return f'#{element_id}'
    return attribute_selector('id', element_id)


def class_selector(class_name: str, tag: str = "") -> str:
    """Build ``tag.class``, falling back to an attribute form for unusual names."""
    if _CSS_IDENTIFIER.match(class_name):
        return f'{tag}.{class_name}'
    return attribute_selector('class', class_name, '~=', tag)
