"""
Element Finder

Multi-strategy semantic search over the DOM for loosely natural-language
queries such as ``"blue login button in the header"``.

Strategies:
- text: visible text, placeholder and aria-label matches
- aria: accessibility attributes (aria-label, role, aria-placeholder)
- semantic: known tag/role lists for the detected element type
- visual: screen-region hints relative to the viewport
- auto: run all of the above and merge
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from resilience.candidates import (
    Candidate, rank_candidates, attribute_selector, class_selector, id_selector
)
from resilience.dom import DomQueryable, ElementInfo, scan, viewport_size
from utils.config import settings
from utils.logger import get_logger


# Element taxonomy: CSS selectors per type and keywords that imply the type.
# Order matters, the first type whose keyword occurs in the query wins.
ELEMENT_PATTERNS: Dict[str, Dict[str, List[str]]] = {
    'button': {
        'tags': ['button', 'input[type="button"]', 'input[type="submit"]', 'a.btn', '[role="button"]'],
        'keywords': ['click', 'submit', 'button', 'btn', 'press'],
    },
    'input': {
        'tags': ['input', 'textarea', '[contenteditable="true"]'],
        'keywords': ['input', 'field', 'textbox', 'enter', 'type', 'write'],
    },
    'link': {
        'tags': ['a[href]', '[role="link"]'],
        'keywords': ['link', 'go to', 'navigate', 'open'],
    },
    'search': {
        'tags': ['input[type="search"]', 'input[name*="search"]', 'input[placeholder*="search"]',
                 '[role="searchbox"]'],
        'keywords': ['search', 'find', 'lookup', 'query'],
    },
    'login': {
        'tags': ['input[type="password"]', 'input[name*="password"]', 'input[name*="login"]',
                 'input[name*="user"]'],
        'keywords': ['login', 'password', 'username', 'email', 'signin', 'sign in'],
    },
    'form': {
        'tags': ['form', '[role="form"]'],
        'keywords': ['form', 'submit'],
    },
    'menu': {
        'tags': ['nav', '[role="navigation"]', '[role="menu"]', 'ul.menu', '.nav'],
        'keywords': ['menu', 'navigation', 'nav'],
    },
    'image': {
        'tags': ['img', 'picture', '[role="img"]', 'svg'],
        'keywords': ['image', 'picture', 'photo', 'icon', 'logo'],
    },
    'video': {
        'tags': ['video', 'iframe[src*="youtube"]', 'iframe[src*="vimeo"]', '[role="video"]'],
        'keywords': ['video', 'player', 'watch'],
    },
}

STRATEGIES = ('text', 'aria', 'semantic', 'visual')

TEXT_BEARING_SELECTOR = 'button, a, input, label, span, div, p, h1, h2, h3, h4, h5, h6, [role]'
ARIA_SELECTOR = '[aria-label], [aria-describedby], [role], [aria-placeholder]'
CLICKABLE_SELECTOR = 'button, a, input, [role="button"], [role="link"]'

_TARGET_TEXT = re.compile(r'["\']([^"\']+)["\']|containing\s+(.+)|with text\s+(.+)|labeled\s+(.+)',
                          re.IGNORECASE)
_COLOR = re.compile(r'\b(red|blue|green|yellow|orange|purple|black|white|gray|grey)\b', re.IGNORECASE)
_POSITION = re.compile(r'\b(top|bottom|left|right|center|header|footer)\b', re.IGNORECASE)


@dataclass
class ParsedQuery:
    """Structured reading of a natural-language element query"""
    original: str
    element_type: str = 'any'
    terms: List[str] = field(default_factory=list)
    target_text: Optional[str] = None
    color: Optional[str] = None
    position: Optional[str] = None


def parse_query(query: str) -> ParsedQuery:
    """Parse a free-text element query into type, terms and hints."""
    lower_query = query.lower()

    element_type = 'any'
    for type_name, pattern in ELEMENT_PATTERNS.items():
        if any(keyword in lower_query for keyword in pattern['keywords']):
            element_type = type_name
            break

    terms = []
    for word in query.split():
        term = word.strip('"\'')
        if len(term) > 2:
            terms.append(term.lower())

    target_text = None
    text_match = _TARGET_TEXT.search(query)
    if text_match:
        target_text = next(group for group in text_match.groups() if group).strip()

    color_match = _COLOR.search(query)
    position_match = _POSITION.search(query)

    return ParsedQuery(
        original=query,
        element_type=element_type,
        terms=terms,
        target_text=target_text,
        color=color_match.group(1).lower() if color_match else None,
        position=position_match.group(1).lower() if position_match else None,
    )


class ElementFinder:
    """
    Smart element finding with multiple scoring strategies

    Every strategy scans the DOM through a ``DomQueryable`` and scores
    elements independently; results are merged, deduplicated by selector
    and filtered by a confidence threshold.
    """

    def __init__(self, patterns: Optional[Dict[str, Dict[str, List[str]]]] = None):
        self.patterns = patterns or ELEMENT_PATTERNS
        self.logger = get_logger("element_finder")

    def parse_query(self, query: str) -> ParsedQuery:
        return parse_query(query)

    async def find(self, queryable: DomQueryable, query: str, strategy: str = 'auto',
                   context: Optional[str] = None, confidence_threshold: Optional[float] = None,
                   return_multiple: bool = False) -> Union[List[Candidate], Optional[Candidate]]:
        """
        Find elements matching a natural-language query

        Args:
            queryable: DOM capability to scan
            query: Free-text description of the element
            strategy: 'auto' or one of 'text', 'aria', 'semantic', 'visual'
            context: Optional container selector narrowing the scan
            confidence_threshold: Minimum confidence to keep a candidate
            return_multiple: Return the full ranked list instead of the best match

        Returns:
            Ranked candidate list, or the single best candidate (None if nothing qualifies)
        """
        if strategy != 'auto' and strategy not in STRATEGIES:
            raise ValueError(f"Unknown element search strategy: {strategy}")

        threshold = settings.finder_confidence_threshold if confidence_threshold is None \
            else confidence_threshold
        parsed = self.parse_query(query)
        strategy_methods = {
            'text': self.find_by_text,
            'aria': self.find_by_aria,
            'semantic': self.find_by_semantic,
            'visual': self.find_by_visual,
        }

        results: List[Candidate] = []
        for name in STRATEGIES:
            if strategy in ('auto', name):
                results.extend(await strategy_methods[name](queryable, parsed, context))

        ranked = [c for c in rank_candidates(results) if c.confidence >= threshold]
        self.logger.debug(f"Find '{query}' ({strategy}) -> {len(ranked)} candidates >= {threshold}")

        if return_multiple:
            return ranked
        return ranked[0] if ranked else None

    async def find_by_text(self, queryable: DomQueryable, parsed: ParsedQuery,
                           context: Optional[str] = None) -> List[Candidate]:
        """Score elements by text, placeholder and aria-label term matches."""
        results = []
        for element in await scan(queryable, TEXT_BEARING_SELECTOR, context):
            text = element.text.lower()
            placeholder = (element.placeholder or '').lower()
            aria_label = (element.attribute('aria-label') or '').lower()

            matched = 0.0
            for term in parsed.terms:
                if term in text:
                    matched += 0.3
                if term in placeholder:
                    matched += 0.25
                if term in aria_label:
                    matched += 0.25

            if parsed.target_text and parsed.target_text.lower() in text:
                matched += 0.4

            if matched > 0:
                results.append(Candidate(
                    selector=self._text_selector(element),
                    confidence=matched + (0.1 if element.visible else 0.0),
                    strategy='text',
                    reason=f"Text match in <{element.tag}>",
                    visible=element.visible,
                    tag=element.tag,
                    text=element.text[:100],
                ))
        return results

    async def find_by_aria(self, queryable: DomQueryable, parsed: ParsedQuery,
                           context: Optional[str] = None) -> List[Candidate]:
        """Score elements by accessibility attributes."""
        results = []
        for element in await scan(queryable, ARIA_SELECTOR, context):
            aria_label = element.attribute('aria-label') or ''
            role = (element.attribute('role') or '').lower()
            aria_placeholder = (element.attribute('aria-placeholder') or '').lower()

            confidence = 0.0
            for term in parsed.terms:
                if term in aria_label.lower():
                    confidence += 0.35
                if term in role:
                    confidence += 0.2
                if term in aria_placeholder:
                    confidence += 0.25

            if parsed.element_type != 'any' and role == parsed.element_type:
                confidence += 0.2

            if confidence <= 0:
                continue

            if aria_label:
                selector = attribute_selector('aria-label', aria_label)
            elif element.id:
                selector = id_selector(element.id)
            else:
                selector = attribute_selector('role', role)

            results.append(Candidate(
                selector=selector,
                confidence=confidence,
                strategy='aria',
                reason=f"ARIA match (role={role or 'none'})",
                visible=element.visible,
                tag=element.tag,
                text=aria_label[:100] or None,
            ))
        return results

    async def find_by_semantic(self, queryable: DomQueryable, parsed: ParsedQuery,
                               context: Optional[str] = None) -> List[Candidate]:
        """Score visible elements whose tag or role fits the element type."""
        pattern = self.patterns.get(parsed.element_type)
        if not pattern:
            return []

        results = []
        for tag_selector in pattern['tags']:
            for element in await scan(queryable, tag_selector, context):
                if not element.visible:
                    continue

                confidence = 0.5
                text = element.text.lower()
                for term in parsed.terms:
                    if term in text:
                        confidence += 0.2

                if element.id:
                    selector = id_selector(element.id)
                    confidence += 0.1
                elif element.name:
                    selector = attribute_selector('name', element.name)
                    confidence += 0.1
                else:
                    selector = tag_selector

                results.append(Candidate(
                    selector=selector,
                    confidence=confidence,
                    strategy='semantic',
                    reason=f"Matches {parsed.element_type} pattern '{tag_selector}'",
                    visible=True,
                    tag=element.tag,
                    text=element.text[:50],
                ))
        return results

    async def find_by_visual(self, queryable: DomQueryable, parsed: ParsedQuery,
                             context: Optional[str] = None) -> List[Candidate]:
        """Score visible clickable elements by screen region and text."""
        viewport_width, viewport_height = await viewport_size(queryable)

        results = []
        for element in await scan(queryable, CLICKABLE_SELECTOR, context):
            if not element.visible:
                continue

            confidence = 0.3
            if parsed.position and self._in_region(element, parsed.position,
                                                   viewport_width, viewport_height):
                confidence += 0.3

            text = element.text.lower()
            for term in parsed.terms:
                if term in text:
                    confidence += 0.2

            if confidence <= 0.3:
                continue

            if element.id:
                selector = id_selector(element.id)
            elif element.classes:
                selector = class_selector(element.classes[0], element.tag)
            else:
                selector = element.tag

            box = element.box
            results.append(Candidate(
                selector=selector,
                confidence=confidence,
                strategy='visual',
                reason=f"At ({round(box.left)}, {round(box.top)}) size {round(box.width)}x{round(box.height)}",
                visible=True,
                tag=element.tag,
                text=element.text[:50],
            ))
        return results

    @staticmethod
    def _in_region(element: ElementInfo, position: str, width: float, height: float) -> bool:
        box = element.box
        if box is None:
            return False

        checks: Dict[str, Any] = {
            'top': lambda: box.top < height * 0.3,
            'bottom': lambda: box.bottom > height * 0.7,
            'left': lambda: box.left < width * 0.3,
            'right': lambda: box.right > width * 0.7,
            'center': lambda: box.left > width * 0.3 and box.right < width * 0.7,
            'header': lambda: box.top < 100,
            'footer': lambda: box.bottom > height - 100,
        }
        check = checks.get(position)
        return bool(check and check())

    @staticmethod
    def _text_selector(element: ElementInfo) -> str:
        if element.id:
            return id_selector(element.id)
        if element.classes:
            first = class_selector(element.classes[0], element.tag)
            if len(element.classes) > 1:
                return first + class_selector(element.classes[1])
            return first
        if element.type:
            return attribute_selector('type', element.type, tag=element.tag)
        return element.tag
