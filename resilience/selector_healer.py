"""
Selector Healer

When a selector stops matching (page redesign, regenerated ids, dynamic
content), the healer decomposes the broken selector and runs independent
heuristics against the current DOM to propose ranked alternatives.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from resilience.candidates import (
    Candidate, rank_candidates, attribute_selector, class_selector, id_selector
)
from resilience.dom import DomQueryable, ElementInfo, describe, scan
from utils.config import settings
from utils.logger import get_logger


# Fixed base confidence per heuristic
ID_CONFIDENCE = 0.9
NAME_CONFIDENCE = 0.85
ARIA_LABEL_CONFIDENCE = 0.85
TEXT_CONFIDENCE = 0.8
CLASS_CONFIDENCE = 0.7
STRUCTURE_CONFIDENCE = 0.6

TEXT_SEARCH_SELECTOR = 'button, a, input, label, span, div, [role]'

# Equal text favors the interactive element over its wrappers
_TAG_PRIORITY = {'button': 0, 'a': 0, 'input': 0, 'label': 1, 'span': 2, 'div': 3}

_ID = re.compile(r'#([a-zA-Z0-9_-]+)')
_CLASS = re.compile(r'\.([a-zA-Z0-9_-]+)')
_TAG = re.compile(r'^([a-zA-Z][a-zA-Z0-9]*)')
_ATTRIBUTE = re.compile(r'\[([a-zA-Z-]+)(?:[~|^$*]?=["\']?([^"\'\]]+)["\']?)?\]')


@dataclass
class SelectorInfo:
    """Structural decomposition of a CSS selector"""
    tag: Optional[str] = None
    id: Optional[str] = None
    classes: List[str] = field(default_factory=list)
    name: Optional[str] = None
    type: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)


def parse_selector(selector: str) -> SelectorInfo:
    """Extract tag, id, classes and attributes from a selector."""
    info = SelectorInfo()
    # attribute values may contain dots or hashes, read them first
    without_attributes = _ATTRIBUTE.sub('', selector)

    id_match = _ID.search(without_attributes)
    if id_match:
        info.id = id_match.group(1)

    info.classes = _CLASS.findall(without_attributes)

    tag_match = _TAG.match(selector.strip())
    if tag_match:
        info.tag = tag_match.group(1).lower()

    for key, value in _ATTRIBUTE.findall(selector):
        info.attributes[key] = value if value else True
        if key == 'name' and value:
            info.name = value
        elif key == 'type' and value:
            info.type = value

    return info


class SelectorHealer:
    """
    Generates ranked alternative selectors for a broken one

    Heuristics, each with a fixed base confidence:
    - by_id: elements whose id contains the old id (0.9)
    - by_name: elements whose name contains the old name (0.85)
    - by_aria_label: elements whose aria-label contains the last known label (0.85)
    - by_text: elements containing the last known text (0.8)
    - by_classes: visible elements carrying a similar class (0.7)
    - by_structure: same tag/type, refined by placeholder or value (0.6)
    """

    def __init__(self):
        self.logger = get_logger("selector_healer")

    def parse_selector(self, selector: str) -> SelectorInfo:
        return parse_selector(selector)

    async def heal(self, queryable: DomQueryable, broken_selector: str,
                   last_known_text: Optional[str] = None,
                   last_known_attributes: Optional[Dict[str, str]] = None,
                   max_alternatives: Optional[int] = None) -> List[Candidate]:
        """
        Heal a broken selector by finding alternatives

        Args:
            queryable: DOM capability to search
            broken_selector: Selector that no longer resolves
            last_known_text: Text the element used to contain
            last_known_attributes: Attributes the element used to carry
            max_alternatives: Upper bound on returned candidates

        Returns:
            Candidates sorted by confidence, at most ``max_alternatives``
        """
        limit = settings.heal_max_alternatives if max_alternatives is None else max_alternatives
        info = self.parse_selector(broken_selector)
        attributes = last_known_attributes or {}

        heuristics = [
            ('by_id', self._by_id(queryable, info)),
            ('by_name', self._by_name(queryable, info)),
            ('by_text', self._by_text(queryable, last_known_text)),
            ('by_classes', self._by_classes(queryable, info)),
            ('by_structure', self._by_structure(queryable, info)),
            ('by_aria_label', self._by_aria_label(queryable, attributes.get('aria-label'))),
        ]

        results: List[Candidate] = []
        for name, heuristic in heuristics:
            try:
                results.extend(await heuristic)
            except Exception as e:
                self.logger.warning(f"Heuristic {name} failed for '{broken_selector}': {e}")

        alternatives = [c for c in rank_candidates(results) if c.selector != broken_selector]
        alternatives = alternatives[:max(limit, 0)]

        self.logger.info(
            f"Healing '{broken_selector}' produced {len(alternatives)} alternatives",
            broken_selector=broken_selector,
            best=alternatives[0].selector if alternatives else None,
        )
        return alternatives

    async def test_selector(self, queryable: DomQueryable, selector: str) -> Dict[str, Any]:
        """Check whether a selector resolves and describe what it hits."""
        try:
            handle = await queryable.query_one(selector)
            if handle is None:
                return {'valid': False}
            element = await describe(queryable, handle)
        except Exception as e:
            self.logger.debug(f"Selector test failed for '{selector}': {e}")
            return {'valid': False}

        return {
            'valid': True,
            'visible': element.visible,
            'tag': element.tag,
            'text': element.text[:50],
        }

    async def _by_id(self, queryable: DomQueryable, info: SelectorInfo) -> List[Candidate]:
        if not info.id:
            return []
        return [
            Candidate(
                selector=id_selector(element.id),
                confidence=ID_CONFIDENCE,
                strategy='by_id',
                reason=f"Similar id found: {element.id}",
                visible=element.visible,
                tag=element.tag,
            )
            for element in await scan(queryable, attribute_selector('id', info.id, '*='))
            if element.id
        ]

    async def _by_name(self, queryable: DomQueryable, info: SelectorInfo) -> List[Candidate]:
        if not info.name:
            return []
        return [
            Candidate(
                selector=attribute_selector('name', element.name),
                confidence=NAME_CONFIDENCE,
                strategy='by_name',
                reason=f"Similar name attribute found: {element.name}",
                visible=element.visible,
                tag=element.tag,
            )
            for element in await scan(queryable, attribute_selector('name', info.name, '*='))
            if element.name
        ]

    async def _by_text(self, queryable: DomQueryable, last_known_text: Optional[str]) -> List[Candidate]:
        if not last_known_text:
            return []

        needle = last_known_text.lower()
        matches = [
            element for element in await scan(queryable, TEXT_SEARCH_SELECTOR)
            if needle in self._visible_text(element).lower()
        ]
        # tightest text first, so the element itself outranks its wrappers
        matches.sort(key=lambda element: (len(self._visible_text(element)),
                                          _TAG_PRIORITY.get(element.tag, 1)))

        return [
            Candidate(
                selector=self._element_selector(element),
                confidence=TEXT_CONFIDENCE,
                strategy='by_text',
                reason=f'Contains text: "{self._visible_text(element)[:30]}"',
                visible=element.visible,
                tag=element.tag,
                text=self._visible_text(element)[:100],
            )
            for element in matches
        ]

    async def _by_classes(self, queryable: DomQueryable, info: SelectorInfo) -> List[Candidate]:
        results = []
        for cls in info.classes:
            for element in await scan(queryable, attribute_selector('class', cls, '*=')):
                if not element.visible:
                    continue
                token = next((c for c in element.classes if cls in c), cls)
                results.append(Candidate(
                    selector=class_selector(token),
                    confidence=CLASS_CONFIDENCE,
                    strategy='by_classes',
                    reason=f"Similar class: {token}",
                    visible=True,
                    tag=element.tag,
                ))
        return results

    async def _by_structure(self, queryable: DomQueryable, info: SelectorInfo) -> List[Candidate]:
        if not info.tag:
            return []

        base = attribute_selector('type', info.type, tag=info.tag) if info.type else info.tag
        results = []
        for element in await scan(queryable, base):
            if not element.visible:
                continue
            if element.placeholder:
                selector = base + attribute_selector('placeholder', element.placeholder)
            elif element.value:
                selector = base + attribute_selector('value', element.value)
            else:
                selector = base
            results.append(Candidate(
                selector=selector,
                confidence=STRUCTURE_CONFIDENCE,
                strategy='by_structure',
                reason="Similar element structure",
                visible=True,
                tag=element.tag,
            ))
        return results

    async def _by_aria_label(self, queryable: DomQueryable, label: Optional[str]) -> List[Candidate]:
        if not label:
            return []
        return [
            Candidate(
                selector=attribute_selector('aria-label', element.attribute('aria-label')),
                confidence=ARIA_LABEL_CONFIDENCE,
                strategy='by_aria_label',
                reason="Similar aria-label found",
                visible=element.visible,
                tag=element.tag,
            )
            for element in await scan(queryable, attribute_selector('aria-label', label, '*='))
            if element.attribute('aria-label')
        ]

    @staticmethod
    def _visible_text(element: ElementInfo) -> str:
        if element.tag == 'input':
            return element.value or ''
        return element.text

    @staticmethod
    def _element_selector(element: ElementInfo) -> str:
        if element.id:
            return id_selector(element.id)
        if element.classes:
            return class_selector(element.classes[0], element.tag)
        return element.tag
