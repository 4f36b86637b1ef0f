"""
Validation Rules

Declarative quality checks for nominally successful tool results.

Each rule pairs a predicate (True means the issue is present) with a
message template, a severity and a score deduction. Templates are filled
from the rule's ``facts`` callable. Rules that depend on optional context
keys only fire when those keys are supplied.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional


Predicate = Callable[[Mapping[str, Any], Mapping[str, Any], Mapping[str, Any]], bool]
Facts = Callable[[Mapping[str, Any], Mapping[str, Any], Mapping[str, Any]], Dict[str, Any]]

WARNING = "warning"
ERROR = "error"

ERROR_PAGE_MARKERS = ('404', 'not found', 'error', '403', '500', 'forbidden')
INTERACTIVE_TAGS = ('button', 'a', 'input', 'select')

VERY_SLOW_SECONDS = 10
SLOW_SECONDS = 5


@dataclass(frozen=True)
class ValidationRule:
    """A single data-driven result check"""
    name: str
    predicate: Predicate
    message: str
    severity: str = WARNING
    deduction: int = 10
    facts: Optional[Facts] = None

    def applies(self, result: Mapping[str, Any], params: Mapping[str, Any],
                context: Mapping[str, Any]) -> bool:
        return bool(self.predicate(result, params, context))

    def render(self, result: Mapping[str, Any], params: Mapping[str, Any],
               context: Mapping[str, Any]) -> str:
        if self.facts is None:
            return self.message
        return self.message.format(**self.facts(result, params, context))


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _items(result: Mapping[str, Any], key: str) -> List[Any]:
    value = result.get(key)
    return list(value) if isinstance(value, (list, tuple)) else []


def _duration(context: Mapping[str, Any]) -> float:
    return float(context.get('duration') or 0)


def _is_error_page(result, params, context) -> bool:
    title = _text(result.get('title')).lower()
    return bool(title) and any(marker in title for marker in ERROR_PAGE_MARKERS)


def _broken_links(result) -> int:
    return sum(
        1 for link in _items(result, 'links')
        if not isinstance(link, Mapping) or not link.get('href') or link.get('href') == '#'
    )


def _hidden_elements(result) -> int:
    return sum(
        1 for element in _items(result, 'elements')
        if isinstance(element, Mapping) and not element.get('visible')
    )


def _has_meta(result, names: tuple) -> bool:
    return any(
        isinstance(meta, Mapping) and (meta.get('name') in names or meta.get('property') in names)
        for meta in _items(result, 'meta')
    )


def _failed_requests(result) -> int:
    return sum(
        1 for request in _items(result, 'requests')
        if isinstance(request, Mapping) and (request.get('status') or 0) >= 400
    )


UNIVERSAL_RULES: List[ValidationRule] = [
    ValidationRule(
        name='slow_execution',
        predicate=lambda r, p, c: _duration(c) > VERY_SLOW_SECONDS,
        message="Execution very slow ({seconds}s)",
        deduction=15,
        facts=lambda r, p, c: {'seconds': round(_duration(c))},
    ),
    ValidationRule(
        name='slow_execution',
        predicate=lambda r, p, c: SLOW_SECONDS < _duration(c) <= VERY_SLOW_SECONDS,
        message="Execution slow ({seconds}s)",
        deduction=5,
        facts=lambda r, p, c: {'seconds': round(_duration(c))},
    ),
    ValidationRule(
        name='healed_selector',
        predicate=lambda r, p, c: bool((r.get('healing') or {}).get('healed')),
        message="Selector was healed automatically, update the source selector",
        deduction=10,
    ),
]


VALIDATION_RULES: Dict[str, List[ValidationRule]] = {
    # Navigation
    'navigate': [
        ValidationRule(
            name='url_changed',
            predicate=lambda r, p, c: 'previous_url' in c and c['previous_url'] == r.get('url'),
            message="URL did not change",
            deduction=20,
        ),
        ValidationRule(
            name='title_exists',
            predicate=lambda r, p, c: not _text(r.get('title')).strip(),
            message="Page title is empty",
            deduction=10,
        ),
        ValidationRule(
            name='error_page',
            predicate=_is_error_page,
            message="Navigated to an error page ({title})",
            severity=ERROR,
            deduction=50,
            facts=lambda r, p, c: {'title': r.get('title')},
        ),
    ],

    # Content extraction
    'get_content': [
        ValidationRule(
            name='content_empty',
            predicate=lambda r, p, c: not _text(r.get('content')).strip(),
            message="Content is empty",
            severity=ERROR,
            deduction=80,
        ),
        ValidationRule(
            name='content_too_short',
            predicate=lambda r, p, c: 0 < len(_text(r.get('content'))) < 50,
            message="Content is very short ({length} < 50 chars)",
            deduction=20,
            facts=lambda r, p, c: {'length': len(_text(r.get('content')))},
        ),
        ValidationRule(
            name='only_whitespace',
            predicate=lambda r, p, c: bool(_text(r.get('content'))) and not _text(r.get('content')).strip(),
            message="Content contains only whitespace",
            severity=ERROR,
            deduction=70,
        ),
    ],

    # Interaction
    'click': [
        ValidationRule(
            name='page_unchanged',
            predicate=lambda r, p, c: 'url_before' in c and c.get('url_after') == c['url_before']
            and not c.get('dom_changed'),
            message="Page did not change after the click",
            deduction=30,
        ),
        ValidationRule(
            name='element_not_interactive',
            predicate=lambda r, p, c: bool(c.get('element_type'))
            and c['element_type'] not in INTERACTIVE_TAGS,
            message="Clicked a non-interactive element ({element_type})",
            deduction=15,
            facts=lambda r, p, c: {'element_type': c.get('element_type')},
        ),
    ],
    'type': [
        ValidationRule(
            name='text_not_entered',
            predicate=lambda r, p, c: 'input_value_after' in c and c['input_value_after'] != p.get('text'),
            message="Text was not fully entered",
            deduction=40,
        ),
        ValidationRule(
            name='input_readonly',
            predicate=lambda r, p, c: bool(c.get('is_readonly')),
            message="Input field is read-only",
            severity=ERROR,
            deduction=60,
        ),
    ],

    # Harvesting
    'link_harvester': [
        ValidationRule(
            name='no_links',
            predicate=lambda r, p, c: not _items(r, 'links'),
            message="No links found",
            deduction=50,
        ),
        ValidationRule(
            name='few_links',
            predicate=lambda r, p, c: 0 < len(_items(r, 'links')) < 3,
            message="Only {count} links found (expected more)",
            deduction=20,
            facts=lambda r, p, c: {'count': len(_items(r, 'links'))},
        ),
        ValidationRule(
            name='broken_links',
            predicate=lambda r, p, c: _broken_links(r) > 0,
            message="{count} broken or empty links found",
            deduction=15,
            facts=lambda r, p, c: {'count': _broken_links(r)},
        ),
    ],
    'extract_json': [
        ValidationRule(
            name='no_json',
            predicate=lambda r, p, c: not r.get('data') and not isinstance(r.get('data'), dict),
            message="No JSON data found",
            deduction=50,
        ),
        ValidationRule(
            name='empty_object',
            predicate=lambda r, p, c: isinstance(r.get('data'), dict) and not r['data'],
            message="JSON object is empty",
            deduction=40,
        ),
    ],
    'find_element': [
        ValidationRule(
            name='no_elements',
            predicate=lambda r, p, c: not _items(r, 'elements'),
            message="No elements found",
            deduction=50,
        ),
        ValidationRule(
            name='hidden_elements',
            predicate=lambda r, p, c: bool(_items(r, 'elements'))
            and _hidden_elements(r) == len(_items(r, 'elements')),
            message="All matched elements are hidden",
            deduction=30,
        ),
    ],
    'form_automator': [
        ValidationRule(
            name='form_not_found',
            predicate=lambda r, p, c: not r.get('form_found'),
            message="Form not found",
            severity=ERROR,
            deduction=70,
        ),
        ValidationRule(
            name='fields_not_filled',
            predicate=lambda r, p, c: (r.get('filled_fields') or 0) < len(p.get('data') or {}),
            message="{missing} fields were not filled",
            deduction=30,
            facts=lambda r, p, c: {'missing': len(p.get('data') or {}) - (r.get('filled_fields') or 0)},
        ),
        ValidationRule(
            name='submit_failed',
            predicate=lambda r, p, c: bool(p.get('submit')) and not r.get('submitted'),
            message="Form was not submitted",
            severity=ERROR,
            deduction=50,
        ),
    ],

    # Scripting
    'execute_js': [
        ValidationRule(
            name='undefined_result',
            predicate=lambda r, p, c: r.get('result') is None,
            message="Script returned no value",
            deduction=20,
        ),
        ValidationRule(
            name='error_in_result',
            predicate=lambda r, p, c: 'error' in _text(r.get('result')).lower(),
            message="Script result may contain an error",
            deduction=25,
        ),
    ],

    # Metadata
    'scrape_meta_tags': [
        ValidationRule(
            name='no_meta',
            predicate=lambda r, p, c: not (_items(r, 'meta') or _items(r, 'og') or _items(r, 'twitter')),
            message="No meta tags found",
            deduction=40,
        ),
        ValidationRule(
            name='missing_essential',
            predicate=lambda r, p, c: not _has_meta(r, ('title', 'og:title'))
            and not _has_meta(r, ('description', 'og:description')),
            message="Essential meta tags (title/description) missing",
            deduction=25,
        ),
    ],

    'wait': [
        ValidationRule(
            name='timeout_occurred',
            predicate=lambda r, p, c: bool(r.get('timed_out')),
            message="Wait timed out before the condition was met",
            deduction=40,
        ),
    ],

    # Network and media
    'network_recorder': [
        ValidationRule(
            name='no_requests',
            predicate=lambda r, p, c: r.get('action') == 'get' and not _items(r, 'requests'),
            message="No network requests were recorded",
            deduction=30,
        ),
        ValidationRule(
            name='failed_requests',
            predicate=lambda r, p, c: _failed_requests(r) > 0,
            message="{count} requests failed (4xx/5xx)",
            deduction=20,
            facts=lambda r, p, c: {'count': _failed_requests(r)},
        ),
    ],
    'stream_extractor': [
        ValidationRule(
            name='no_streams',
            predicate=lambda r, p, c: not _items(r, 'streams'),
            message="No video or audio streams found",
            deduction=50,
        ),
    ],
    'file_downloader': [
        ValidationRule(
            name='download_failed',
            predicate=lambda r, p, c: not r.get('downloaded') or not r.get('path'),
            message="File was not downloaded",
            severity=ERROR,
            deduction=70,
        ),
        ValidationRule(
            name='empty_file',
            predicate=lambda r, p, c: 'size' in r and r['size'] == 0,
            message="Downloaded file is empty (0 bytes)",
            severity=ERROR,
            deduction=60,
        ),
    ],
}
