"""
Signature Extraction

Pure normalization of error messages and CSS selectors into
placeholder-substituted signatures, so failures that differ only in
concrete ids, values or numbers compare as the same failure shape.
"""

import re
from typing import Optional


# Message placeholders, applied in order
_DOUBLE_QUOTED = re.compile(r'"[^"]*"')
_SINGLE_QUOTED = re.compile(r"'[^']*'")
_URL = re.compile(r'https?://[^\s"\']+')
_PATH = re.compile(r'[/\\][\w/\\.-]+\.\w+')
_NUMBER = re.compile(r'\b\d+\b')
_WHITESPACE = re.compile(r'\s+')

# Selector placeholders, applied in order
_ATTRIBUTE = re.compile(r'\[\s*[\w:-]+\s*[~|^$*]?=\s*(?:"[^"]*"|\'[^\']*\'|[^\]\s]+)\s*\]')
_ID = re.compile(r'#[a-zA-Z][\w-]*')
_CLASS = re.compile(r'\.[a-zA-Z][\w-]*')
_NTH_CHILD = re.compile(r':nth-child\(\s*\d+\s*\)')


def normalize_message(text: Optional[str]) -> Optional[str]:
    """
    Normalize an error message into its signature.

    Quoted substrings, URLs, file paths and bare numbers are replaced with
    fixed placeholders and whitespace is collapsed.

    Args:
        text: Raw error message

    Returns:
        Normalized message, or None for empty input
    """
    if not text:
        return None

    pattern = _DOUBLE_QUOTED.sub('"<STRING>"', text)
    pattern = _SINGLE_QUOTED.sub("'<STRING>'", pattern)
    pattern = _URL.sub('<URL>', pattern)
    pattern = _PATH.sub('<PATH>', pattern)
    pattern = _NUMBER.sub('<NUM>', pattern)
    return _WHITESPACE.sub(' ', pattern).strip()


def normalize_selector(selector: Optional[str]) -> Optional[str]:
    """
    Normalize a CSS selector into its signature.

    Concrete ids become ``#<ID>``, classes ``.<CLASS>``, attribute-value
    pairs ``[<ATTR>="<VAL>"]`` and ``nth-child`` indices ``nth-child(<N>)``;
    combinators, tags and pseudo-classes are kept.

    Args:
        selector: CSS selector string

    Returns:
        Normalized selector, or None for empty input
    """
    if not selector:
        return None

    pattern = _ATTRIBUTE.sub('[<ATTR>="<VAL>"]', selector.strip())
    pattern = _ID.sub('#<ID>', pattern)
    pattern = _CLASS.sub('.<CLASS>', pattern)
    pattern = _NTH_CHILD.sub(':nth-child(<N>)', pattern)
    return pattern


def word_overlap(first: Optional[str], second: Optional[str]) -> float:
    """Share of words in common, relative to the longer text."""
    if not first or not second:
        return 0.0

    words1 = first.lower().split()
    words2 = second.lower().split()
    if not words1 or not words2:
        return 0.0

    vocabulary = set(words2)
    common = sum(1 for word in words1 if word in vocabulary)
    return min(common / max(len(words1), len(words2)), 1.0)


def jaccard_similarity(first: Optional[str], second: Optional[str]) -> float:
    """Jaccard similarity of the two word sets."""
    if not first or not second:
        return 0.0

    words1 = set(first.lower().split())
    words2 = set(second.lower().split())
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)
