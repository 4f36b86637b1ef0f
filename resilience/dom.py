"""
DOM Query Capability

Abstract awaitable interface over a live or static DOM, used by the
element finder and the selector healer. The core never drives a browser
itself: hosts plug in an adapter (see ``resilience.adapters``).

Page-scoped functions are described by ``PageFunction`` objects carrying
both a stable name and JavaScript source, so browser adapters can run the
source while in-process adapters dispatch on the name.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class PageFunction:
    """A page-scoped function the core asks a queryable to evaluate"""
    name: str
    source: str


DESCRIBE_ELEMENT = PageFunction(
    name="describe_element",
    source="""(el) => ({
        tag: el.tagName.toLowerCase(),
        id: el.id || null,
        classes: Array.from(el.classList || []),
        name: el.getAttribute('name'),
        type: el.getAttribute('type'),
        text: (el.textContent || '').trim(),
        placeholder: el.getAttribute('placeholder'),
        value: typeof el.value === 'string' ? el.value : el.getAttribute('value'),
        attributes: Object.fromEntries(Array.from(el.attributes).map(a => [a.name, a.value]))
    })""",
)

VIEWPORT_SIZE = PageFunction(
    name="viewport_size",
    source="() => ({width: window.innerWidth, height: window.innerHeight})",
)


@dataclass
class BoundingBox:
    """Element geometry in viewport coordinates"""
    x: float
    y: float
    width: float
    height: float

    @property
    def top(self) -> float:
        return self.y

    @property
    def left(self) -> float:
        return self.x

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def has_area(self) -> bool:
        return self.width > 0 and self.height > 0


@dataclass
class ElementInfo:
    """Serializable snapshot of one element"""
    tag: str
    id: Optional[str] = None
    classes: List[str] = field(default_factory=list)
    name: Optional[str] = None
    type: Optional[str] = None
    text: str = ""
    placeholder: Optional[str] = None
    value: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)
    box: Optional[BoundingBox] = None

    @property
    def visible(self) -> bool:
        return self.box is not None and self.box.has_area

    def attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], box: Optional[BoundingBox] = None) -> "ElementInfo":
        return cls(
            tag=(data.get('tag') or '').lower(),
            id=data.get('id') or None,
            classes=list(data.get('classes') or []),
            name=data.get('name'),
            type=data.get('type'),
            text=(data.get('text') or '').strip(),
            placeholder=data.get('placeholder'),
            value=data.get('value'),
            attributes=dict(data.get('attributes') or {}),
            box=box,
        )


class DomQueryable(ABC):
    """
    Capability for querying a page.

    Implementations may raise on invalid selectors; callers in the core
    catch and log such failures per query.
    """

    @abstractmethod
    async def query_one(self, selector: str) -> Optional[Any]:
        """Return a handle for the first element matching ``selector``."""

    @abstractmethod
    async def query_all(self, selector: str) -> List[Any]:
        """Return handles for every element matching ``selector``."""

    @abstractmethod
    async def evaluate(self, fn: PageFunction, *args: Any) -> Any:
        """Evaluate a page-scoped function and return its serializable result."""

    @abstractmethod
    async def bounding_box(self, handle: Any) -> Optional[BoundingBox]:
        """Return the element's geometry, or None when it is not rendered."""


async def describe(queryable: DomQueryable, handle: Any) -> ElementInfo:
    """Snapshot an element handle, geometry included."""
    data = await queryable.evaluate(DESCRIBE_ELEMENT, handle) or {}
    box = await queryable.bounding_box(handle)
    return ElementInfo.from_dict(data, box)


async def viewport_size(queryable: DomQueryable) -> Tuple[float, float]:
    """Return (width, height) of the viewport."""
    size = await queryable.evaluate(VIEWPORT_SIZE) or {}
    return float(size.get('width', 0) or 0), float(size.get('height', 0) or 0)


async def scoped_selector(queryable: DomQueryable, selector: str, context: Optional[str]) -> str:
    """
    Restrict a selector list to descendants of ``context``.

    Falls back to the unscoped selector when the context container does
    not resolve.
    """
    if not context or await queryable.query_one(context) is None:
        return selector
    return ", ".join(f"{context} {part.strip()}" for part in selector.split(","))


async def scan(queryable: DomQueryable, selector: str,
               context: Optional[str] = None) -> List[ElementInfo]:
    """Describe every element matching ``selector`` inside ``context``."""
    effective = await scoped_selector(queryable, selector, context)
    handles = await queryable.query_all(effective)
    return [await describe(queryable, handle) for handle in handles]
