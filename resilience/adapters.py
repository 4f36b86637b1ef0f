"""
DOM Queryable Adapters

Concrete ``DomQueryable`` implementations:

- SoupQueryable: static HTML parsed with BeautifulSoup, used for offline
  diagnosis of saved page snapshots and for deterministic tests.
- SeleniumQueryable: a live Selenium WebDriver session; blocking driver
  calls run in worker threads so the event loop stays responsive.
"""

import asyncio
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup
from bs4.element import Tag
from selenium.common.exceptions import StaleElementReferenceException
from selenium.webdriver.common.by import By

from resilience.dom import (
    BoundingBox, DomQueryable, PageFunction, DESCRIBE_ELEMENT, VIEWPORT_SIZE
)


# Geometry assumed for rendered elements without an explicit data-bbox
DEFAULT_ELEMENT_SIZE = (100.0, 20.0)

_HIDDEN_STYLE = re.compile(r'display\s*:\s*none|visibility\s*:\s*hidden', re.IGNORECASE)


class SoupQueryable(DomQueryable):
    """
    DomQueryable over static HTML.

    Geometry is read from a ``data-bbox="x,y,width,height"`` attribute when
    present. Elements that are hidden (``hidden`` attribute, inline
    ``display:none``/``visibility:hidden``, ``input[type=hidden]``, or a
    hidden ancestor) have no bounding box; all others get a default box at
    the origin.
    """

    def __init__(self, html: str, viewport: Tuple[float, float] = (1280.0, 720.0),
                 parser: str = "html.parser"):
        self.soup = BeautifulSoup(html, parser)
        self.viewport = viewport
        self._functions: Dict[str, Callable[..., Any]] = {
            DESCRIBE_ELEMENT.name: self._describe_element,
            VIEWPORT_SIZE.name: self._viewport_size,
        }

    async def query_one(self, selector: str) -> Optional[Tag]:
        return self.soup.select_one(selector)

    async def query_all(self, selector: str) -> List[Tag]:
        return list(self.soup.select(selector))

    async def evaluate(self, fn: PageFunction, *args: Any) -> Any:
        handler = self._functions.get(fn.name)
        if handler is None:
            supported = ", ".join(sorted(self._functions))
            raise ValueError(f"Unsupported page function '{fn.name}' for static HTML; supported: {supported}")
        return handler(*args)

    async def bounding_box(self, handle: Tag) -> Optional[BoundingBox]:
        if self._is_hidden(handle):
            return None

        raw = handle.get('data-bbox')
        if raw:
            x, y, width, height = (float(part) for part in str(raw).split(','))
            return BoundingBox(x, y, width, height)

        return BoundingBox(0.0, 0.0, *DEFAULT_ELEMENT_SIZE)

    def _describe_element(self, handle: Tag) -> Dict[str, Any]:
        attributes = {
            key: " ".join(value) if isinstance(value, list) else str(value)
            for key, value in handle.attrs.items()
        }
        return {
            'tag': handle.name,
            'id': handle.get('id'),
            'classes': list(handle.get('class') or []),
            'name': handle.get('name'),
            'type': handle.get('type'),
            'text': handle.get_text(" ", strip=True),
            'placeholder': handle.get('placeholder'),
            'value': handle.get('value'),
            'attributes': attributes,
        }

    def _viewport_size(self) -> Dict[str, float]:
        width, height = self.viewport
        return {'width': width, 'height': height}

    @staticmethod
    def _is_hidden(handle: Tag) -> bool:
        if handle.name == 'input' and str(handle.get('type', '')).lower() == 'hidden':
            return True

        node: Any = handle
        while isinstance(node, Tag):
            if node.has_attr('hidden'):
                return True
            if _HIDDEN_STYLE.search(str(node.get('style', ''))):
                return True
            node = node.parent
        return False


BOUNDING_RECT = PageFunction(
    name="bounding_rect",
    source="""(el) => {
        const r = el.getBoundingClientRect();
        return {x: r.x, y: r.y, width: r.width, height: r.height};
    }""",
)


class SeleniumQueryable(DomQueryable):
    """DomQueryable over a live Selenium WebDriver session."""

    def __init__(self, driver: Any):
        self.driver = driver

    async def query_one(self, selector: str) -> Optional[Any]:
        elements = await self.query_all(selector)
        return elements[0] if elements else None

    async def query_all(self, selector: str) -> List[Any]:
        return list(await asyncio.to_thread(self.driver.find_elements, By.CSS_SELECTOR, selector))

    async def evaluate(self, fn: PageFunction, *args: Any) -> Any:
        script = f"return ({fn.source}).apply(null, arguments);"
        return await asyncio.to_thread(self.driver.execute_script, script, *args)

    async def bounding_box(self, handle: Any) -> Optional[BoundingBox]:
        try:
            displayed = await asyncio.to_thread(handle.is_displayed)
            if not displayed:
                return None
            rect = await self.evaluate(BOUNDING_RECT, handle)
        except StaleElementReferenceException:
            return None

        if not rect:
            return None
        return BoundingBox(rect['x'], rect['y'], rect['width'], rect['height'])
