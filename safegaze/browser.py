"""Live page backend driven by Playwright."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Mapping, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .models import ElementSnapshot
from .page import (
    ELEMENT_ID_ATTR,
    SPINNER_CLASS,
    SPINNER_FOR_ATTR,
    MediaPage,
    ScrollCallback,
)

logger = logging.getLogger("safegaze.browser")

_FIND_ELEMENT = f"""
const find = (id) => document.querySelector('[{ELEMENT_ID_ATTR}="' + CSS.escape(id) + '"]');
"""

_REMOVE_PICTURE_SOURCES = """
() => {
  const sources = Array.from(document.querySelectorAll('picture source'));
  sources.forEach((source) => source.remove());
  return sources.length;
}
"""

_SNAPSHOT_MEDIA = f"""
(nextId) => {{
  let counter = nextId;
  const describe = (el, background) => {{
    if (!el.getAttribute('{ELEMENT_ID_ATTR}')) {{
      el.setAttribute('{ELEMENT_ID_ATTR}', 'sg-' + counter++);
    }}
    const rect = el.getBoundingClientRect();
    const attributes = {{}};
    for (const attr of Array.from(el.attributes)) {{
      attributes[attr.name.toLowerCase()] = attr.value;
    }}
    return {{
      element_id: el.getAttribute('{ELEMENT_ID_ATTR}'),
      tag: el.tagName.toLowerCase(),
      attributes,
      width: rect.width,
      height: rect.height,
      background_image: background,
      has_parent: !!el.parentElement,
    }};
  }};
  const found = Array.from(document.getElementsByTagName('img')).map((img) => describe(img, null));
  for (const el of Array.from(document.querySelectorAll('body *'))) {{
    if (el.tagName === 'IMG') continue;
    const background = window.getComputedStyle(el).backgroundImage;
    if (background && background.startsWith('url(')) {{
      found.push(describe(el, background));
    }}
  }}
  return {{ media: found, nextId: counter }};
}}
"""

_SET_ATTRIBUTES = f"""
({{ id, attributes }}) => {{
  {_FIND_ELEMENT}
  const el = find(id);
  if (!el) return false;
  for (const [name, value] of Object.entries(attributes)) {{
    if (value === null) el.removeAttribute(name);
    else el.setAttribute(name, value);
  }}
  return true;
}}
"""

_SET_STYLE = f"""
({{ id, name, value }}) => {{
  {_FIND_ELEMENT}
  const el = find(id);
  if (!el) return false;
  if (value === null) el.style.removeProperty(name);
  else el.style.setProperty(name, value);
  return true;
}}
"""

_ADD_SPINNER = f"""
(id) => {{
  {_FIND_ELEMENT}
  const el = find(id);
  if (!el || !el.parentElement) return false;
  const spinner = document.createElement('div');
  spinner.classList.add('{SPINNER_CLASS}');
  spinner.setAttribute('{SPINNER_FOR_ATTR}', id);
  el.parentElement.appendChild(spinner);
  return true;
}}
"""

_REMOVE_SPINNER = f"""
(id) => {{
  document
    .querySelectorAll('[{SPINNER_FOR_ATTR}="' + CSS.escape(id) + '"]')
    .forEach((spinner) => spinner.remove());
}}
"""

_WAIT_FOR_IMAGE = """
({ url, timeoutMs }) => new Promise((resolve) => {
  const image = new Image();
  const timer = setTimeout(() => resolve(false), timeoutMs);
  image.onload = () => { clearTimeout(timer); resolve(true); };
  image.onerror = () => { clearTimeout(timer); resolve(false); };
  image.src = url;
})
"""

_SCROLL_BINDING = "__safegazeOnScroll"
_SCROLL_LISTENER = f"""
() => {{
  if (window.__safegazeScrollInstalled) return;
  window.__safegazeScrollInstalled = true;
  window.addEventListener('scroll', () => {{ window.{_SCROLL_BINDING}(); }});
}}
"""


class BrowserPage(MediaPage):
    """Adapter exposing a Playwright ``Page`` to the engine."""

    def __init__(self, page: Page) -> None:
        self.page = page
        self._next_id = 1
        self._scroll_callbacks: List[ScrollCallback] = []
        self._binding_installed = False

    @property
    def url(self) -> str:
        return self.page.url

    async def install_styles(self, css: str) -> None:
        await self.page.add_style_tag(content=css)

    async def remove_picture_sources(self) -> int:
        return await self.page.evaluate(_REMOVE_PICTURE_SOURCES)

    async def snapshot_media(self) -> List[ElementSnapshot]:
        result = await self.page.evaluate(_SNAPSHOT_MEDIA, self._next_id)
        self._next_id = result["nextId"]
        return [ElementSnapshot(**item) for item in result["media"]]

    async def set_attributes(
        self, element_id: str, attributes: Mapping[str, Optional[str]]
    ) -> None:
        await self.page.evaluate(
            _SET_ATTRIBUTES, {"id": element_id, "attributes": dict(attributes)}
        )

    async def set_style(self, element_id: str, name: str, value: Optional[str]) -> None:
        await self.page.evaluate(
            _SET_STYLE, {"id": element_id, "name": name, "value": value}
        )

    async def add_spinner(self, element_id: str) -> bool:
        return await self.page.evaluate(_ADD_SPINNER, element_id)

    async def remove_spinner(self, element_id: str) -> None:
        await self.page.evaluate(_REMOVE_SPINNER, element_id)

    async def wait_for_image(self, url: str, timeout: float) -> bool:
        try:
            return await asyncio.wait_for(
                self.page.evaluate(
                    _WAIT_FOR_IMAGE, {"url": url, "timeoutMs": int(timeout * 1000)}
                ),
                timeout=timeout + 1.0,
            )
        except asyncio.TimeoutError:
            logger.debug("Timed out waiting for %s to load", url)
            return False
        except PlaywrightError as exc:
            logger.debug("Could not wait for %s: %s", url, exc)
            return False

    async def add_scroll_listener(self, callback: ScrollCallback) -> None:
        self._scroll_callbacks.append(callback)
        if self._binding_installed:
            return
        await self.page.expose_function(_SCROLL_BINDING, self._dispatch_scroll)
        await self.page.add_init_script(f"({_SCROLL_LISTENER})()")
        await self.page.evaluate(_SCROLL_LISTENER)
        self._binding_installed = True

    async def _dispatch_scroll(self) -> None:
        for callback in list(self._scroll_callbacks):
            await callback()

    async def scroll_through(self, steps: int = 5, delay: float = 0.5) -> None:
        """Scroll from top to bottom in ``steps`` stops to reveal lazy content."""
        height = await self.page.evaluate(
            "() => Math.max(document.body?.scrollHeight || 0, "
            "document.documentElement?.scrollHeight || 0)"
        )
        count = max(1, steps)
        positions = [
            int(round(i * height / (count - 1))) if count > 1 else 0
            for i in range(count)
        ]
        for position in positions:
            await self.page.evaluate("(y) => window.scrollTo(0, y)", position)
            await asyncio.sleep(delay)
