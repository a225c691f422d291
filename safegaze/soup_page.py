"""Static HTML backend built on BeautifulSoup."""

from __future__ import annotations

import asyncio
import itertools
import logging
import re
from typing import Callable, Dict, List, Mapping, Optional, Union

from bs4 import BeautifulSoup, Tag

from .loader import HttpImageLoader
from .models import ElementSnapshot
from .page import (
    ELEMENT_ID_ATTR,
    SPINNER_CLASS,
    SPINNER_FOR_ATTR,
    MediaPage,
    ScrollCallback,
)
from .utils import extract_css_url

logger = logging.getLogger("safegaze.soup")

ImageLoader = Callable[[str], bool]

_LENGTH_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(px)?\s*$", re.IGNORECASE)


def parse_style(value: Optional[str]) -> Dict[str, str]:
    """Split an inline ``style`` attribute into an ordered property map."""
    styles: Dict[str, str] = {}
    if not value:
        return styles
    for declaration in value.split(";"):
        if ":" not in declaration:
            continue
        name, _, prop_value = declaration.partition(":")
        name = name.strip().lower()
        if name:
            styles[name] = prop_value.strip()
    return styles


def format_style(styles: Mapping[str, str]) -> str:
    return "; ".join(f"{name}: {value}" for name, value in styles.items())


def _parse_length(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    match = _LENGTH_PATTERN.match(value)
    if not match:
        return None
    return float(match.group(1))


def _attr_text(value: Union[str, List[str]]) -> str:
    if isinstance(value, list):
        return " ".join(value)
    return value


class SoupPage(MediaPage):
    """A parsed HTML document that behaves like a page for the engine.

    Rendered sizes come from ``width``/``height`` attributes or inline styles and
    are unknown (None) otherwise. Image loads are decided by ``loader``, which
    defaults to fetching the URL over HTTP.
    """

    def __init__(
        self,
        html: Union[str, BeautifulSoup],
        url: str,
        loader: Optional[ImageLoader] = None,
    ) -> None:
        self.soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html, "html.parser")
        self._url = url
        self._loader = loader or HttpImageLoader()
        self._ids = itertools.count(1)
        self._elements: Dict[str, Tag] = {}
        self._scroll_callbacks: List[ScrollCallback] = []

    @property
    def url(self) -> str:
        return self._url

    def html(self) -> str:
        return self.soup.decode()

    def element(self, element_id: str) -> Tag:
        return self._elements[element_id]

    def _element_id(self, tag: Tag) -> str:
        element_id = tag.get(ELEMENT_ID_ATTR)
        if not element_id:
            element_id = f"sg-{next(self._ids)}"
            while element_id in self._elements:
                element_id = f"sg-{next(self._ids)}"
            tag[ELEMENT_ID_ATTR] = element_id
        self._elements[element_id] = tag
        return element_id

    def _snapshot(self, tag: Tag, background_image: Optional[str] = None) -> ElementSnapshot:
        styles = parse_style(tag.get("style"))
        width = _parse_length(tag.get("width"))
        if width is None:
            width = _parse_length(styles.get("width"))
        height = _parse_length(tag.get("height"))
        if height is None:
            height = _parse_length(styles.get("height"))
        parent = tag.parent
        return ElementSnapshot(
            element_id=self._element_id(tag),
            tag=tag.name.lower(),
            attributes={
                name.lower(): _attr_text(value) for name, value in tag.attrs.items()
            },
            width=width,
            height=height,
            background_image=background_image,
            has_parent=parent is not None and not isinstance(parent, BeautifulSoup),
        )

    async def install_styles(self, css: str) -> None:
        style = self.soup.new_tag("style")
        style.string = css
        if self.soup.head is not None:
            self.soup.head.append(style)
        else:
            self.soup.insert(0, style)

    async def remove_picture_sources(self) -> int:
        removed = 0
        for picture in self.soup.find_all("picture"):
            for source in picture.find_all("source"):
                source.decompose()
                removed += 1
        return removed

    async def snapshot_media(self) -> List[ElementSnapshot]:
        snapshots = [self._snapshot(img) for img in self.soup.find_all("img")]
        for tag in self.soup.find_all(style=True):
            if tag.name == "img":
                continue
            styles = parse_style(tag.get("style"))
            background = styles.get("background-image") or styles.get("background")
            if extract_css_url(background):
                snapshots.append(self._snapshot(tag, background_image=background))
        return snapshots

    async def set_attributes(
        self, element_id: str, attributes: Mapping[str, Optional[str]]
    ) -> None:
        tag = self._elements[element_id]
        for name, value in attributes.items():
            if value is None:
                if name in tag.attrs:
                    del tag[name]
            else:
                tag[name] = value

    async def set_style(self, element_id: str, name: str, value: Optional[str]) -> None:
        tag = self._elements[element_id]
        styles = parse_style(tag.get("style"))
        if value is None:
            styles.pop(name, None)
        else:
            styles[name] = value
        if styles:
            tag["style"] = format_style(styles)
        elif "style" in tag.attrs:
            del tag["style"]

    async def add_spinner(self, element_id: str) -> bool:
        tag = self._elements[element_id]
        parent = tag.parent
        if parent is None or isinstance(parent, BeautifulSoup):
            return False
        spinner = self.soup.new_tag("div")
        spinner["class"] = SPINNER_CLASS
        spinner[SPINNER_FOR_ATTR] = element_id
        parent.append(spinner)
        return True

    async def remove_spinner(self, element_id: str) -> None:
        for spinner in self.soup.find_all(attrs={SPINNER_FOR_ATTR: element_id}):
            spinner.decompose()

    async def wait_for_image(self, url: str, timeout: float) -> bool:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._loader, url), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.debug("Timed out waiting for %s to load", url)
            return False

    async def add_scroll_listener(self, callback: ScrollCallback) -> None:
        self._scroll_callbacks.append(callback)

    async def scroll(self) -> None:
        """Dispatch a scroll event to every listener."""
        for callback in list(self._scroll_callbacks):
            await callback()
