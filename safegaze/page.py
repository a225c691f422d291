"""Page abstraction the engine runs against."""

from __future__ import annotations

import abc
from typing import Awaitable, Callable, List, Mapping, Optional

from .models import ElementSnapshot

ScrollCallback = Callable[[], Awaitable[None]]

SPINNER_CLASS = "safegaze-spinner"
SPINNER_FOR_ATTR = "data-safegaze-spinner-for"
ELEMENT_ID_ATTR = "data-safegaze-id"

SPINNER_CSS = f"""
.{SPINNER_CLASS} {{
  position: absolute;
  top: 50%;
  left: 50%;
  transform: translate(-50%, -50%);
  border: 4px solid rgba(0, 0, 0, 0.3);
  border-top: 4px solid #3498db;
  border-radius: 50%;
  width: 25px;
  height: 25px;
  margin-left: -12.5px;
  margin-top: -12.5px;
  animation: safegaze-spin 1s linear infinite;
}}

@keyframes safegaze-spin {{
  0% {{ transform: rotate(0deg); }}
  100% {{ transform: rotate(360deg); }}
}}
"""


class MediaPage(abc.ABC):
    """A live document whose media elements can be inspected and rewritten.

    Elements are addressed by the stable ``element_id`` reported in their
    snapshot. Attribute values of ``None`` remove the attribute.
    """

    @property
    @abc.abstractmethod
    def url(self) -> str:
        """Current page URL, used as the base for relative media URLs."""

    @abc.abstractmethod
    async def install_styles(self, css: str) -> None:
        ...

    @abc.abstractmethod
    async def remove_picture_sources(self) -> int:
        """Drop ``<source>`` children of ``<picture>``; return how many were removed."""

    @abc.abstractmethod
    async def snapshot_media(self) -> List[ElementSnapshot]:
        """Return images and background-image elements currently in the page."""

    @abc.abstractmethod
    async def set_attributes(
        self, element_id: str, attributes: Mapping[str, Optional[str]]
    ) -> None:
        ...

    @abc.abstractmethod
    async def set_style(self, element_id: str, name: str, value: Optional[str]) -> None:
        """Set an inline style property (CSS name); ``None`` removes it."""

    @abc.abstractmethod
    async def add_spinner(self, element_id: str) -> bool:
        """Append a spinner next to the element; False if it has no container."""

    @abc.abstractmethod
    async def remove_spinner(self, element_id: str) -> None:
        ...

    @abc.abstractmethod
    async def wait_for_image(self, url: str, timeout: float) -> bool:
        """Wait once for ``url`` to load; True on load, False on error or timeout."""

    @abc.abstractmethod
    async def add_scroll_listener(self, callback: ScrollCallback) -> None:
        ...
