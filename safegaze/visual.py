"""Blur and spinner handling for pending elements."""

from __future__ import annotations

import logging

from .models import MediaCandidate, MediaKind
from .page import SPINNER_CSS, MediaPage

logger = logging.getLogger("safegaze.visual")

BLUR_FILTER = "blur(10px)"


def css_url(url: str) -> str:
    escaped = url.replace("\\", "\\\\").replace('"', '\\"')
    return f'url("{escaped}")'


class VisualStateController:
    """Apply and clear the pending-state visuals on page elements."""

    def __init__(self, page: MediaPage, load_timeout: float = 10.0) -> None:
        self.page = page
        self.load_timeout = load_timeout
        self._styles_installed = False

    async def install(self) -> None:
        if self._styles_installed:
            return
        await self.page.install_styles(SPINNER_CSS)
        self._styles_installed = True

    async def blur(self, element_id: str) -> None:
        await self.page.set_style(element_id, "filter", BLUR_FILTER)
        if not await self.page.add_spinner(element_id):
            logger.debug("No spinner container for %s; blurring only", element_id)

    async def unblur(self, element_id: str) -> None:
        await self.page.remove_spinner(element_id)
        await self.page.set_style(element_id, "filter", None)

    async def unblur_on_load(self, candidate: MediaCandidate, url: str) -> bool:
        """Clear the blur once ``url`` has loaded.

        If the replacement fails to load the element is pointed back at its
        original URL and the wait is repeated once. The filter is cleared
        whatever happens; the return value tells whether the replacement stuck.
        """
        original_url = candidate.absolute_url
        try:
            if await self.page.wait_for_image(url, self.load_timeout):
                return True
            logger.warning(
                "Replacement %s failed to load; restoring %s", url, original_url
            )
            await self.restore(candidate)
            if not await self.page.wait_for_image(original_url, self.load_timeout):
                logger.debug("Original %s did not load either", original_url)
            return False
        finally:
            await self.unblur(candidate.element_id)

    async def restore(self, candidate: MediaCandidate) -> None:
        """Undo ``replace``, including the lazy-load source it overwrote."""
        element_id = candidate.element_id
        if candidate.kind is MediaKind.BACKGROUND_IMAGE:
            await self.page.set_style(
                element_id, "background-image", css_url(candidate.absolute_url)
            )
            await self.page.set_attributes(element_id, {"data-replaced": None})
            return
        attributes = {"src": candidate.absolute_url, "data-replaced": None}
        if candidate.src_attr == "data-src":
            attributes["data-src"] = candidate.original_url
        await self.page.set_attributes(element_id, attributes)

    async def replace(self, candidate: MediaCandidate, url: str, from_cache: bool) -> None:
        """Point the element at a masked URL and clear lazy-load attributes."""
        markers = {"data-replaced": "true", "from-db": "true" if from_cache else "false"}
        if candidate.kind is MediaKind.BACKGROUND_IMAGE:
            await self.page.set_style(candidate.element_id, "background-image", css_url(url))
            await self.page.set_attributes(candidate.element_id, markers)
            return
        attributes = {"src": url, "srcset": None, "data-srcset": None}
        if candidate.src_attr == "data-src":
            attributes["data-src"] = url
        attributes.update(markers)
        await self.page.set_attributes(candidate.element_id, attributes)
