"""Lookups of pre-masked media on the annotated-image CDN."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence
from urllib.parse import unquote

import requests

from .config import DEFAULT_CDN_HOST, EngineConfig
from .models import MediaCandidate

logger = logging.getLogger("safegaze.cache")

NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


def cache_url_for(original_url: str, cdn_host: str = DEFAULT_CDN_HOST) -> str:
    """Derive the CDN location where a masked copy of ``original_url`` would live.

    ``https://example.com/wp-content/x.jpg?w=200&h=100`` maps to
    ``https://<cdn>/annotated_image/example.com/wp-content/w_200/h_100/x.jpg``.
    """
    url = unquote(original_url)
    parts = url.split("?")
    path = (
        parts[0]
        .replace("http://", "", 1)
        .replace("https://", "", 1)
        .replace("--", "__")
        .replace("%", "_")
    )
    query = ""
    if len(parts) > 1:
        query = parts[1].replace(",", "_").replace("=", "_").replace("&", "/")

    segments = path.split("/")
    folder = "/".join(segments[:-1])
    if query:
        folder = f"{folder}/{query}"

    name_parts = segments[-1].split(".")
    if len(name_parts) >= 2:
        name = ".".join(name_parts[:-1])
        extension = name_parts[-1]
    else:
        name = name_parts[0] or "image"
        extension = "jpg"
    return f"https://{cdn_host}/annotated_image/{folder}/{name}.{extension}"


class CacheResolver:
    """Check the CDN for masked variants before asking the classifier."""

    def __init__(
        self,
        config: EngineConfig,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()

    def _exists(self, url: str) -> bool:
        try:
            resp = self.session.get(
                url, headers=NO_CACHE_HEADERS, timeout=self.config.cache_lookup_timeout
            )
        except requests.RequestException as exc:
            logger.debug("Cache lookup for %s failed: %s", url, exc)
            return False
        return resp.status_code == 200

    async def lookup(self, candidate: MediaCandidate) -> Optional[str]:
        """Return the masked CDN URL for ``candidate`` or None on a miss."""
        cached_url = cache_url_for(candidate.absolute_url, self.config.cdn_host)
        try:
            found = await asyncio.wait_for(
                asyncio.to_thread(self._exists, cached_url),
                timeout=self.config.cache_lookup_timeout,
            )
        except asyncio.TimeoutError:
            logger.debug("Cache lookup for %s timed out", cached_url)
            return None
        if found:
            logger.debug("Cache hit for %s at %s", candidate.absolute_url, cached_url)
            return cached_url
        return None

    async def resolve(
        self, candidates: Sequence[MediaCandidate]
    ) -> Dict[str, Optional[str]]:
        """Look up all candidates concurrently; map element id to cached URL or None."""
        if not candidates:
            return {}
        results: List[Optional[str]] = await asyncio.gather(
            *(self.lookup(candidate) for candidate in candidates)
        )
        return {
            candidate.element_id: result
            for candidate, result in zip(candidates, results)
        }
