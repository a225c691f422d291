"""Utility helpers for URL normalization and path handling."""

from __future__ import annotations

import re
from typing import Iterable, Iterator, List, Optional, Sequence, TypeVar
from urllib.parse import urljoin, urlparse

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
CSS_URL_PATTERN = re.compile(r"""url\(\s*(['"]?)(.*?)\1\s*\)""", re.IGNORECASE)
_ALLOWED_SCHEMES = {"http", "https"}

T = TypeVar("T")


def slugify(value: str, fallback: str = "page") -> str:
    """Generate a filesystem-friendly slug using ASCII characters only."""
    normalized = value.encode("ascii", "ignore").decode("ascii")
    normalized = normalized.lower()
    normalized = SLUG_PATTERN.sub("-", normalized).strip("-")
    return normalized or fallback


def is_data_uri(value: str) -> bool:
    return value.strip().lower().startswith("data:")


def extract_css_url(value: Optional[str]) -> Optional[str]:
    """Return the first ``url(...)`` reference in a CSS background value."""
    if not value:
        return None
    match = CSS_URL_PATTERN.search(value)
    if not match:
        return None
    return match.group(2).strip() or None


def normalize_media_url(
    raw: Optional[str],
    page_url: str,
    relative_prefixes: Iterable[str] = (),
) -> Optional[str]:
    """Resolve an attribute value to an absolute http(s) URL.

    Protocol-relative values take the page protocol, known site-root prefixes
    are joined onto the page origin, and everything else is resolved with
    standard base-URL semantics. Returns None for values that cannot be used.
    """
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        page = urlparse(page_url)
        protocol = f"{page.scheme or 'https'}:"
        if value.startswith("//"):
            resolved = protocol + value
        elif any(value.startswith(prefix) for prefix in relative_prefixes):
            resolved = f"{protocol}//{page.netloc}{value}"
        else:
            resolved = urljoin(page_url, value)
        parsed = urlparse(resolved)
    except ValueError:
        return None
    if parsed.scheme not in _ALLOWED_SCHEMES or not parsed.netloc:
        return None
    return resolved


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield list(items[start : start + size])
