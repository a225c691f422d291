"""Image load checks for pages that are not rendered by a browser."""

from __future__ import annotations

import logging
from typing import Optional

import requests
from filetype import guess

logger = logging.getLogger("safegaze")

MAX_IMAGE_BYTES = 10 * 1024 * 1024


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


class HttpImageLoader:
    """Decide whether a URL would load as an image, the way an ``<img>`` would."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    def __call__(self, url: str) -> bool:
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.debug("Image %s failed to load: %s", url, exc)
            return False

        data = resp.content
        if len(data) > MAX_IMAGE_BYTES:
            logger.debug("Image %s is larger than %s bytes", url, MAX_IMAGE_BYTES)
            return False
        content_type = resp.headers.get("Content-Type", "")
        if detect_image_format(data):
            return True
        # SVG and other text formats have no magic number.
        return content_type.split(";")[0].strip().lower().startswith("image/")
