"""Fakes and builders shared by the test modules."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

import requests

from safegaze.soup_page import SoupPage

PAGE_URL = "https://s.com/"


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        payload: Any = None,
        invalid_json: bool = False,
        content: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.status_code = status_code
        self.ok = 200 <= status_code < 400
        self._payload = payload
        self._invalid_json = invalid_json
        self.content = content
        self.headers = headers or {}

    def json(self) -> Any:
        if self._invalid_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload

    def raise_for_status(self) -> None:
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """Stand-in for ``requests.Session`` recording every call."""

    def __init__(self) -> None:
        self.get_responses: Dict[str, Any] = {}
        self.default_get: Any = FakeResponse(404)
        self.post_handler: Callable[[dict], Any] = lambda body: FakeResponse(
            200, {"success": True, "media": []}
        )
        self.gets: List[str] = []
        self.posts: List[dict] = []
        self._lock = threading.Lock()

    def get(self, url, headers=None, timeout=None):
        with self._lock:
            self.gets.append(url)
        response = self.get_responses.get(url, self.default_get)
        if isinstance(response, Exception):
            raise response
        return response

    def post(self, url, json=None, headers=None, timeout=None):
        with self._lock:
            self.posts.append(json)
        response = self.post_handler(json)
        if isinstance(response, Exception):
            raise response
        return response


def replace_all(mapping: Dict[str, str]) -> Callable[[dict], FakeResponse]:
    """Build a POST handler that masks every media URL found in ``mapping``."""

    def handler(body: dict) -> FakeResponse:
        media = []
        for item in body["media"]:
            processed = mapping.get(item["media_url"])
            media.append(
                {
                    "original_media_url": item["media_url"],
                    "success": processed is not None,
                    "processed_media_url": processed,
                }
            )
        return FakeResponse(200, {"success": True, "media": media})

    return handler


def make_page(html: str, url: str = PAGE_URL, broken: tuple = ()) -> SoupPage:
    """A static page whose images all load except those listed in ``broken``."""
    return SoupPage(html, url, loader=lambda image_url: image_url not in broken)
