"""HTTP client for the remote moderation service."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence

import requests

from .config import EngineConfig
from .models import MediaCandidate, ModerationResponse, ModerationResult

logger = logging.getLogger("safegaze.client")


class ModerationError(RuntimeError):
    """The moderation call failed at the transport or payload level."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def build_request_body(batch: Sequence[MediaCandidate]) -> dict:
    return {"media": [candidate.to_request_item() for candidate in batch]}


def parse_response(payload: Any) -> ModerationResponse:
    """Turn a decoded JSON body into a ModerationResponse."""
    if not isinstance(payload, dict):
        raise ModerationError(f"Unexpected response body: {type(payload).__name__}")
    items = payload.get("media")
    if items is None:
        items = []
    if not isinstance(items, list):
        raise ModerationError(f"Unexpected media field: {type(items).__name__}")
    media: List[ModerationResult] = []
    for item in items:
        if not isinstance(item, dict):
            logger.debug("Ignoring malformed media entry %r", item)
            continue
        original = item.get("original_media_url")
        processed = item.get("processed_media_url")
        media.append(
            ModerationResult(
                original_media_url=original if isinstance(original, str) else "",
                success=bool(item.get("success")),
                processed_media_url=processed if isinstance(processed, str) and processed else None,
            )
        )
    return ModerationResponse(
        success=bool(payload.get("success")),
        media=media,
        errors=payload.get("errors"),
    )


class ModerationClient:
    """Send batches to the moderation endpoint."""

    def __init__(
        self,
        config: EngineConfig,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()

    def _post(self, body: dict) -> ModerationResponse:
        try:
            resp = self.session.post(
                self.config.api_url,
                json=body,
                headers={"Content-Type": "application/json"},
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as exc:
            raise ModerationError(f"Request to {self.config.api_url} failed: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise ModerationError(
                f"HTTP error, status = {resp.status_code}", status_code=resp.status_code
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ModerationError(f"Response is not valid JSON: {exc}") from exc
        return parse_response(payload)

    async def analyze(self, batch: Sequence[MediaCandidate]) -> ModerationResponse:
        """POST one batch, giving up after ``request_timeout`` seconds.

        The worker thread is left to finish on its own after a timeout; its
        result is discarded.
        """
        body = build_request_body(batch)
        logger.debug("Sending %d media items to %s", len(batch), self.config.api_url)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._post, body),
                timeout=self.config.request_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ModerationError("Request timed out") from exc
