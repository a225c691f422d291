"""Batching of uncached candidates and reconciliation of moderation results."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from .client import ModerationClient, ModerationError
from .models import (
    CandidateState,
    EngineEvent,
    EventKind,
    MediaCandidate,
    ModerationResponse,
    ModerationResult,
    ScanReport,
)
from .notify import Notifier
from .utils import chunked
from .visual import VisualStateController

logger = logging.getLogger("safegaze.dispatcher")


def match_result(
    current_url: str, results: Sequence[ModerationResult]
) -> Optional[ModerationResult]:
    """Find the result for an element by URL rather than by position.

    An exact match wins; otherwise the first result whose URL is contained in
    the element's URL (the service may strip tracking parameters).
    """
    for result in results:
        if result.original_media_url == current_url:
            return result
    for result in results:
        if result.original_media_url and result.original_media_url in current_url:
            return result
    return None


class BatchDispatcher:
    """Send candidates in fixed-size batches and apply what comes back.

    Batches run one after another. Transport failures unblur the whole batch;
    per-item failures only touch that item. Nothing is retried.
    """

    def __init__(
        self,
        client: ModerationClient,
        visual: VisualStateController,
        states: Dict[str, CandidateState],
        notifier: Notifier,
        batch_size: int = 4,
    ) -> None:
        self.client = client
        self.visual = visual
        self.states = states
        self.notifier = notifier
        self.batch_size = batch_size

    async def dispatch(self, candidates: Sequence[MediaCandidate]) -> ScanReport:
        report = ScanReport()
        for batch in chunked(candidates, self.batch_size):
            report.batches += 1
            report.dispatched += len(batch)
            for candidate in batch:
                self.states[candidate.element_id] = CandidateState.SENT

            try:
                response = await self.client.analyze(batch)
            except ModerationError as exc:
                logger.error("Error occurred during API request: %s", exc)
                self.notifier.notify(EngineEvent(EventKind.ERROR, str(exc)))
                await self._unblur_batch(batch)
                report.failed += len(batch)
                continue

            if not response.success:
                logger.error("API request failed: %s", response.errors)
                self.notifier.notify(
                    EngineEvent(EventKind.ERROR, f"API request failed: {response.errors}")
                )
                await self._unblur_batch(batch)
                report.failed += len(batch)
                continue

            replaced = await self._reconcile(batch, response)
            report.replaced += replaced
            report.failed += len(batch) - replaced
        return report

    async def _reconcile(
        self, batch: List[MediaCandidate], response: ModerationResponse
    ) -> int:
        loads = []
        for candidate in batch:
            result = match_result(candidate.absolute_url, response.media)
            if result is None or not result.success or not result.processed_media_url:
                if result is None:
                    logger.debug("No result for %s", candidate.absolute_url)
                await self.visual.unblur(candidate.element_id)
                continue
            await self.visual.replace(candidate, result.processed_media_url, from_cache=False)
            self.states[candidate.element_id] = CandidateState.REPLACED
            loads.append(self._finish(candidate, result.processed_media_url))
        if not loads:
            return 0
        outcomes = await asyncio.gather(*loads)
        return sum(1 for loaded in outcomes if loaded)

    async def _finish(self, candidate: MediaCandidate, url: str) -> bool:
        loaded = await self.visual.unblur_on_load(candidate, url)
        if loaded:
            self.notifier.notify(EngineEvent(EventKind.REPLACED, "replaced", 1))
        else:
            self.states[candidate.element_id] = CandidateState.SENT
        return loaded

    async def _unblur_batch(self, batch: Sequence[MediaCandidate]) -> None:
        for candidate in batch:
            await self.visual.unblur(candidate.element_id)
