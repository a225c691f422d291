"""Session loop tying scanning, caching, dispatch and visuals together."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional, Set

import requests

from .cache import CacheResolver
from .client import ModerationClient
from .config import EngineConfig
from .dispatcher import BatchDispatcher
from .models import CandidateState, EngineEvent, EventKind, MediaCandidate, MediaKind, ScanReport
from .notify import LoggingNotifier, Notifier
from .page import MediaPage
from .scanner import CandidateScanner
from .visual import VisualStateController

logger = logging.getLogger("safegaze")


class SessionState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class SafeGazeSession:
    """Mask media on one page for as long as the page lives.

    ``start`` runs the initial scan and subscribes to scroll events; every
    scroll schedules another scan. Scans may overlap: elements are claimed in
    ``states`` synchronously before any network work starts.
    """

    def __init__(
        self,
        page: MediaPage,
        config: Optional[EngineConfig] = None,
        notifier: Optional[Notifier] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.page = page
        self.config = config or EngineConfig()
        self.notifier = notifier or LoggingNotifier()
        http = session or requests.Session()
        self.states: Dict[str, CandidateState] = {}
        self.scanner = CandidateScanner(self.config)
        self.visual = VisualStateController(page, self.config.load_timeout)
        self.cache = CacheResolver(self.config, http) if self.config.use_cache else None
        self.client = ModerationClient(self.config, http)
        self.dispatcher = BatchDispatcher(
            self.client, self.visual, self.states, self.notifier, self.config.batch_size
        )
        self.totals = ScanReport()
        self._active_scans = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> SessionState:
        return SessionState.SCANNING if self._active_scans else SessionState.IDLE

    async def start(self) -> ScanReport:
        await self.visual.install()
        await self.page.add_scroll_listener(self.on_scroll)
        return await self.scan()

    async def on_scroll(self) -> None:
        task = asyncio.create_task(self.scan())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait until no scroll-triggered scan is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def reset(self) -> None:
        """Forget claimed elements after the page navigated or reloaded."""
        self.states.clear()
        self.notifier.notify(EngineEvent(EventKind.PAGE_REFRESH, "page_refresh"))

    async def scan(self) -> ScanReport:
        self._active_scans += 1
        try:
            report = await self._scan()
        finally:
            self._active_scans -= 1
        self.totals.merge(report)
        return report

    async def _scan(self) -> ScanReport:
        report = ScanReport()
        await self.page.remove_picture_sources()
        snapshots = await self.page.snapshot_media()
        selection = self.scanner.scan(snapshots, self.page.url, self.states)
        report.found = len(selection.candidates)
        report.skipped_small = len(selection.small)
        report.dropped = selection.dropped
        if not selection.candidates and not selection.small:
            return report

        logger.debug(
            "Scan claimed %d candidates (%d too small)",
            report.found,
            report.skipped_small,
        )
        for candidate in selection.candidates + selection.small:
            await self.visual.blur(candidate.element_id)
        cached_loads: List["asyncio.Future[bool]"] = []
        try:
            for candidate in selection.candidates:
                await self.page.set_attributes(
                    candidate.element_id, {"original-image-url": candidate.original_url}
                )
            uncached = await self._apply_cache(selection.candidates, report, cached_loads)
            report.merge(await self.dispatcher.dispatch(uncached))
        except Exception:  # pylint: disable=broad-except
            logger.exception("Scan of %s failed; unblurring claimed elements", self.page.url)
            for candidate in selection.candidates:
                if self.states.get(candidate.element_id) is CandidateState.PENDING:
                    self.states[candidate.element_id] = CandidateState.SENT
                await self.visual.unblur(candidate.element_id)
        finally:
            if cached_loads:
                outcomes = await asyncio.gather(*cached_loads)
                report.replaced += sum(1 for loaded in outcomes if loaded)
            for candidate in selection.small:
                await self.visual.unblur(candidate.element_id)

        if report.replaced:
            self.notifier.notify(
                EngineEvent(EventKind.COUNT, "replaced", report.replaced)
            )
        return report

    async def _apply_cache(
        self,
        candidates: List[MediaCandidate],
        report: ScanReport,
        loads: List["asyncio.Future[bool]"],
    ) -> List[MediaCandidate]:
        hits: Dict[str, Optional[str]] = {}
        if self.cache is not None:
            hits = await self.cache.resolve(candidates)

        uncached: List[MediaCandidate] = []
        for candidate in candidates:
            cached_url = hits.get(candidate.element_id)
            if cached_url:
                report.cached += 1
                await self.visual.replace(candidate, cached_url, from_cache=True)
                self.states[candidate.element_id] = CandidateState.REPLACED
                loads.append(
                    asyncio.ensure_future(self._finish_cached(candidate, cached_url))
                )
                continue
            if candidate.kind is MediaKind.IMAGE:
                await self.page.set_attributes(
                    candidate.element_id, {"src": candidate.absolute_url}
                )
            uncached.append(candidate)
        return uncached

    async def _finish_cached(self, candidate: MediaCandidate, url: str) -> bool:
        loaded = await self.visual.unblur_on_load(candidate, url)
        if loaded:
            self.notifier.notify(EngineEvent(EventKind.REPLACED, "replaced", 1))
        else:
            self.states[candidate.element_id] = CandidateState.SENT
        return loaded


async def inject_engine(
    page: MediaPage,
    config: Optional[EngineConfig] = None,
    notifier: Optional[Notifier] = None,
    session: Optional[requests.Session] = None,
) -> Optional[SafeGazeSession]:
    """Attach a session to ``page`` unless the engine is disabled."""
    config = config or EngineConfig()
    if not config.enabled:
        logger.info("SafeGaze is disabled; not injecting into %s", page.url)
        return None
    engine = SafeGazeSession(page, config, notifier, session)
    await engine.start()
    return engine
