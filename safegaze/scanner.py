"""Candidate selection over page snapshots."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .config import EngineConfig
from .models import CandidateState, ElementSnapshot, MediaCandidate, MediaKind
from .utils import extract_css_url, is_data_uri, normalize_media_url

logger = logging.getLogger("safegaze.scanner")

# Markers left on nodes by earlier injections; html.parser and the DOM both
# report attribute names in lower case.
CLAIM_MARKERS = ("issent", "data-replaced", "hasbackgroundimage")

StateMap = Dict[str, CandidateState]


@dataclass
class ScanSelection:
    """Elements claimed by one scan."""

    candidates: List[MediaCandidate] = field(default_factory=list)
    small: List[MediaCandidate] = field(default_factory=list)
    dropped: int = 0


class CandidateScanner:
    """Select media elements that still need masking.

    ``scan`` claims what it returns in the state map before returning and never
    awaits, so two overlapping scans cannot select the same element.
    """

    def __init__(self, config: EngineConfig) -> None:
        self.config = config

    def scan(
        self,
        snapshots: Iterable[ElementSnapshot],
        page_url: str,
        states: StateMap,
    ) -> ScanSelection:
        selection = ScanSelection()
        for snapshot in snapshots:
            previous = states.get(snapshot.element_id)
            if previous is not None and previous is not CandidateState.SKIPPED:
                continue
            if self._is_marked(snapshot):
                continue
            found = self._select(snapshot)
            if found is None:
                continue
            raw_url, kind, src_attr = found
            if not self._is_eligible_url(raw_url):
                continue
            if snapshot.tag == "img" and (snapshot.attr("alt") or "") in self.config.excluded_alts:
                continue

            absolute_url = normalize_media_url(
                raw_url, page_url, self.config.relative_prefixes
            )
            if absolute_url is None:
                logger.debug("Dropping %s: unusable URL %r", snapshot.element_id, raw_url)
                states[snapshot.element_id] = CandidateState.DROPPED
                selection.dropped += 1
                continue

            candidate = MediaCandidate(
                element_id=snapshot.element_id,
                original_url=raw_url,
                absolute_url=absolute_url,
                kind=kind,
                src_attr=src_attr,
            )
            if not self._has_min_rendered_size(snapshot):
                if previous is None:
                    states[snapshot.element_id] = CandidateState.SKIPPED
                    selection.small.append(candidate)
                continue

            states[snapshot.element_id] = CandidateState.PENDING
            selection.candidates.append(candidate)
        return selection

    def _select(
        self, snapshot: ElementSnapshot
    ) -> Optional[Tuple[str, MediaKind, Optional[str]]]:
        if snapshot.tag != "img":
            url = extract_css_url(snapshot.background_image)
            if url is None:
                return None
            return url, MediaKind.BACKGROUND_IMAGE, None

        data_src = (snapshot.attr("data-src") or "").strip()
        if data_src and self._is_eligible_url(data_src):
            return data_src, MediaKind.IMAGE, "data-src"
        src = (snapshot.attr("src") or "").strip()
        if src:
            return src, MediaKind.IMAGE, "src"
        xlink = (snapshot.attr("xlink:href") or "").strip()
        if xlink:
            return xlink, MediaKind.IMAGE, "xlink:href"
        return None

    def _is_marked(self, snapshot: ElementSnapshot) -> bool:
        return any(snapshot.attr(marker) == "true" for marker in CLAIM_MARKERS)

    def _is_eligible_url(self, url: str) -> bool:
        if is_data_uri(url):
            return False
        lowered = url.lower()
        if ".svg" in lowered:
            return False
        return not any(term in lowered for term in self.config.excluded_substrings)

    def _has_min_rendered_size(self, snapshot: ElementSnapshot) -> bool:
        # Backends that cannot measure report None; such elements are not held back.
        minimum = self.config.min_image_size
        if snapshot.width is not None and snapshot.width < minimum:
            return False
        if snapshot.height is not None and snapshot.height < minimum:
            return False
        return True
