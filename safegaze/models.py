"""Data models used throughout the masking pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class MediaKind(str, Enum):
    """How a replacement is applied to the element."""

    IMAGE = "image"
    BACKGROUND_IMAGE = "backgroundImage"


class CandidateState(str, Enum):
    """Per-element progress, owned by the session."""

    PENDING = "pending"
    SENT = "sent"
    REPLACED = "replaced"
    SKIPPED = "skipped"
    DROPPED = "dropped"


class EventKind(str, Enum):
    REPLACED = "replaced"
    ERROR = "error"
    COUNT = "count"
    PAGE_REFRESH = "page_refresh"


@dataclass
class ElementSnapshot:
    """Read-only view of one page element as reported by a page backend."""

    element_id: str
    tag: str
    attributes: Dict[str, str] = field(default_factory=dict)
    width: Optional[float] = None
    height: Optional[float] = None
    background_image: Optional[str] = None
    has_parent: bool = True

    def attr(self, name: str) -> Optional[str]:
        return self.attributes.get(name)


@dataclass
class MediaCandidate:
    """An element selected for masking during one scan."""

    element_id: str
    original_url: str
    absolute_url: str
    kind: MediaKind
    src_attr: Optional[str]

    def to_request_item(self) -> Dict[str, Any]:
        return {
            "media_url": self.absolute_url,
            "media_type": self.kind.value,
            "has_attachment": False,
            "srcAttr": self.src_attr,
        }


@dataclass
class ModerationResult:
    """Per-item classification outcome returned by the moderation API."""

    original_media_url: str
    success: bool
    processed_media_url: Optional[str]


@dataclass
class ModerationResponse:
    """Parsed moderation API response body."""

    success: bool
    media: List[ModerationResult]
    errors: Any = None


@dataclass
class EngineEvent:
    """Status message emitted to the host."""

    kind: EventKind
    message: str = ""
    count: int = 0


@dataclass
class ScanReport:
    """Tallies for a single scan pass."""

    found: int = 0
    skipped_small: int = 0
    dropped: int = 0
    cached: int = 0
    dispatched: int = 0
    batches: int = 0
    replaced: int = 0
    failed: int = 0

    def merge(self, other: "ScanReport") -> None:
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(self, name) + getattr(other, name))
