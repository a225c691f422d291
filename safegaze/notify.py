"""Host-facing event sinks."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol

from .models import EngineEvent, EventKind

logger = logging.getLogger("safegaze.notify")


class Notifier(Protocol):
    def notify(self, event: EngineEvent) -> None:
        ...


class LoggingNotifier:
    """Write engine events to the ``safegaze`` log."""

    def notify(self, event: EngineEvent) -> None:
        if event.kind is EventKind.ERROR:
            logger.warning("Engine error: %s", event.message)
        else:
            logger.info("Engine event %s: %s (%d)", event.kind.value, event.message, event.count)


@dataclass
class RecordingNotifier:
    """Keep every event in memory."""

    events: List[EngineEvent] = field(default_factory=list)

    def notify(self, event: EngineEvent) -> None:
        self.events.append(event)

    def messages(self, kind: EventKind) -> List[EngineEvent]:
        return [event for event in self.events if event.kind is kind]


class CensorCounter:
    """Session and all-time counts of masked media.

    Every ``replaced`` event bumps both counters and a ``page_refresh`` event
    resets the session count. When ``path`` is given the counters are loaded
    from and saved to that JSON file.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self.session_count = 0
        self.all_time_count = 0
        if path is not None and path.exists():
            self._load(path)

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            self.all_time_count = int(data.get("all_time_censored_count", 0))
            self.session_count = int(data.get("session_censored_count", 0))
        except (OSError, ValueError, AttributeError) as exc:
            logger.warning("Ignoring unreadable counter file %s: %s", path, exc)

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "all_time_censored_count": self.all_time_count,
            "session_censored_count": self.session_count,
        }
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def notify(self, event: EngineEvent) -> None:
        if event.kind is EventKind.PAGE_REFRESH:
            self.session_count = 0
        elif event.kind is EventKind.REPLACED:
            self.session_count += 1
            self.all_time_count += 1
        else:
            return
        try:
            self.save()
        except OSError as exc:
            logger.warning("Failed to save counters to %s: %s", self.path, exc)


class MultiNotifier:
    """Fan an event out to several notifiers."""

    def __init__(self, *notifiers: Notifier) -> None:
        self.notifiers = notifiers

    def notify(self, event: EngineEvent) -> None:
        for notifier in self.notifiers:
            notifier.notify(event)
