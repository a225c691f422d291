"""Shared fixtures."""

from __future__ import annotations

import pytest

from helpers import FakeSession
from safegaze.config import EngineConfig
from safegaze.notify import RecordingNotifier


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(request_timeout=2.0, cache_lookup_timeout=2.0, load_timeout=2.0)
