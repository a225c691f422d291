"""In-page media masking: blur, classify and replace images on web pages."""

from .config import EngineConfig
from .engine import SafeGazeSession, inject_engine

__all__ = ["EngineConfig", "SafeGazeSession", "inject_engine"]
__version__ = "0.1.0"
