"""Configuration objects and constants for the masking engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Tuple

logger = logging.getLogger("safegaze")

DEFAULT_API_URL = "https://api.safegaze.com/api/v1/analyze"
DEFAULT_CDN_HOST = "cdn.safegaze.com"
DEFAULT_EXCLUDED_SUBSTRINGS = ("logo", "no-image", "captcha")
DEFAULT_EXCLUDED_ALTS = ("logo",)
DEFAULT_RELATIVE_PREFIXES = ("/wp-content",)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class EngineConfig:
    """Settings that control scanning, caching and classification."""

    api_url: str = DEFAULT_API_URL
    cdn_host: str = DEFAULT_CDN_HOST
    batch_size: int = 4
    min_image_size: int = 40
    request_timeout: float = 5.0
    cache_lookup_timeout: float = 5.0
    load_timeout: float = 10.0
    excluded_substrings: Tuple[str, ...] = field(
        default=DEFAULT_EXCLUDED_SUBSTRINGS
    )
    excluded_alts: Tuple[str, ...] = field(default=DEFAULT_EXCLUDED_ALTS)
    relative_prefixes: Tuple[str, ...] = field(default=DEFAULT_RELATIVE_PREFIXES)
    use_cache: bool = True
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.min_image_size < 0:
            raise ValueError(
                f"min_image_size must not be negative, got {self.min_image_size}"
            )

    @classmethod
    def from_env(cls, **overrides) -> "EngineConfig":
        """Build a config from defaults, SAFEGAZE_* variables and overrides."""
        config = cls()
        api_url = os.getenv("SAFEGAZE_API_URL")
        if api_url:
            logger.debug("SAFEGAZE_API_URL override detected: %s", api_url)
            config = replace(config, api_url=api_url)
        cdn_host = os.getenv("SAFEGAZE_CDN_HOST")
        if cdn_host:
            config = replace(config, cdn_host=cdn_host.strip("/"))
        enabled = os.getenv("SAFEGAZE_ENABLED")
        if enabled is not None:
            value = enabled.strip().lower()
            if value in _TRUE_VALUES:
                config = replace(config, enabled=True)
            elif value in _FALSE_VALUES:
                config = replace(config, enabled=False)
            else:
                logger.warning(
                    "SAFEGAZE_ENABLED is set to %r which is not a boolean; keeping %s",
                    enabled,
                    config.enabled,
                )
        overrides = {key: value for key, value in overrides.items() if value is not None}
        if overrides:
            config = replace(config, **overrides)
        return config
