"""High-level orchestration for masking live pages and saved documents."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

import requests
from playwright.async_api import (
    Browser,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .browser import BrowserPage
from .config import EngineConfig
from .engine import SafeGazeSession, inject_engine
from .models import ScanReport
from .notify import Notifier
from .soup_page import ImageLoader, SoupPage
from .utils import slugify

logger = logging.getLogger("safegaze")


@dataclass
class BrowseConfig:
    """Settings for rendering pages before masking them."""

    output_root: Path
    wait_after_load: float = 1.0
    navigation_timeout: float = 30.0
    scroll_steps: int = 5
    scroll_delay: float = 0.5
    headless: bool = True


@dataclass
class MaskResult:
    """Outcome of masking one page."""

    url: str
    output_path: Optional[Path]
    total_seconds: float
    report: ScanReport
    html: str

    def summary(self) -> dict:
        return {
            "url": self.url,
            "output_path": str(self.output_path) if self.output_path else None,
            "total_seconds": round(self.total_seconds, 3),
            **asdict(self.report),
        }


def build_output_dir(output_root: Path, url: str) -> Path:
    """Create an output directory named after the page URL."""
    parsed = urlparse(url)
    domain = slugify(parsed.netloc or "site", fallback="site")
    path_slug = slugify(parsed.path or "page")
    output_dir = output_root / domain / path_slug[:80]
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def write_result(output_root: Path, url: str, html: str, report: ScanReport) -> Path:
    output_dir = build_output_dir(output_root, url)
    output_path = output_dir / "index.html"
    output_path.write_text(html, encoding="utf-8")
    (output_dir / "report.json").write_text(
        json.dumps(asdict(report), indent=2), encoding="utf-8"
    )
    logger.info("Saved masked page to %s", output_path)
    return output_path


def _report_for(engine: Optional[SafeGazeSession]) -> ScanReport:
    return engine.totals if engine is not None else ScanReport()


async def mask_page(
    browser: Browser,
    url: str,
    config: EngineConfig,
    browse: BrowseConfig,
    notifier: Optional[Notifier] = None,
    session: Optional[requests.Session] = None,
) -> Optional[MaskResult]:
    """Load a URL, run the engine over it while scrolling and save the result."""
    start = time.perf_counter()
    page = await browser.new_page()
    page.set_default_navigation_timeout(browse.navigation_timeout * 1000)
    engine: Optional[SafeGazeSession] = None
    try:
        logger.info("Loading %s", url)
        await page.goto(url, wait_until="networkidle")
        if browse.wait_after_load:
            await page.wait_for_timeout(int(browse.wait_after_load * 1000))
        media_page = BrowserPage(page)
        engine = await inject_engine(media_page, config, notifier, session)
        if engine is not None:
            await media_page.scroll_through(browse.scroll_steps, browse.scroll_delay)
            await engine.wait_idle()
        html = await page.content()
        final_url = page.url
    except PlaywrightTimeoutError as exc:
        logger.error("Timeout while loading %s: %s", url, exc)
        return None
    finally:
        await page.close()

    report = _report_for(engine)
    output_path = write_result(browse.output_root, final_url, html, report)
    return MaskResult(
        url=final_url,
        output_path=output_path,
        total_seconds=time.perf_counter() - start,
        report=report,
        html=html,
    )


async def run_masking(
    urls: List[str],
    config: EngineConfig,
    browse: BrowseConfig,
    notifier: Optional[Notifier] = None,
) -> List[MaskResult]:
    """Mask each URL sequentially in a shared headless browser."""
    results: List[MaskResult] = []
    session = requests.Session()
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=browse.headless)
        try:
            for url in urls:
                try:
                    result = await mask_page(browser, url, config, browse, notifier, session)
                except Exception:  # pylint: disable=broad-except
                    logger.exception("Unexpected error masking %s", url)
                    continue
                if result:
                    results.append(result)
        finally:
            await browser.close()
    return results


async def mask_html(
    html: str,
    base_url: str,
    config: EngineConfig,
    notifier: Optional[Notifier] = None,
    session: Optional[requests.Session] = None,
    loader: Optional[ImageLoader] = None,
) -> MaskResult:
    """Mask a saved HTML document without a browser."""
    start = time.perf_counter()
    page = SoupPage(html, base_url, loader=loader)
    engine = await inject_engine(page, config, notifier, session)
    if engine is not None:
        await engine.wait_idle()
    return MaskResult(
        url=base_url,
        output_path=None,
        total_seconds=time.perf_counter() - start,
        report=_report_for(engine),
        html=page.html(),
    )
