"""Command-line entry point for the SafeGaze masking engine."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, List, Sequence

from .config import EngineConfig
from .crawler import BrowseConfig, mask_html, run_masking
from .notify import CensorCounter, LoggingNotifier, MultiNotifier

logger = logging.getLogger("safegaze.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("mask", *argv)


def _add_engine_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--api-url",
        default=None,
        help="Moderation endpoint (default: $SAFEGAZE_API_URL or the public API)",
    )
    parser.add_argument(
        "--cdn-host",
        default=None,
        help="Host serving pre-masked images (default: $SAFEGAZE_CDN_HOST or cdn.safegaze.com)",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=None,
        help="Seconds to wait for a moderation response before giving up on a batch",
    )
    parser.add_argument(
        "--min-size",
        type=int,
        default=None,
        help="Minimum rendered width and height (px) for an image to be classified",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=None,
        metavar="SUBSTRING",
        help="URL substring that excludes an image (repeatable; replaces the defaults)",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Skip the CDN lookup for already masked images",
    )
    parser.add_argument(
        "--disable",
        action="store_true",
        help="Do not inject the engine (pages are saved unmodified)",
    )
    parser.add_argument(
        "--counter-file",
        type=Path,
        default=None,
        help="JSON file holding session and all-time censored counts",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_mask_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("urls", nargs="+", help="One or more URLs to mask")
    parser.add_argument(
        "--output",
        default="output",
        type=Path,
        help="Directory where masked HTML and reports should be written",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=1.0,
        help="Seconds to wait after network idle before injecting the engine",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Navigation timeout in seconds",
    )
    parser.add_argument(
        "--scrolls",
        type=int,
        default=5,
        help="Number of scroll positions visited to trigger rescans",
    )
    parser.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser window",
    )
    _add_engine_arguments(parser)


def _add_html_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", type=Path, help="Saved HTML document to mask")
    parser.add_argument(
        "--base-url",
        required=True,
        help="URL the document was loaded from; relative media URLs resolve against it",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Where to write the masked HTML (default: STDOUT)",
    )
    _add_engine_arguments(parser)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Blur, classify and replace sensitive images on web pages.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    mask_parser = subparsers.add_parser(
        "mask", help="Render pages with Playwright and mask their images"
    )
    _add_mask_arguments(mask_parser)

    html_parser = subparsers.add_parser(
        "html", help="Mask images in a saved HTML document"
    )
    _add_html_arguments(html_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def build_engine_config(args: argparse.Namespace) -> EngineConfig:
    excluded: List[str] | None = args.exclude
    return EngineConfig.from_env(
        api_url=args.api_url,
        cdn_host=args.cdn_host,
        request_timeout=args.request_timeout,
        min_image_size=args.min_size,
        excluded_substrings=tuple(excluded) if excluded else None,
        use_cache=False if args.no_cache else None,
        enabled=False if args.disable else None,
    )


def _run_mask(args: argparse.Namespace) -> None:
    _configure_logging(args.verbose)
    config = build_engine_config(args)
    browse = BrowseConfig(
        output_root=Path(args.output).resolve(),
        wait_after_load=args.wait,
        navigation_timeout=args.timeout,
        scroll_steps=args.scrolls,
        headless=not args.headful,
    )
    counter = CensorCounter(args.counter_file)
    notifier = MultiNotifier(LoggingNotifier(), counter)

    overall_start = time.perf_counter()
    results = asyncio.run(run_masking(args.urls, config, browse, notifier))
    total_elapsed = time.perf_counter() - overall_start

    successes = len(results)
    total_urls = len(args.urls)
    logger.info(
        "Finished in %.2fs (%d/%d succeeded, %d failed)",
        total_elapsed,
        successes,
        total_urls,
        total_urls - successes,
    )
    for result in results:
        logger.info(
            "%s -> replaced %d (cached %d), failed %d, batches %d",
            result.url,
            result.report.replaced,
            result.report.cached,
            result.report.failed,
            result.report.batches,
        )
    logger.info(
        "Censored this session: %d, all time: %d",
        counter.session_count,
        counter.all_time_count,
    )


def _run_html(args: argparse.Namespace) -> None:
    _configure_logging(args.verbose)
    config = build_engine_config(args)
    counter = CensorCounter(args.counter_file)
    notifier = MultiNotifier(LoggingNotifier(), counter)

    html = args.path.read_text(encoding="utf-8")
    result = asyncio.run(mask_html(html, args.base_url, config, notifier))
    if args.output:
        args.output.write_text(result.html, encoding="utf-8")
        logger.info("Saved masked document to %s", args.output)
    else:
        sys.stdout.write(result.html)
        sys.stdout.flush()
    logger.info("Report: %s", json.dumps(result.summary()))


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    if args.command == "mask":
        _run_mask(args)
    else:
        _run_html(args)


if __name__ == "__main__":
    main()
