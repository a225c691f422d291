"""MCP server exposing SafeGaze masking tools."""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .config import EngineConfig
from .crawler import BrowseConfig, mask_html as mask_html_document, run_masking
from .notify import RecordingNotifier

logger = logging.getLogger("safegaze.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="safegaze")


@mcp.tool()
async def mask_url(url: str) -> str:
    """Render a web page, mask its images and return a JSON report."""

    config = EngineConfig.from_env()
    with tempfile.TemporaryDirectory(prefix="safegaze-mask-") as tmp_dir:
        browse = BrowseConfig(output_root=Path(tmp_dir))
        results = await run_masking([url], config, browse, RecordingNotifier())
        if not results:
            raise RuntimeError(f"Failed to mask {url}")
        summary = results[0].summary()
    summary.pop("output_path", None)
    return json.dumps(summary)


@mcp.tool()
async def mask_html(path: str, base_url: str) -> str:
    """Mask images in a saved HTML file and return the rewritten document."""

    source = Path(path).expanduser()
    if not source.exists():
        raise FileNotFoundError(f"Document path does not exist: {source}")
    html = source.read_text(encoding="utf-8")
    result = await mask_html_document(html, base_url, EngineConfig.from_env())
    return result.html


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
