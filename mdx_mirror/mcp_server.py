"""MCP server exposing mdx-mirror sync/recover tools."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import List

from mcp.server.fastmcp import FastMCP

from .config import SyncConfig
from .models import CollectionResult, RecoveryResult
from .recovery import run_recovery
from .sync import run_sync

logger = logging.getLogger("mdx_mirror.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="mdx-mirror")


def _format_sync(results: List[CollectionResult]) -> str:
    if not results:
        return "No collections found."
    lines = []
    for result in results:
        lines.append(
            f"{result.name}: processed {result.processed}/{result.total}, "
            f"skipped {result.skipped}, images {result.image_count}, "
            f"downloaded {result.downloaded_count}, failed {result.failed_count}, "
            f"cleaned {result.cleaned_count}"
        )
    return "\n".join(lines)


def _format_recovery(results: List[RecoveryResult]) -> str:
    if not results:
        return "No collections found."
    lines = []
    for result in results:
        lines.append(
            f"{result.name}: recovered {result.fixed}, still failing {result.failed}, "
            f"unmapped {len(result.orphaned)}"
        )
        lines.extend(f"  unmapped: {item.file_path}" for item in result.orphaned)
    return "\n".join(lines)


@mcp.tool()
async def sync(
    input_dir: str,
    output_dir: str,
) -> str:
    """Mirror Markdown collections and download their images locally."""

    source = Path(input_dir).expanduser()
    if not source.exists():
        raise FileNotFoundError(f"Input directory does not exist: {source}")

    config = replace(
        SyncConfig.from_env(),
        input_root=source,
        output_root=Path(output_dir).expanduser(),
        enable_file_logging=False,
    )
    results = await run_sync(config)
    return _format_sync(results)


@mcp.tool()
async def recover(
    output_dir: str,
) -> str:
    """Retry failed image downloads in mirrored collections and list unmapped images."""

    config = replace(
        SyncConfig.from_env(),
        output_root=Path(output_dir).expanduser(),
        enable_file_logging=False,
    )
    results = await asyncio.to_thread(run_recovery, config)
    return _format_recovery(results)


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
