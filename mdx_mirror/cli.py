"""Command-line entry point for mirroring Markdown collections."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Sequence

from .config import SyncConfig
from .logs import configure_logging
from .recovery import run_recovery
from .sync import run_sync

logger = logging.getLogger("mdx_mirror.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return ("sync",)
    first = argv[0]
    if first in commands or first in ("-h", "--help"):
        return argv
    return ("sync", *argv)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Directory holding mirrored collections (default: $OUTPUT_DIR or downloads-with-images)",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=None,
        help="Download attempts per image (default: $RETRY_COUNT or 3)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Network timeout in seconds (default: $NETWORK_TIMEOUT ms or 30s)",
    )
    parser.add_argument(
        "--verify-cached",
        action="store_true",
        help="Re-download cached images whose contents are not a recognizable image",
    )
    parser.add_argument(
        "--no-log-file",
        action="store_true",
        help="Only log to the console",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_sync_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--input",
        type=Path,
        default=None,
        help="Directory with one sub-directory of Markdown files per collection "
        "(default: $DOWNLOADS_DIR or downloads)",
    )
    parser.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        help="Maximum simultaneous image downloads per document (default: $MAX_CONCURRENT or 5)",
    )
    _add_common_arguments(parser)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Mirror Markdown collections locally and download their embedded images.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser(
        "sync", help="Rewrite documents to use local copies of their images"
    )
    _add_sync_arguments(sync_parser)

    recover_parser = subparsers.add_parser(
        "recover", help="Retry failed image downloads and report unmapped images"
    )
    _add_common_arguments(recover_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, base: SyncConfig | None = None) -> SyncConfig:
    """Apply command-line overrides on top of the environment configuration."""
    config = base or SyncConfig.from_env()
    overrides = {}
    if getattr(args, "input", None) is not None:
        overrides["input_root"] = args.input
    if args.output is not None:
        overrides["output_root"] = args.output
    if getattr(args, "max_concurrent", None) is not None:
        overrides["max_concurrent"] = max(1, args.max_concurrent)
    if args.retries is not None:
        overrides["retry_count"] = max(1, args.retries)
    if args.timeout is not None:
        overrides["network_timeout"] = args.timeout
    if args.verify_cached:
        overrides["verify_cached"] = True
    if args.no_log_file:
        overrides["enable_file_logging"] = False
    return replace(config, **overrides)


def _run_sync(config: SyncConfig) -> None:
    logger.info("Mirroring %s into %s", config.input_root, config.output_root)
    asyncio.run(run_sync(config))


def _run_recover(config: SyncConfig) -> None:
    logger.info("Recovering missing images in %s", config.output_root)
    run_recovery(config)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    config = build_config(args)
    configure_logging(
        config,
        "process-images" if args.command == "sync" else "fix-images",
        verbose=args.verbose,
    )
    try:
        if args.command == "sync":
            _run_sync(config)
        else:
            _run_recover(config)
    except FileNotFoundError as exc:
        logger.error("%s", exc)
        return 1
    except Exception:  # pylint: disable=broad-except
        logger.exception("Unexpected error")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
