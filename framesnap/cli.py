"""Command-line entry point for framesnap."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, Sequence

from .config import (
    DEFAULT_FILENAME_PREFIX,
    ExportConfig,
    ExportOptions,
    InlineFontsMode,
    default_trusted_host_suffix,
)
from .errors import FramesnapError
from .exporter import run_archive, run_export

logger = logging.getLogger("framesnap.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("export", *argv)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("url", help="URL of the page hosting the app")
    parser.add_argument(
        "--output",
        default="output",
        type=Path,
        help="Directory where the exported file should be written",
    )
    parser.add_argument(
        "--prefix",
        default=DEFAULT_FILENAME_PREFIX,
        help="Filename prefix for the exported file",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=1.0,
        help="Seconds to wait after network idle before exporting",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Navigation timeout in seconds",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_export_arguments(parser: argparse.ArgumentParser) -> None:
    _add_common_arguments(parser)
    parser.add_argument(
        "--keep-scripts",
        action="store_true",
        help="Keep scripts so the exported app stays interactive",
    )
    interactions = parser.add_mutually_exclusive_group()
    interactions.add_argument(
        "--freeze-interactions",
        dest="freeze_interactions",
        action="store_const",
        const=True,
        default=None,
        help="Freeze links, forms and controls (default unless --keep-scripts)",
    )
    interactions.add_argument(
        "--allow-interactions",
        dest="freeze_interactions",
        action="store_const",
        const=False,
        help="Do not freeze links, forms and controls",
    )
    parser.add_argument(
        "--drop-hash-links",
        action="store_true",
        help="Also disable in-page #fragment links",
    )
    parser.add_argument(
        "--fonts",
        choices=[mode.value for mode in InlineFontsMode],
        default=InlineFontsMode.ICONS.value,
        help="Which web fonts to embed (default: icons)",
    )
    parser.add_argument(
        "--trusted-host",
        default=default_trusted_host_suffix(),
        help="Host suffix identifying the app frame origin",
    )
    parser.add_argument(
        "--resolve-timeout",
        type=float,
        default=10.0,
        help="Seconds to search for the app frame",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Export an embedded app frame into a single self-contained HTML file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser(
        "export", help="Export the app frame as self-contained HTML"
    )
    _add_export_arguments(export_parser)

    archive_parser = subparsers.add_parser(
        "archive", help="Save the whole host page as a single MHTML archive"
    )
    _add_common_arguments(archive_parser)

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


def _build_config(args: argparse.Namespace) -> ExportConfig:
    config = ExportConfig(
        output_root=Path(args.output).resolve(),
        filename_prefix=args.prefix,
        navigation_timeout=args.timeout,
        wait_after_load=args.wait,
    )
    if getattr(args, "trusted_host", None):
        config.trusted_host_suffix = args.trusted_host
    if getattr(args, "resolve_timeout", None) is not None:
        config.resolve_timeout = args.resolve_timeout
    return config


def _build_options(args: argparse.Namespace) -> ExportOptions:
    raw = {
        "keepScripts": args.keep_scripts,
        "keepHashLinks": not args.drop_hash_links,
        "inlineFonts": args.fonts,
    }
    if args.freeze_interactions is not None:
        raw["disableInteractions"] = args.freeze_interactions
    return ExportOptions.from_mapping(raw)


def _run_export(args: argparse.Namespace) -> int:
    config = _build_config(args)
    options = _build_options(args)
    overall_start = time.perf_counter()
    try:
        result = asyncio.run(run_export(args.url, config, options, args.prefix))
    except FramesnapError as exc:
        logger.error("%s", exc)
        return 1
    logger.info(
        "Finished in %.2fs -> %s (assets: %d, inlined: %d, failed: %d)",
        time.perf_counter() - overall_start,
        result.path,
        result.stats.asset_candidates,
        result.stats.inlined,
        result.stats.failed,
    )
    for warning in result.warnings:
        logger.warning("%s", warning)
    if args.verbose and result.resolution is not None:
        logger.debug(
            "Resolved context %s via %s (%s)",
            result.resolution.context_id,
            result.resolution.method.value,
            result.resolution.url,
        )
    return 0


def _run_archive(args: argparse.Namespace) -> int:
    config = _build_config(args)
    try:
        path = asyncio.run(run_archive(args.url, config, args.prefix))
    except FramesnapError as exc:
        logger.error("%s", exc)
        return 1
    logger.info("Archive saved to %s", path)
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    if args.command == "export":
        code = _run_export(args)
    else:
        code = _run_archive(args)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
