"""Command-line interface for the Pulltube handoff."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Settings, SettingsError, load_config

load_config()

from .host import HostError
from .store import ExtractionRecord


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _debug_from_env() -> bool:
    try:
        return Settings.from_env().debug
    except SettingsError:
        return False


def _settings_from_args(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    overrides: Dict[str, Any] = {}
    if getattr(args, "cdp_url", None):
        overrides["cdp_url"] = args.cdp_url
    max_attempts = getattr(args, "max_attempts", None)
    if max_attempts is not None:
        if max_attempts < 1:
            raise SettingsError("--max-attempts must be at least 1")
        overrides["max_attempts"] = max_attempts
    if getattr(args, "download_dir", None):
        overrides["download_dir"] = Path(args.download_dir).expanduser()
    if not overrides:
        return settings
    return dataclasses.replace(settings, **overrides)


def _record_to_dict(record: Optional[ExtractionRecord]) -> Dict[str, Any]:
    """Shape of the ``getStoredUrls`` reply."""
    return {"urls": record.to_dict() if record else None}


def _format_record_text(record: Optional[ExtractionRecord]) -> str:
    if record is None:
        return "No stored URLs."
    lines = [
        f"Last extracted: {record.extracted_at.isoformat()}",
        f"{len(record.identifiers)} URL(s):",
    ]
    lines.extend(f"  {url}" for url in record.identifiers)
    return "\n".join(lines)


def _run_main(coro_factory, args: argparse.Namespace) -> int:
    try:
        return asyncio.run(coro_factory(args))
    except KeyboardInterrupt:
        logging.info("Interrupted")
        return 130
    except HostError as exc:
        logging.error("Browser error: %s", exc)
        return 1
    except Exception as exc:
        logging.error("Error: %s", exc)
        if args.verbose:
            logging.exception("Full traceback:")
        return 1


# =============================================================================
# HANDLE COMMAND
# =============================================================================


def _parse_handle_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pulltube",
        description="Send the current YouTube video or playlist to Pulltube.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Handle the active tab of the browser at PULLTUBE_CDP_URL
  pulltube

  # Handle a specific page (reuses a tab showing it, or opens one)
  pulltube 'https://www.youtube.com/watch?v=abc&list=xyz'

  # Use another browser endpoint
  pulltube --cdp-url http://127.0.0.1:9333
""",
    )

    parser.add_argument(
        "url",
        nargs="?",
        default=None,
        help="Page URL to handle (default: the browser's active tab)",
    )
    parser.add_argument(
        "--cdp-url",
        type=str,
        default=None,
        help="DevTools endpoint of the browser (default: $PULLTUBE_CDP_URL)",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Playlist polling attempts before giving up (default: 10)",
    )
    parser.add_argument(
        "--download-dir",
        type=str,
        default=None,
        help="Directory for the URL archive file (default: ~/Downloads)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser.parse_args(argv)


async def _run_handle_async(args: argparse.Namespace) -> int:
    from . import trigger_async

    settings = _settings_from_args(args)
    handled = await trigger_async(args.url, settings=settings)
    if not handled:
        logging.warning("Nothing to hand off: not a YouTube page and no stored URLs")
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the handle command."""
    args = _parse_handle_args(argv)
    _setup_logging(args.verbose or _debug_from_env())
    return _run_main(_run_handle_async, args)


# =============================================================================
# STORED COMMAND
# =============================================================================


def _parse_stored_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pulltube-stored",
        description="Show or re-send the last extracted playlist.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Show the last extracted batch
  pulltube-stored

  # Same, as JSON
  pulltube-stored --json

  # Send it to Pulltube again
  pulltube-stored --open
""",
    )

    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON",
    )
    parser.add_argument(
        "--open",
        action="store_true",
        dest="open_stored",
        help="Hand the stored URLs to Pulltube again",
    )
    parser.add_argument(
        "--cdp-url",
        type=str,
        default=None,
        help="DevTools endpoint of the browser (used with --open)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser.parse_args(argv)


async def _run_stored_async(args: argparse.Namespace) -> int:
    from . import get_stored_urls_async, open_stored_async

    settings = _settings_from_args(args)

    if args.open_stored:
        opened = await open_stored_async(settings=settings)
        if not opened:
            logging.warning("No stored URLs to open")
            return 1
        return 0

    record = await get_stored_urls_async(settings=settings)
    if args.json_output:
        print(json.dumps(_record_to_dict(record), indent=2, ensure_ascii=False))
    else:
        print(_format_record_text(record))
    return 0


def stored_main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the stored command."""
    args = _parse_stored_args(argv)
    _setup_logging(args.verbose or _debug_from_env())
    return _run_main(_run_stored_async, args)


if __name__ == "__main__":
    sys.exit(main())
