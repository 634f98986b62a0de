"""MCP Server exposing the Pulltube handoff.

Provides tools for:
- Handing the active tab (or a given YouTube URL) off to Pulltube
- Reading the last extracted playlist

Supports both STDIO and HTTP transports.

Usage:
    # STDIO (for desktop MCP clients)
    python -m pulltube.mcp_server

    # HTTP (for remote access)
    python -m pulltube.mcp_server --transport http --port 8000

Environment Variables:
    PULLTUBE_CDP_URL: DevTools endpoint of the browser (default: http://127.0.0.1:9222)
    PULLTUBE_STORE_PATH: JSON file for the durable store
    PULLTUBE_DOWNLOAD_DIR: Directory for URL archive files
"""

from __future__ import annotations

import argparse
import json
import logging
from typing import Optional

from dotenv import load_dotenv
from fastmcp import FastMCP

from .config import Settings
from .host import HostError
from .permission import PresetPermissionPrompt

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
LOGGER = logging.getLogger(__name__)

# Load .env before reading environment variables
load_dotenv()

mcp = FastMCP(
    name="Pulltube Handoff",
    instructions="""
    Sends YouTube videos and playlists from the user's browser to the
    Pulltube app.

    - handoff: hand off the active tab, or a given YouTube URL. Pass
      allow=true only after the user agreed; always_allow=true stops
      further confirmation.
    - get_stored_urls: the last extracted playlist as JSON.
    """,
)


async def run_handoff(
    url: Optional[str] = None,
    allow: bool = False,
    always_allow: bool = False,
) -> str:
    """Run one handoff and describe the outcome as JSON."""
    from . import trigger_async
    from .channel import MessageChannel

    settings = Settings.from_env()

    def prompt_factory(channel: MessageChannel) -> PresetPermissionPrompt:
        return PresetPermissionPrompt(channel, allow=allow, always_allow=always_allow)

    try:
        handled = await trigger_async(
            url, settings=settings, prompt_factory=prompt_factory
        )
    except HostError as exc:
        LOGGER.error("Browser error: %s", exc)
        return json.dumps({"error": str(exc)}, ensure_ascii=False)

    return json.dumps({"handled": handled, "url": url}, ensure_ascii=False)


async def read_stored_urls() -> str:
    """Return the ``getStoredUrls`` reply as JSON."""
    from . import get_stored_urls_async

    record = await get_stored_urls_async(settings=Settings.from_env())
    return json.dumps(
        {"urls": record.to_dict() if record else None}, indent=2, ensure_ascii=False
    )


# =============================================================================
# TOOLS
# =============================================================================


@mcp.tool
async def handoff(
    url: Optional[str] = None,
    allow: bool = False,
    always_allow: bool = False,
) -> str:
    """
    Hand a YouTube video or playlist off to Pulltube.

    Args:
        url: Page to handle; the browser's active tab when omitted.
        allow: The user's answer to the confirmation question.
        always_allow: Remember the confirmation for future handoffs.

    Returns:
        JSON with ``handled`` (bool), or ``error`` when the browser is
        unreachable.
    """
    return await run_handoff(url, allow=allow, always_allow=always_allow)


@mcp.tool
async def get_stored_urls() -> str:
    """Return the last extracted playlist (or null) as JSON."""
    return await read_stored_urls()


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for running the MCP server."""
    parser = argparse.ArgumentParser(
        description="Run the Pulltube handoff MCP server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to for HTTP transport (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to for HTTP transport (default: 8000)",
    )

    args = parser.parse_args()

    LOGGER.info("Browser endpoint: %s", Settings.from_env().cdp_url)

    if args.transport == "http":
        LOGGER.info("Starting MCP server on http://%s:%d/mcp", args.host, args.port)
        mcp.run(transport="http", host=args.host, port=args.port)
    else:
        LOGGER.info("Starting MCP server with STDIO transport")
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
