"""Hand YouTube videos and playlists from a browser tab to Pulltube.

This package drives a running Chromium (started with
``--remote-debugging-port``) over CDP. It supports:

- Single video pages (the page URL is handed off as-is)
- Playlist pages (every entry is collected from the live page)
- A durable "last extracted batch" that can be handed off again
- A text-file archive of every batch, written with retries
- A one-time consent prompt before anything reaches Pulltube

Example usage:

    from pulltube import trigger_async, get_stored_urls_async

    # Handle the active tab of the browser at PULLTUBE_CDP_URL
    await trigger_async()

    # Open (or reuse) a tab for a playlist and handle it
    await trigger_async("https://www.youtube.com/watch?v=a&list=xyz")

    record = await get_stored_urls_async()
    if record:
        print(record.identifiers)
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from .archive import ArchiveError, DownloadManager, FileSaver
from .channel import ChannelError, MessageChannel
from .collector import CollectorService, PlaylistCollector
from .config import Settings, SettingsError
from .host import HostError, PlaywrightTabHost, Tab, TabHost, connect_browser
from .identifiers import is_collection_url, is_supported_url, normalize_video_url
from .orchestrator import Orchestrator
from .permission import (
    ConsolePermissionPrompt,
    PermissionGate,
    PermissionPrompt,
    PresetPermissionPrompt,
)
from .store import ExtractionRecord, JsonFileStore, KeyValueStore, load_extraction_record

PromptFactory = Callable[[MessageChannel], PermissionPrompt]

__all__ = [
    # Data types
    "ExtractionRecord",
    "Tab",
    # Components
    "CollectorService",
    "PlaylistCollector",
    "MessageChannel",
    "Orchestrator",
    "PermissionGate",
    "ConsolePermissionPrompt",
    "PresetPermissionPrompt",
    "FileSaver",
    "DownloadManager",
    "JsonFileStore",
    "PlaywrightTabHost",
    "connect_browser",
    "build_orchestrator",
    # Errors
    "ArchiveError",
    "ChannelError",
    "HostError",
    "SettingsError",
    # URL helpers
    "is_collection_url",
    "is_supported_url",
    "normalize_video_url",
    # Entry points
    "trigger_async",
    "trigger",
    "open_stored_async",
    "get_stored_urls_async",
]


def build_orchestrator(
    host: TabHost,
    channel: MessageChannel,
    settings: Settings,
    *,
    store: Optional[KeyValueStore] = None,
    prompt_factory: Optional[PromptFactory] = None,
) -> Orchestrator:
    """Wire an :class:`Orchestrator` with the components *settings* describe."""
    store = store or JsonFileStore(settings.store_path)
    saver = FileSaver(DownloadManager(settings.download_dir))
    prompt = (prompt_factory or ConsolePermissionPrompt)(channel)
    gate = PermissionGate(store, channel, prompt)
    return Orchestrator(
        host,
        channel,
        store,
        saver,
        gate,
        scheme=settings.scheme,
        max_attempts=settings.max_attempts,
    )


async def _resolve_tab(host: TabHost, url: Optional[str]) -> Optional[Tab]:
    if not url:
        return await host.get_active_tab()
    matches = [tab for tab in await host.query_tabs(url) if tab.url == url]
    if matches:
        return matches[0]
    return await host.create_tab(url, active=True)


async def trigger_async(
    url: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    prompt_factory: Optional[PromptFactory] = None,
) -> bool:
    """
    Act as if the user pressed the toolbar button.

    Args:
        url: Page to handle. Reuses a tab already showing it, or opens one.
            When omitted, the browser's active tab is used.
        settings: Optional settings; read from the environment by default.
        prompt_factory: Optional builder for the permission prompt, given
            the message channel (defaults to a terminal prompt).

    Returns:
        False when nothing could be handed off (off-site page and no stored
        batch), True otherwise.

    Raises:
        HostError: If the browser cannot be reached.
    """
    settings = settings or Settings.from_env()
    channel = MessageChannel()
    async with connect_browser(settings.cdp_url, channel) as host:
        orchestrator = build_orchestrator(
            host, channel, settings, prompt_factory=prompt_factory
        )
        tab = await _resolve_tab(host, url)
        try:
            return await orchestrator.on_trigger(tab)
        finally:
            await orchestrator.wait_for_archives()


def trigger(
    url: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    prompt_factory: Optional[PromptFactory] = None,
) -> bool:
    """Synchronous wrapper for trigger_async."""
    return asyncio.run(
        trigger_async(url, settings=settings, prompt_factory=prompt_factory)
    )


async def open_stored_async(
    *,
    settings: Optional[Settings] = None,
    prompt_factory: Optional[PromptFactory] = None,
) -> bool:
    """Hand the last extracted batch to Pulltube again."""
    settings = settings or Settings.from_env()
    channel = MessageChannel()
    async with connect_browser(settings.cdp_url, channel) as host:
        orchestrator = build_orchestrator(
            host, channel, settings, prompt_factory=prompt_factory
        )
        try:
            return await orchestrator.open_stored(await host.get_active_tab())
        finally:
            await orchestrator.wait_for_archives()


async def get_stored_urls_async(
    *, settings: Optional[Settings] = None
) -> Optional[ExtractionRecord]:
    """Return the last extracted batch without touching the browser."""
    settings = settings or Settings.from_env()
    return await load_extraction_record(JsonFileStore(settings.store_path))
