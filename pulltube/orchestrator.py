"""Control flow from a trigger on a video page to the Pulltube handoff.

For each trigger the orchestrator:

1. Ignores pages outside the supported site.
2. Treats a page without a ``list`` parameter as a single video.
3. For playlists, focuses the tab, lets it settle, makes sure a collector
   is loaded and asks it for the playlist's links. Any failure along the
   way falls back to handing off the page URL itself.
4. Stores a non-empty extraction as the new last-extracted record.
5. Archives the batch to a file in the background (failures are logged).
6. Asks for permission unless the user chose to always allow.
7. Points one consumer tab at ``<scheme>://<identifier>`` for every
   identifier in order, then gives focus back to the triggering tab.

Overlapping triggers for the same tab run one after another.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

from .archive import ArchiveError, FileSaver
from .channel import ChannelError, Message, MessageChannel, Reply
from .collector import DEFAULT_MAX_ATTEMPTS
from .config import DEFAULT_SCHEME
from .host import HostError, Tab, TabHost
from .identifiers import is_collection_url, is_supported_url, normalize_all
from .permission import PermissionGate
from .store import (
    ExtractionRecord,
    KeyValueStore,
    load_extraction_record,
    store_extraction_record,
)

LOGGER = logging.getLogger(__name__)

SETTLE_DELAY = 1.0
HANDOFF_DELAY = 0.1
Sleep = Callable[[float], Awaitable[None]]


class Orchestrator:
    """Coordinate extraction, storage, archival, consent and handoff."""

    def __init__(
        self,
        host: TabHost,
        channel: MessageChannel,
        store: KeyValueStore,
        saver: FileSaver,
        gate: PermissionGate,
        *,
        scheme: str = DEFAULT_SCHEME,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        settle_delay: float = SETTLE_DELAY,
        handoff_delay: float = HANDOFF_DELAY,
        sleep: Sleep = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.host = host
        self.channel = channel
        self.store = store
        self.saver = saver
        self.gate = gate
        self.scheme = scheme
        self.max_attempts = max_attempts
        self.settle_delay = settle_delay
        self.handoff_delay = handoff_delay
        self._sleep = sleep
        self._log = logger or LOGGER
        self._tab_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._archive_tasks: Set[asyncio.Task] = set()
        channel.set_request_handler(self.handle_request)

    @property
    def scheme_prefix(self) -> str:
        return f"{self.scheme}://"

    # -- triggers ----------------------------------------------------------

    async def on_trigger(self, tab: Optional[Tab]) -> bool:
        """React to the user's action on *tab*.

        On a supported page the page is handled; anywhere else the last
        extracted batch is handed off again. Returns False when nothing
        could be done.
        """
        if tab is not None and is_supported_url(tab.url):
            await self.handle(tab.url, tab)
            return True
        opened = await self.open_stored(tab)
        if not opened:
            self._log.info("No stored URLs to open")
        return opened

    async def handle(self, page_url: str, tab: Optional[Tab]) -> None:
        """Run the extraction-and-handoff pipeline for *page_url*."""
        self._log.info("Processing URL: %s", page_url)
        if not is_supported_url(page_url) or tab is None:
            self._log.debug("Invalid URL or tab: %r, %r", page_url, tab)
            return

        async with self._tab_locks[tab.id]:
            if not is_collection_url(page_url):
                self._log.info("Processing single video URL")
                await self.open_in_consumer([page_url], tab)
                return

            self._log.info("Processing playlist URL")
            raw_urls = await self._extract_playlist(tab)
            if not raw_urls:
                await self.open_in_consumer([page_url], tab)
                return

            identifiers = normalize_all(raw_urls)
            self._log.info("Extracted %d URLs", len(identifiers))
            await store_extraction_record(self.store, identifiers)
            await self.open_in_consumer(identifiers, tab)

    async def open_stored(self, return_tab: Optional[Tab] = None) -> bool:
        """Hand off the last extracted batch again; False if there is none."""
        record = await load_extraction_record(self.store)
        if record is None or not record.identifiers:
            return False
        await self.open_in_consumer(record.identifiers, return_tab)
        return True

    # -- extraction --------------------------------------------------------

    async def _extract_playlist(self, tab: Tab) -> List[str]:
        """Ask the tab's collector for links; an empty list means fall back."""
        try:
            await self.host.update_tab(tab.id, active=True)
            await self._sleep(self.settle_delay)
            if not await self._ensure_collector(tab.id):
                self._log.warning(
                    "Failed to load collector, falling back to single URL"
                )
                return []
            request = {"action": "getPlaylistUrls", "maxAttempts": self.max_attempts}
            response = await self.channel.send_to_tab(tab.id, request)
        except (ChannelError, HostError) as exc:
            self._log.warning("Error getting playlist URLs: %s", exc)
            return []
        except Exception as exc:
            self._log.warning("Collector failed in tab %d: %s", tab.id, exc)
            return []

        self._log.debug("Received response from collector: %s", response)
        urls = (response or {}).get("urls")
        if not urls:
            self._log.info("No URLs in response, falling back to single URL")
            return []
        return [url for url in urls.split("\n") if url.strip()]

    async def _ensure_collector(self, tab_id: int) -> bool:
        try:
            await self.channel.send_to_tab(tab_id, {"action": "ping"})
        except ChannelError:
            pass
        else:
            self._log.debug("Collector already present in tab %d", tab_id)
            return True

        self._log.debug("Loading collector into tab %d", tab_id)
        try:
            await self.host.inject_collector(tab_id)
        except HostError as exc:
            self._log.warning("Failed to load collector: %s", exc)
            return False
        return True

    # -- archival / handoff ------------------------------------------------

    def _start_archive(self, identifiers: Sequence[str]) -> asyncio.Task:
        task = asyncio.create_task(self._archive(list(identifiers)))
        self._archive_tasks.add(task)
        task.add_done_callback(self._archive_tasks.discard)
        return task

    async def _archive(self, identifiers: List[str]) -> bool:
        try:
            return await self.saver.save(identifiers)
        except ArchiveError as exc:
            self._log.error("Failed to save URLs to file: %s", exc)
            return False

    async def wait_for_archives(self) -> None:
        """Wait for archive writes started by earlier invocations."""
        while self._archive_tasks:
            await asyncio.gather(*list(self._archive_tasks))

    async def open_in_consumer(
        self, raw_urls: Sequence[str], return_tab: Optional[Tab] = None
    ) -> bool:
        """Archive, gate and sequence *raw_urls* into the consumer app.

        Returns False if the user denied the handoff.
        """
        identifiers = normalize_all(raw_urls)
        self._log.info("Processing %d URLs", len(identifiers))
        self._start_archive(identifiers)

        if not await self.gate.check():
            self._log.info("Permission denied; nothing handed off")
            return False

        await self._sequence(identifiers)

        if return_tab is not None:
            try:
                await self.host.update_tab(return_tab.id, active=True)
            except HostError as exc:
                self._log.warning("Could not return to tab %d: %s", return_tab.id, exc)
        return True

    async def _sequence(self, identifiers: Sequence[str]) -> None:
        existing = await self.host.query_tabs(self.scheme_prefix)
        consumer: Optional[Tab] = existing[0] if existing else None

        total = len(identifiers)
        for index, identifier in enumerate(identifiers, start=1):
            target = f"{self.scheme_prefix}{identifier}"
            self._log.info("Opening URL %d/%d: %s", index, total, target)
            try:
                if consumer is None:
                    consumer = await self.host.create_tab(target, active=False)
                else:
                    await self.host.update_tab(consumer.id, url=target)
            except HostError as exc:
                # The consumer never sees this item; keep going with the rest
                self._log.error("Handoff failed for %s: %s", identifier, exc)
            await self._sleep(self.handoff_delay)

    # -- queries -----------------------------------------------------------

    async def get_stored_urls(self) -> Optional[ExtractionRecord]:
        record = await load_extraction_record(self.store)
        self._log.debug("Retrieved stored URLs: %s", record)
        return record

    async def handle_request(self, message: Message) -> Reply:
        if message.get("action") == "getStoredUrls":
            record = await self.get_stored_urls()
            return {"urls": record.to_dict() if record else None}
        return None
