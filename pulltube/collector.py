"""Playlist collector that runs against a live page.

The collector polls the page for playlist entries, resolves each entry to a
watch link and answers the orchestrator's ``ping`` / ``getPlaylistUrls``
requests. Page access goes through the small :class:`PageHandle` protocol so
the polling logic can run against Playwright or against test fakes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence

from .channel import Message, Reply
from .identifiers import truncate_reference

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
POLL_INTERVAL = 1.0

# Playlist entry containers, most specific first
ITEM_SELECTORS: List[str] = [
    "ytd-playlist-video-renderer",
    "ytd-playlist-panel-video-renderer",
    "#playlist-items",
]

# Anchors inside one entry that carry its watch link
ANCHOR_SELECTORS: List[str] = [
    "a#video-title",
    "a#wc-endpoint",
    'a[href*="watch"]',
]


class ItemHandle(Protocol):
    """One playlist entry element; only valid during a single poll."""

    async def anchor_href(self, selector: str) -> Optional[str]: ...


class PageHandle(Protocol):
    async def query_all(self, selector: str) -> Sequence[ItemHandle]: ...


ItemStrategy = Callable[[PageHandle], Awaitable[Sequence[ItemHandle]]]
AnchorStrategy = Callable[[ItemHandle], Awaitable[Optional[str]]]
Sleep = Callable[[float], Awaitable[None]]


def select_items(selector: str) -> ItemStrategy:
    async def strategy(page: PageHandle) -> Sequence[ItemHandle]:
        return await page.query_all(selector)

    return strategy


def anchor_href(selector: str) -> AnchorStrategy:
    async def strategy(item: ItemHandle) -> Optional[str]:
        return await item.anchor_href(selector)

    return strategy


DEFAULT_ITEM_STRATEGIES: List[ItemStrategy] = [select_items(s) for s in ITEM_SELECTORS]
DEFAULT_ANCHOR_STRATEGIES: List[AnchorStrategy] = [
    anchor_href(s) for s in ANCHOR_SELECTORS
]


class PlaylistCollector:
    """Poll a page for playlist entries and extract their watch links."""

    def __init__(
        self,
        page: PageHandle,
        *,
        item_strategies: Optional[Sequence[ItemStrategy]] = None,
        anchor_strategies: Optional[Sequence[AnchorStrategy]] = None,
        poll_interval: float = POLL_INTERVAL,
        sleep: Sleep = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.page = page
        self.item_strategies = list(item_strategies or DEFAULT_ITEM_STRATEGIES)
        self.anchor_strategies = list(anchor_strategies or DEFAULT_ANCHOR_STRATEGIES)
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._log = logger or LOGGER

    async def collect(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> List[str]:
        """Return the playlist's watch links in page order.

        Polls up to *max_attempts* times, waiting ``poll_interval`` seconds
        between polls. A page that never shows entries yields an empty list.
        """
        self._log.info("Starting to collect playlist URLs")
        for attempt in range(1, max_attempts + 1):
            items = await self._find_items()
            self._log.debug("Attempt %d: found %d playlist items", attempt, len(items))
            if items:
                urls = await self._extract_urls(items)
                self._log.info("Extracted %d valid URLs", len(urls))
                return urls
            if attempt < max_attempts:
                await self._sleep(self.poll_interval)

        self._log.info(
            "Could not find playlist items after %d attempts", max_attempts
        )
        return []

    async def _find_items(self) -> Sequence[ItemHandle]:
        for strategy in self.item_strategies:
            items = await strategy(self.page)
            if items:
                return items
        return []

    async def _extract_urls(self, items: Sequence[ItemHandle]) -> List[str]:
        urls = []
        for item in items:
            url = await self._extract_url(item)
            if url:
                urls.append(url)
        return urls

    async def _extract_url(self, item: ItemHandle) -> str:
        for strategy in self.anchor_strategies:
            href = await strategy(item)
            if href:
                return truncate_reference(href)
        return ""


class CollectorService:
    """Message endpoint exposing a :class:`PlaylistCollector` to the channel."""

    def __init__(
        self,
        collector: PlaylistCollector,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.collector = collector
        self.max_attempts = max_attempts
        self._log = logger or LOGGER

    async def handle(self, message: Message) -> Reply:
        action = message.get("action")
        self._log.debug("Received message: %s", message)
        if action == "ping":
            return {"status": "ok"}
        if action == "getPlaylistUrls":
            max_attempts = message.get("maxAttempts") or self.max_attempts
            urls = await self.collector.collect(max_attempts)
            self._log.debug("Sending %d URLs back to the orchestrator", len(urls))
            return {"urls": "\n".join(urls)}
        self._log.warning("Unknown action: %s", action)
        return None


# ---------------------------------------------------------------------------
# Playwright adapters
# ---------------------------------------------------------------------------


class PlaywrightItem:
    """:class:`ItemHandle` backed by a Playwright ``ElementHandle``."""

    def __init__(self, element) -> None:
        self._element = element

    async def anchor_href(self, selector: str) -> Optional[str]:
        anchor = await self._element.query_selector(selector)
        if anchor is None:
            return None
        # The DOM property is absolute even when the attribute is relative
        href = await anchor.evaluate("a => a.href")
        return href or None


class PlaywrightPage:
    """:class:`PageHandle` backed by a Playwright ``Page``."""

    def __init__(self, page) -> None:
        self._page = page

    async def query_all(self, selector: str) -> Sequence[ItemHandle]:
        elements = await self._page.query_selector_all(selector)
        return [PlaywrightItem(element) for element in elements]
