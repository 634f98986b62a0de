"""Browser tab host backed by a running Chromium reached over CDP.

The orchestrator only talks to the :class:`TabHost` protocol: list and
update tabs, open new ones, and load the playlist collector into a tab.
:class:`PlaywrightTabHost` implements it for a real browser started with
``--remote-debugging-port``.

Example usage:

    channel = MessageChannel()
    async with connect_browser("http://127.0.0.1:9222", channel) as host:
        tab = await host.get_active_tab()
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import httpx

from .channel import MessageChannel
from .collector import CollectorService, PlaylistCollector, PlaywrightPage

LOGGER = logging.getLogger(__name__)


class HostError(RuntimeError):
    """Raised when the browser host cannot perform a tab operation."""


@dataclass(frozen=True)
class Tab:
    """Snapshot of one browser tab."""

    id: int
    url: str
    active: bool = False


class TabHost(Protocol):
    async def query_tabs(self, url_prefix: str) -> List[Tab]: ...

    async def get_active_tab(self) -> Optional[Tab]: ...

    async def create_tab(self, url: str, *, active: bool = False) -> Tab: ...

    async def update_tab(
        self, tab_id: int, *, url: Optional[str] = None, active: Optional[bool] = None
    ) -> Tab: ...

    async def inject_collector(self, tab_id: int) -> None: ...


class PlaywrightTabHost:
    """:class:`TabHost` over a Playwright ``BrowserContext``."""

    def __init__(
        self,
        context: Any,
        channel: MessageChannel,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.context = context
        self.channel = channel
        self._log = logger or LOGGER
        self._pages: Dict[int, Any] = {}
        self._ids: Dict[int, int] = {}
        self._requested_urls: Dict[int, str] = {}
        self._active_id: Optional[int] = None

    # -- bookkeeping -------------------------------------------------------

    def _tab_id(self, page: Any) -> int:
        key = id(page)
        if key not in self._ids:
            tab_id = len(self._ids) + 1
            self._ids[key] = tab_id
            self._pages[tab_id] = page
        return self._ids[key]

    def _page(self, tab_id: int) -> Any:
        page = self._pages.get(tab_id)
        if page is None or page.is_closed():
            raise HostError(f"No tab with id: {tab_id}")
        return page

    def _url(self, tab_id: int, page: Any) -> str:
        # Custom-scheme navigations are handed to the OS and never commit
        return self._requested_urls.get(tab_id) or page.url or ""

    def _snapshot(self, page: Any) -> Tab:
        tab_id = self._tab_id(page)
        return Tab(id=tab_id, url=self._url(tab_id, page), active=tab_id == self._active_id)

    def _open_pages(self) -> List[Any]:
        return [page for page in self.context.pages if not page.is_closed()]

    async def _navigate(self, tab_id: int, page: Any, url: str) -> None:
        if url.startswith(("http://", "https://")):
            self._requested_urls.pop(tab_id, None)
            await page.goto(url, wait_until="domcontentloaded")
            return
        self._requested_urls[tab_id] = url
        await page.evaluate("url => { window.location.href = url; }", url)

    async def _activate(self, tab_id: int, page: Any) -> None:
        await page.bring_to_front()
        self._active_id = tab_id

    # -- TabHost -----------------------------------------------------------

    async def query_tabs(self, url_prefix: str) -> List[Tab]:
        tabs = [self._snapshot(page) for page in self._open_pages()]
        return [tab for tab in tabs if tab.url.startswith(url_prefix)]

    async def get_active_tab(self) -> Optional[Tab]:
        if self._active_id is not None and self._active_id in self._pages:
            page = self._pages[self._active_id]
            if not page.is_closed():
                return self._snapshot(page)

        for page in self._open_pages():
            try:
                visible = await page.evaluate("() => document.visibilityState")
            except Exception as exc:
                self._log.debug("Skipping unresponsive page %s: %s", page.url, exc)
                continue
            if visible == "visible":
                self._active_id = self._tab_id(page)
                return self._snapshot(page)
        return None

    async def create_tab(self, url: str, *, active: bool = False) -> Tab:
        previous = self._active_id
        page = await self.context.new_page()
        tab_id = self._tab_id(page)
        await self._navigate(tab_id, page, url)
        if active:
            await self._activate(tab_id, page)
        elif previous is not None and previous in self._pages:
            # new_page() focuses the new tab; hand focus back
            await self._activate(previous, self._pages[previous])
        self._log.debug("Created tab %d: %s", tab_id, url)
        return self._snapshot(page)

    async def update_tab(
        self, tab_id: int, *, url: Optional[str] = None, active: Optional[bool] = None
    ) -> Tab:
        page = self._page(tab_id)
        if url is not None:
            await self._navigate(tab_id, page, url)
        if active:
            await self._activate(tab_id, page)
        return self._snapshot(page)

    async def inject_collector(self, tab_id: int) -> None:
        """Attach a playlist collector endpoint to the page in *tab_id*.

        Raises:
            HostError: If the page is gone or not ready for scripting.
        """
        page = self._page(tab_id)
        try:
            await page.wait_for_load_state("domcontentloaded")
        except Exception as exc:
            raise HostError(f"Cannot load collector into tab {tab_id}: {exc}") from exc

        service = CollectorService(
            PlaylistCollector(PlaywrightPage(page), logger=self._log),
            logger=self._log,
        )
        self.channel.register_endpoint(tab_id, service.handle)

        def _detach(*_: Any) -> None:
            self.channel.unregister_endpoint(tab_id)

        def _on_navigated(frame: Any) -> None:
            if frame == page.main_frame:
                _detach()

        page.once("close", _detach)
        page.on("framenavigated", _on_navigated)
        self._log.debug("Collector attached to tab %d", tab_id)


async def probe_cdp_endpoint(cdp_url: str, timeout: float = 5.0) -> Dict[str, Any]:
    """Check that a DevTools endpoint answers before connecting to it.

    Returns:
        The browser's ``/json/version`` payload (empty for ``ws://`` URLs).

    Raises:
        HostError: If the endpoint is unreachable or answers with an error.
    """
    if not cdp_url or not cdp_url.strip():
        raise HostError("cdp_url must be a non-empty URL")
    target = cdp_url.strip().rstrip("/")
    if not target.startswith(("http://", "https://")):
        return {}

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(f"{target}/json/version")
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as exc:
        raise HostError(
            f"DevTools endpoint error: {exc.response.status_code} at {target}"
        ) from exc
    except httpx.RequestError as exc:
        raise HostError(
            f"DevTools endpoint unreachable: {target}. Start the browser with "
            "--remote-debugging-port."
        ) from exc


@asynccontextmanager
async def connect_browser(
    cdp_url: str,
    channel: MessageChannel,
) -> AsyncIterator[PlaywrightTabHost]:
    """Connect to a running browser and yield a tab host for its first context."""
    version = await probe_cdp_endpoint(cdp_url)
    if version:
        LOGGER.info("Connected to %s", version.get("Browser", "browser"))

    try:
        from playwright.async_api import async_playwright
    except Exception as exc:  # pragma: no cover - environment dependent
        raise HostError(
            "Playwright is required to drive the browser. Install it with "
            "'pip install playwright'."
        ) from exc

    async with async_playwright() as playwright:
        try:
            browser = await playwright.chromium.connect_over_cdp(cdp_url.strip())
        except Exception as exc:  # pragma: no cover - runtime/network dependent
            raise HostError(f"Failed to connect to CDP endpoint: {cdp_url}") from exc

        try:
            contexts = list(browser.contexts)
            context = contexts[0] if contexts else await browser.new_context()
            yield PlaywrightTabHost(context, channel)
        finally:
            await browser.close()
