"""Shared fakes and strict test-accounting guardrails."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from pulltube.archive import ArchiveError, FileSaver
from pulltube.channel import MessageChannel
from pulltube.collector import CollectorService, PlaylistCollector
from pulltube.host import HostError, Tab
from pulltube.orchestrator import Orchestrator
from pulltube.permission import PermissionGate, PresetPermissionPrompt
from pulltube.store import MemoryStore


# ---------------------------------------------------------------------------
# Page fakes
# ---------------------------------------------------------------------------


class FakeItem:
    def __init__(self, anchors: Optional[Dict[str, str]] = None) -> None:
        self.anchors = anchors or {}

    async def anchor_href(self, selector: str) -> Optional[str]:
        return self.anchors.get(selector)


class FakePage:
    """Page whose entries appear after ``empty_polls`` empty polls."""

    def __init__(
        self,
        items: Optional[Dict[str, Sequence[FakeItem]]] = None,
        *,
        empty_polls: int = 0,
    ) -> None:
        self.items = items or {}
        self.empty_polls = empty_polls
        self.queries: List[str] = []

    @property
    def polls(self) -> int:
        return self.queries.count("ytd-playlist-video-renderer")

    async def query_all(self, selector: str) -> Sequence[FakeItem]:
        self.queries.append(selector)
        if self.polls <= self.empty_polls:
            return []
        return list(self.items.get(selector, []))


def playlist_page(hrefs: Sequence[str], **kwargs) -> FakePage:
    items = [FakeItem({"a#video-title": href}) for href in hrefs]
    return FakePage({"ytd-playlist-video-renderer": items}, **kwargs)


class Sleeper:
    """Instant replacement for ``asyncio.sleep`` that records delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ---------------------------------------------------------------------------
# Host / downloader fakes
# ---------------------------------------------------------------------------


class FakeTabHost:
    def __init__(self, channel: MessageChannel, sleeper: Sleeper) -> None:
        self.channel = channel
        self.sleeper = sleeper
        self.tabs: Dict[int, Tab] = {}
        self.calls: List[tuple] = []
        self.page: Optional[FakePage] = None
        self.inject_error: Optional[Exception] = None
        self.failing_urls: set = set()
        self._next_id = 1

    def open(self, url: str, *, active: bool = False) -> Tab:
        tab = Tab(id=self._next_id, url=url, active=active)
        self._next_id += 1
        self.tabs[tab.id] = tab
        return tab

    async def query_tabs(self, url_prefix: str) -> List[Tab]:
        return [tab for tab in self.tabs.values() if tab.url.startswith(url_prefix)]

    async def get_active_tab(self) -> Optional[Tab]:
        return next((tab for tab in self.tabs.values() if tab.active), None)

    async def create_tab(self, url: str, *, active: bool = False) -> Tab:
        self.calls.append(("create", url, active))
        return self.open(url, active=active)

    async def update_tab(
        self, tab_id: int, *, url: Optional[str] = None, active: Optional[bool] = None
    ) -> Tab:
        self.calls.append(("update", tab_id, url, active))
        if tab_id not in self.tabs:
            raise HostError(f"No tab with id: {tab_id}")
        if url in self.failing_urls:
            raise HostError(f"Navigation rejected: {url}")
        tab = self.tabs[tab_id]
        if url is not None:
            tab = replace(tab, url=url)
        if active:
            tab = replace(tab, active=True)
        self.tabs[tab_id] = tab
        return tab

    async def inject_collector(self, tab_id: int) -> None:
        self.calls.append(("inject", tab_id))
        if self.inject_error is not None:
            raise self.inject_error
        collector = PlaylistCollector(self.page or FakePage(), sleep=self.sleeper)
        self.channel.register_endpoint(tab_id, CollectorService(collector).handle)

    @property
    def handoff_urls(self) -> List[str]:
        urls = []
        for call in self.calls:
            if call[0] == "create":
                urls.append(call[1])
            elif call[0] == "update" and call[2] is not None:
                urls.append(call[2])
        return urls


class FakeDownloader:
    def __init__(self, failures: int = 0, tmp_path: Optional[Path] = None) -> None:
        self.failures = failures
        self.calls: List[tuple] = []
        self.completed: List[str] = []
        self.tmp_path = tmp_path or Path("/tmp")

    async def download(
        self, content: bytes, filename: str, conflict_policy: str = "uniquify"
    ) -> int:
        self.calls.append((content, filename, conflict_policy))
        return len(self.calls)

    async def wait_for_completion(self, handle: int) -> Path:
        if handle <= self.failures:
            raise ArchiveError(f"Download failed: FILE_FAILED ({handle})")
        self.completed.append(self.calls[handle - 1][1])
        return self.tmp_path / self.calls[handle - 1][1]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    channel: MessageChannel
    host: FakeTabHost
    store: MemoryStore
    downloader: FakeDownloader
    sleeper: Sleeper
    prompt: PresetPermissionPrompt
    orchestrator: Orchestrator


@pytest.fixture
def sleeper() -> Sleeper:
    return Sleeper()


@pytest.fixture
def harness(sleeper: Sleeper, tmp_path: Path) -> Harness:
    channel = MessageChannel()
    host = FakeTabHost(channel, sleeper)
    store = MemoryStore()
    downloader = FakeDownloader(tmp_path=tmp_path)
    prompt = PresetPermissionPrompt(channel, allow=True)
    saver = FileSaver(downloader, sleep=sleeper)
    gate = PermissionGate(store, channel, prompt)
    orchestrator = Orchestrator(host, channel, store, saver, gate, sleep=sleeper)
    return Harness(channel, host, store, downloader, sleeper, prompt, orchestrator)


# ---------------------------------------------------------------------------
# Strict accounting
# ---------------------------------------------------------------------------


@dataclass
class _TestAccounting:
    deselected: int = 0
    skipped: int = 0
    xfailed: int = 0
    xpassed: int = 0


_ACCOUNTING = _TestAccounting()


def pytest_deselected(items):  # pragma: no cover - pytest hook
    _ACCOUNTING.deselected += len(items)


def pytest_runtest_logreport(report):  # pragma: no cover - pytest hook
    if report.when not in {"setup", "call"}:
        return

    if getattr(report, "wasxfail", False):
        if report.outcome == "skipped":
            _ACCOUNTING.xfailed += 1
        elif report.outcome == "passed":
            _ACCOUNTING.xpassed += 1
        return

    if report.outcome == "skipped":
        _ACCOUNTING.skipped += 1


def pytest_sessionfinish(session, exitstatus):  # pragma: no cover - pytest hook
    violations = [
        f"{name}={count}"
        for name, count in vars(_ACCOUNTING).items()
        if count
    ]
    if not violations:
        return

    reporter = session.config.pluginmanager.get_plugin("terminalreporter")
    if reporter:
        reporter.write_sep(
            "=",
            "Strict guard failed: test accounting violations detected "
            f"({', '.join(violations)})",
        )
    session.exitstatus = 1
