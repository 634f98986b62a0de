"""Archive extracted identifiers to a text file in the downloads directory.

The write goes through :class:`DownloadManager`, which behaves like a browser
download subsystem: ``download()`` hands back an opaque handle right away and
the write completes (or fails) asynchronously. :class:`FileSaver` waits for
that acknowledgement and retries failed attempts with a fixed backoff.

Example usage:

    saver = FileSaver(DownloadManager("~/Downloads"))
    await saver.save(["https://www.youtube.com/watch?v=abc123"])
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import (
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Iterator,
    Optional,
    Protocol,
    Set,
)

LOGGER = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_DELAY = 1.0
CONFLICT_UNIQUIFY = "uniquify"
CONFLICT_OVERWRITE = "overwrite"
FILENAME_PREFIX = "pulltube-urls-"

Sleep = Callable[[float], Awaitable[None]]
FileNamer = Callable[[], str]


class ArchiveError(RuntimeError):
    """Raised when the archive file could not be written."""


class Downloader(Protocol):
    async def download(
        self, content: bytes, filename: str, conflict_policy: str = CONFLICT_UNIQUIFY
    ) -> int: ...

    async def wait_for_completion(self, handle: int) -> Path: ...


def build_content(identifiers: Iterable[str]) -> str:
    """Trim identifiers, drop blanks and join them one per line."""
    return "\n".join(item.strip() for item in identifiers if item and item.strip())


def timestamp_filename(now: Optional[datetime] = None) -> str:
    """Filesystem-safe archive name derived from the current UTC time."""
    moment = now or datetime.now(timezone.utc)
    stamp = moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
    return f"{FILENAME_PREFIX}{stamp.replace(':', '-').replace('.', '-')}.txt"


def _candidates(path: Path) -> Iterator[Path]:
    """Yield *path*, then "name (1).ext", "name (2).ext", ..."""
    yield path
    for counter in itertools.count(1):
        yield path.with_name(f"{path.stem} ({counter}){path.suffix}")


class DownloadManager:
    """Write byte payloads into a directory, acknowledging each by handle."""

    def __init__(
        self, download_dir: Path | str, logger: Optional[logging.Logger] = None
    ) -> None:
        self.download_dir = Path(download_dir).expanduser()
        self._handles = itertools.count(1)
        self._pending: Dict[int, asyncio.Future[Path]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._log = logger or LOGGER

    async def download(
        self, content: bytes, filename: str, conflict_policy: str = CONFLICT_UNIQUIFY
    ) -> int:
        """Start writing *content* and return the operation handle.

        Raises:
            ArchiveError: If the request is rejected before it starts.
        """
        if not filename or Path(filename).name != filename:
            raise ArchiveError(f"Invalid archive filename: {filename!r}")
        if conflict_policy not in (CONFLICT_UNIQUIFY, CONFLICT_OVERWRITE):
            raise ArchiveError(f"Unknown conflict policy: {conflict_policy}")

        handle = next(self._handles)
        future: asyncio.Future[Path] = asyncio.get_running_loop().create_future()
        self._pending[handle] = future
        self._log.debug(
            "Download %d started: %s (%d bytes)", handle, filename, len(content)
        )
        task = asyncio.create_task(
            self._run(handle, content, filename, conflict_policy)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle

    async def _run(
        self, handle: int, content: bytes, filename: str, conflict_policy: str
    ) -> None:
        future = self._pending[handle]
        try:
            path = await asyncio.to_thread(
                self._write, content, filename, conflict_policy
            )
        except OSError as exc:
            self._log.debug("Download %d failed: %s", handle, exc)
            future.set_exception(ArchiveError(f"Download failed: {exc}"))
        else:
            self._log.debug("Download %d complete: %s", handle, path)
            future.set_result(path)

    def _write(self, content: bytes, filename: str, conflict_policy: str) -> Path:
        self.download_dir.mkdir(parents=True, exist_ok=True)
        target = self.download_dir / filename
        if conflict_policy == CONFLICT_OVERWRITE:
            target.write_bytes(content)
            return target
        # Exclusive create; a taken name moves on to the next candidate
        for candidate in _candidates(target):
            try:
                with open(candidate, "xb") as handle:
                    handle.write(content)
            except FileExistsError:
                continue
            return candidate

    async def wait_for_completion(self, handle: int) -> Path:
        """Wait until download *handle* finishes and return the written path.

        Raises:
            ArchiveError: If the download failed or the handle is unknown.
        """
        future = self._pending.get(handle)
        if future is None:
            raise ArchiveError(f"Unknown download handle: {handle}")
        try:
            return await future
        finally:
            self._pending.pop(handle, None)


class FileSaver:
    """Save identifier batches through a :class:`Downloader` with retries."""

    def __init__(
        self,
        downloader: Downloader,
        *,
        namer: FileNamer = timestamp_filename,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY,
        sleep: Sleep = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.downloader = downloader
        self.namer = namer
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._log = logger or LOGGER

    async def save(self, identifiers: Iterable[str]) -> bool:
        """Archive *identifiers*; returns False when there is nothing to save.

        Raises:
            ArchiveError: The last failure once every attempt has failed.
        """
        identifiers = list(identifiers or [])
        if not identifiers:
            self._log.info("No URLs provided to save")
            return False

        content = build_content(identifiers)
        if not content:
            self._log.info("No content generated from URLs")
            return False

        filename = self.namer()
        payload = content.encode("utf-8")
        for attempt in range(1, self.max_attempts + 1):
            try:
                handle = await self.downloader.download(
                    payload, filename, conflict_policy=CONFLICT_UNIQUIFY
                )
                path = await self.downloader.wait_for_completion(handle)
            except ArchiveError as exc:
                self._log.warning("Download attempt %d failed: %s", attempt, exc)
                if attempt == self.max_attempts:
                    raise
                await self._sleep(self.retry_delay)
            else:
                self._log.info("Saved %d URLs to %s", len(identifiers), path)
                return True
        return False
