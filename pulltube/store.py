"""Durable key-value store for the last extracted batch and the permission flag.

Every write replaces the whole value of its key, so concurrent writers end
up with last-write-wins semantics. Readers must tolerate absent keys; on a
first run the backing file does not exist yet.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

LOGGER = logging.getLogger(__name__)

EXTRACTION_RECORD_KEY = "extractionRecord"
ALWAYS_ALLOW_KEY = "permissionAlwaysAllow"


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...


@dataclass(slots=True)
class ExtractionRecord:
    """The most recent successful playlist extraction."""

    identifiers: List[str]
    extracted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastExtracted": list(self.identifiers),
            "timestamp": self.extracted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionRecord":
        identifiers = data["lastExtracted"]
        if not isinstance(identifiers, list):
            raise ValueError("lastExtracted must be a list")
        return cls(
            identifiers=[str(item) for item in identifiers],
            extracted_at=datetime.fromisoformat(data["timestamp"]),
        )


class MemoryStore:
    """In-process store; nothing survives the process."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """Store backed by a single JSON object on disk."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    def _read(self) -> Dict[str, Any]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            LOGGER.warning("Store file %s is not valid JSON; starting empty", self.path)
            return {}
        except OSError as exc:
            LOGGER.warning("Cannot read store file %s: %s; starting empty", self.path, exc)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning("Store file %s is not a JSON object; starting empty", self.path)
            return {}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(self.path.name + ".tmp")
        temp_path.write_text(
            json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8"
        )
        os.replace(temp_path, self.path)

    async def get(self, key: str) -> Any:
        return self._read().get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)


async def store_extraction_record(
    store: KeyValueStore, identifiers: List[str]
) -> ExtractionRecord:
    """Overwrite the stored record with a fresh one for *identifiers*."""
    record = ExtractionRecord(identifiers=list(identifiers))
    await store.set(EXTRACTION_RECORD_KEY, record.to_dict())
    LOGGER.info("Stored %d extracted URLs", len(record.identifiers))
    return record


async def load_extraction_record(store: KeyValueStore) -> Optional[ExtractionRecord]:
    raw = await store.get(EXTRACTION_RECORD_KEY)
    if not raw:
        return None
    try:
        return ExtractionRecord.from_dict(raw)
    except (KeyError, TypeError, ValueError) as exc:
        LOGGER.warning("Ignoring malformed extraction record: %s", exc)
        return None


async def is_always_allowed(store: KeyValueStore) -> bool:
    return (await store.get(ALWAYS_ALLOW_KEY)) is True


async def set_always_allow(store: KeyValueStore) -> None:
    await store.set(ALWAYS_ALLOW_KEY, True)
