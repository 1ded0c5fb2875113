from __future__ import annotations

"""Durable key-value slots and the store that owns the progress record."""

import errno
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from .state import STATE_SCHEMA_VERSION, ProgressRecord, now_iso, sanitize_with_report


STORAGE_KEY = "jagarana_v1"
PROBE_KEY = "__probe__"


class Slot(Protocol):
    """Durable string slot keyed by name. Implementations raise `OSError` when unusable."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


@dataclass
class FileSlot:
    """One JSON file per key inside a local state directory."""

    directory: Path

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.parent / f".{path.name}.tmp"
        for attempt in range(5):
            try:
                temp_path.write_text(value, encoding="utf-8")
            except OSError:
                temp_path.unlink(missing_ok=True)
                raise
            try:
                temp_path.replace(path)
                return
            except PermissionError:
                if attempt == 4:
                    temp_path.unlink(missing_ok=True)
                    raise
                # On Windows, AV/indexers can briefly lock newly-written temp files.
                time.sleep(0.02 * (attempt + 1))

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


@dataclass
class MemorySlot:
    """Process-local slot; `quota` caps the stored characters per value."""

    values: dict[str, str] = field(default_factory=dict)
    quota: int | None = None

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota is not None and len(value) > self.quota:
            raise OSError(errno.ENOSPC, "slot quota exceeded")
        self.values[key] = value

    def remove(self, key: str) -> None:
        self.values.pop(key, None)


class LoadOutcome(str, Enum):
    FRESH = "fresh"
    RESTORED = "restored"
    DISCARDED = "discarded"
    UNAVAILABLE = "unavailable"


class PersistedStore:
    """Owns the canonical `ProgressRecord` and its single persisted copy.

    After the first slot failure the store stops writing for the rest of the
    session and exposes `storage_available = False`; in-memory progress is kept.
    """

    def __init__(self, slot: Slot, record: ProgressRecord | None = None, *, key: str = STORAGE_KEY) -> None:
        self.slot = slot
        self.key = key
        self.record = record if record is not None else ProgressRecord()
        self.storage_available = True
        self.defaulted_fields: list[str] = []

    def _probe(self) -> bool:
        try:
            self.slot.set(PROBE_KEY, "1")
            self.slot.remove(PROBE_KEY)
        except OSError:
            return False
        return True

    def load(self) -> LoadOutcome:
        """Rehydrate the record from the slot, discarding and purging unusable data."""

        self.defaulted_fields = []
        self.storage_available = self._probe()
        if not self.storage_available:
            return LoadOutcome.UNAVAILABLE
        try:
            raw = self.slot.get(self.key)
        except UnicodeDecodeError:
            return self._discard()
        except OSError:
            self.storage_available = False
            return LoadOutcome.UNAVAILABLE
        if not raw:
            return LoadOutcome.FRESH

        try:
            parsed: Any = json.loads(raw)
        except (ValueError, RecursionError):
            return self._discard()
        if not isinstance(parsed, dict):
            return self._discard()
        version = parsed.get("schema_version")
        if isinstance(version, bool) or version != STATE_SCHEMA_VERSION:
            return self._discard()

        document, defaulted = sanitize_with_report(parsed)
        self.record.replace_with(ProgressRecord.from_document(document))
        self.defaulted_fields = defaulted
        return LoadOutcome.RESTORED

    def _discard(self) -> LoadOutcome:
        self.record.replace_with(ProgressRecord())
        try:
            self.slot.remove(self.key)
        except OSError:
            self.storage_available = False
        return LoadOutcome.DISCARDED

    def save(self) -> bool:
        """Stamp and persist the record; returns False when nothing was written."""

        self.record.last_saved_at = now_iso()
        if not self.storage_available:
            return False
        payload = json.dumps(self.record.to_dict(), separators=(",", ":"))
        try:
            self.slot.set(self.key, payload)
        except OSError:
            self.storage_available = False
            return False
        return True

    def reset(self) -> bool:
        self.record.replace_with(ProgressRecord())
        return self.save()
