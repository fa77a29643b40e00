"""Persistent key/value index keyed by canonical serialization."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from microdeploy.index.canonical import canonical_json, to_plain
from microdeploy.lib.errors import CacheError, WriteError
from microdeploy.lib.logging_config import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Index(Protocol):
    """Key/value store whose keys are arbitrary structured records."""

    def add(self, key: Any, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any existing entry."""
        ...

    def find(self, key: Any) -> tuple[Any, bool]:
        """Return ``(value, True)`` for a stored key, ``(None, False)`` otherwise."""
        ...


class MemoryIndex:
    """In-process index, useful for a single run or for tests."""

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}

    def add(self, key: Any, value: Any) -> None:
        self._entries[canonical_json(key)] = to_plain(value)

    def find(self, key: Any) -> tuple[Any, bool]:
        marshaled = canonical_json(key)
        if marshaled not in self._entries:
            return None, False
        return self._entries[marshaled], True


class FileIndex:
    """Index persisted as a JSON array of ``{"key", "value"}`` objects.

    The whole file is rewritten on every ``add``; a single run is the only
    writer, so no locking is done.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def add(self, key: Any, value: Any) -> None:
        marshaled = canonical_json(key)
        entries = {
            canonical_json(entry["key"]): entry for entry in self._load_entries()
        }
        entries[marshaled] = {"key": to_plain(key), "value": to_plain(value)}
        self._write_entries(list(entries.values()))

    def find(self, key: Any) -> tuple[Any, bool]:
        marshaled = canonical_json(key)
        for entry in self._load_entries():
            if canonical_json(entry["key"]) == marshaled:
                return entry["value"], True
        return None, False

    def _load_entries(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        try:
            content = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CacheError(f"Reading index file {self._path}: {exc}") from exc
        if not content.strip():
            return []
        try:
            entries = json.loads(content)
        except json.JSONDecodeError as exc:
            raise CacheError(f"Unmarshaling index file {self._path}: {exc}") from exc
        if not isinstance(entries, list) or not all(
            isinstance(entry, dict) and "key" in entry and "value" in entry
            for entry in entries
        ):
            raise CacheError(f"Invalid index file format in {self._path}")
        return entries

    def _write_entries(self, entries: list[dict[str, Any]]) -> None:
        payload = json.dumps(entries, indent=2, sort_keys=True)
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            raise WriteError(f"Writing index file {self._path}: {exc}") from exc
        logger.debug(f"Wrote {len(entries)} entries to index {self._path}")
