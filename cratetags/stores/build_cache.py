"""Persistent record of the build key each tags file was last built from."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Dict, Optional

from ..tags.generator import TagsBuffer
from ..tags.merger import promote

_CACHE_VERSION = 2


class BuildCache:
    """Maps published tags files to the build key that produced them.

    A build key combines the node hash with the state of the dependency tags
    merged into the file, see ``orchestrator.build_key``.
    """

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._entries: Dict[str, Dict[str, str]] = {}
        self._updated: set[str] = set()
        self._lock = threading.Lock()
        if self._path is not None:
            self._load(self._path)

    def recorded_key(self, tags_path: Path) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(_key(tags_path))
        if not entry:
            return None
        value = entry.get("key")
        return value if isinstance(value, str) else None

    def is_fresh(self, tags_path: Path, build_key: str) -> bool:
        """Return True when ``tags_path`` exists and was not built from another key.

        Files with no recorded key count as fresh.
        """
        if not tags_path.is_file():
            return False
        recorded = self.recorded_key(tags_path)
        return recorded is None or recorded == build_key

    def store(self, tags_path: Path, build_key: str) -> None:
        with self._lock:
            self._entries[_key(tags_path)] = {
                "key": build_key,
                "updated_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            }
            self._updated.add(_key(tags_path))

    def persist(self) -> None:
        with self._lock:
            if not self._updated or self._path is None:
                return
            # entries written by concurrent runs since we loaded are kept
            entries = _read_entries(self._path)
            for key in self._updated:
                entries[key] = self._entries[key]
            payload = {
                "version": _CACHE_VERSION,
                "entries": entries,
            }
            data = json.dumps(payload, indent=2, sort_keys=True).encode("utf-8")
            promote(TagsBuffer(data), self._path)
            self._entries = entries
            self._updated.clear()

    # ------------------------------------------------------------------
    # Internal helpers

    def _load(self, path: Path) -> None:
        self._entries = _read_entries(path)


def _read_entries(path: Path) -> Dict[str, Dict[str, str]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
        return {}
    entries = data.get("entries")
    if not isinstance(entries, dict):
        return {}
    return {
        key: raw
        for key, raw in entries.items()
        if isinstance(key, str) and isinstance(raw, dict) and "key" in raw
    }


def _key(tags_path: Path) -> str:
    return str(tags_path.resolve())


__all__ = ["BuildCache"]
