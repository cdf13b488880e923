"""Key/value cache for remote listings, file bodies and stored settings."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from ..errors import CacheIOError
from ..logging import get_logger
from ..models import RepositoryId

_CACHE_VERSION = 1

logger = get_logger("cache")


@dataclass(frozen=True)
class CacheKey:
    """Namespaced cache key. Build instances through the factory methods only."""

    namespace: str
    name: str

    @classmethod
    def repo_tree(cls, repository: RepositoryId, path: str | None = None) -> "CacheKey":
        return cls("repo-tree", f"{repository}:{path or '/'}")

    @classmethod
    def file_content(
        cls, repository: RepositoryId, path: str, sha: str | None = None
    ) -> "CacheKey":
        name = f"{repository}/{path}"
        if sha:
            name = f"{name}@{sha}"
        return cls("file-content", name)

    @classmethod
    def api_keys(cls) -> "CacheKey":
        return cls("settings", "api-keys")

    def __str__(self) -> str:
        return f"{self.namespace}:{self.name}"


class CacheStore(Protocol):
    def get(self, key: CacheKey) -> Optional[Any]:
        ...

    def set(self, key: CacheKey, value: Any) -> None:
        ...

    def delete(self, key: CacheKey) -> None:
        ...


class MemoryCacheStore:
    """In-process cache holding serialized values, mainly for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._entries: Dict[str, str] = {}

    def get(self, key: CacheKey) -> Optional[Any]:
        raw = self._entries.get(str(key))
        if raw is None:
            return None
        try:
            return _deserialize(raw)
        except CacheIOError as exc:
            logger.warning("Evicting corrupt cache entry %s: %s", key, exc)
            self._entries.pop(str(key), None)
            return None

    def set(self, key: CacheKey, value: Any) -> None:
        try:
            self._entries[str(key)] = _serialize(value)
        except CacheIOError as exc:
            logger.warning("Failed to write cache entry %s: %s", key, exc)

    def delete(self, key: CacheKey) -> None:
        self._entries.pop(str(key), None)

    def __contains__(self, key: object) -> bool:
        return str(key) in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class JsonFileCacheStore(MemoryCacheStore):
    """Cache persisted as a single versioned JSON document, written through on change."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path
        self._load(path)

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: CacheKey) -> Optional[Any]:
        present = key in self
        value = super().get(key)
        if present and value is None and key not in self:
            self._persist()
        return value

    def set(self, key: CacheKey, value: Any) -> None:
        super().set(key, value)
        self._persist()

    def delete(self, key: CacheKey) -> None:
        super().delete(key)
        self._persist()

    def clear(self) -> None:
        self._entries.clear()
        self._persist()

    # ------------------------------------------------------------------
    # Internal helpers

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", path, exc)
            return
        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            logger.debug("Cache file %s has an unknown version; starting empty", path)
            return
        entries = data.get("entries")
        if not isinstance(entries, dict):
            return
        self._entries = {
            key: raw
            for key, raw in entries.items()
            if isinstance(key, str) and isinstance(raw, str)
        }

    def _persist(self) -> None:
        payload = {"version": _CACHE_VERSION, "entries": self._entries}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
            )
        except OSError as exc:
            logger.warning("Failed to persist cache to %s: %s", self._path, exc)


def _serialize(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise CacheIOError(f"value is not serializable: {exc}") from exc


def _deserialize(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CacheIOError(f"entry is corrupt: {exc}") from exc


__all__ = ["CacheKey", "CacheStore", "JsonFileCacheStore", "MemoryCacheStore"]
