"""
Persistent key-value backends.

Every sub-store talks to one :class:`StorageBackend`: an async service with
batched ``get``/``set``/``remove`` and a full enumeration (``get(None)``).
Keys are plain strings; namespacing is the caller's concern.

Two implementations ship with the package:

* :class:`MemoryBackend` keeps entries in a dict (tests, ephemeral runs).
* :class:`JsonFileBackend` mirrors the dict to a gzipped JSON document and
  rewrites it atomically after every mutation.
"""

from __future__ import annotations

import asyncio
import copy
import gzip
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Protocol

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    async def get(self, keys: Iterable[str] | None = None) -> Dict[str, Any]: ...

    async def set(self, items: Mapping[str, Any]) -> None: ...

    async def remove(self, keys: Iterable[str]) -> None: ...

    async def close(self) -> None: ...


class MemoryBackend:
    """Dict-backed store. Values are deep-copied in and out like a real backend."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self.calls: list[tuple[str, Any]] = []

    async def get(self, keys: Iterable[str] | None = None) -> Dict[str, Any]:
        if keys is None:
            self.calls.append(("get", None))
            return copy.deepcopy(self._data)
        keys = list(keys)
        self.calls.append(("get", keys))
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    async def set(self, items: Mapping[str, Any]) -> None:
        self.calls.append(("set", list(items)))
        self._data.update(copy.deepcopy(dict(items)))

    async def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        self.calls.append(("remove", keys))
        for key in keys:
            self._data.pop(key, None)

    async def close(self) -> None:
        return None

    def snapshot(self) -> Dict[str, Any]:
        """Return a copy of every stored entry (synchronous, for inspection)."""

        return copy.deepcopy(self._data)


class JsonFileBackend:
    """Single-file backend: the whole keyspace as one gzipped JSON object."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._data: Dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        with gzip.open(self._path, "rt", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, snapshot: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        with gzip.open(tmp, "wt", encoding="utf-8") as f:
            json.dump(snapshot, f)
        # Atomic rename keeps partially written files from being observed by other processes.
        os.replace(tmp, self._path)

    async def _loaded(self) -> Dict[str, Any]:
        if self._data is None:
            self._data = await asyncio.to_thread(self._read)
            logger.info("Loaded %d keys from %s", len(self._data), self._path)
        return self._data

    async def get(self, keys: Iterable[str] | None = None) -> Dict[str, Any]:
        async with self._lock:
            data = await self._loaded()
            if keys is None:
                return copy.deepcopy(data)
            return {k: copy.deepcopy(data[k]) for k in keys if k in data}

    async def set(self, items: Mapping[str, Any]) -> None:
        if not items:
            return
        async with self._lock:
            data = await self._loaded()
            # Round-trip through JSON so stored values never alias caller objects.
            data.update(json.loads(json.dumps(dict(items))))
            await asyncio.to_thread(self._write, data)

    async def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        async with self._lock:
            data = await self._loaded()
            changed = False
            for key in keys:
                if key in data:
                    del data[key]
                    changed = True
            if changed:
                await asyncio.to_thread(self._write, data)

    async def close(self) -> None:
        async with self._lock:
            self._data = None


__all__ = ["StorageBackend", "MemoryBackend", "JsonFileBackend"]
