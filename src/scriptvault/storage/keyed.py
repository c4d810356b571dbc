"""
Prefixed sub-stores over one shared backend.

A :class:`KeyedStore` owns a single key namespace (``prefix + id``) in the
backend. All sub-stores share the same class; what differs is their
:class:`StoreSpec`: the prefix, and whether missing entries can be re-fetched
from the network (``fetch_mode``). Fetch-capable stores carry a
:class:`~scriptvault.storage.fetch.FetchCoalescer` as ``store.coalescer``.

Every operation issues exactly one backend call; multi-id operations batch.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Literal, Mapping

from .backend import StorageBackend
from .fetch import FetchCoalescer, Fetcher

FetchMode = Literal["text", "base64"]


@dataclass(frozen=True, slots=True)
class StoreSpec:
    """Static configuration of one sub-store."""

    name: str
    prefix: str
    fetch_mode: FetchMode | None = None


SCRIPT = StoreSpec("script", "scr:")
CODE = StoreSpec("code", "code:")
VALUE = StoreSpec("value", "val:")
REQUIRE = StoreSpec("require", "req:", fetch_mode="text")
CACHE = StoreSpec("cache", "cac:", fetch_mode="base64")


class KeyedStore:
    """Namespaced view of a :class:`StorageBackend`."""

    def __init__(self, backend: StorageBackend, spec: StoreSpec) -> None:
        self.backend = backend
        self.spec = spec
        self.coalescer: FetchCoalescer | None = None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def prefix(self) -> str:
        return self.spec.prefix

    def key(self, id: Any) -> str:
        return f"{self.prefix}{id}"

    def strip(self, key: str) -> str | None:
        """Return the id part of ``key`` or ``None`` when it is not ours."""

        if key.startswith(self.prefix):
            return key[len(self.prefix):]
        return None

    def entry(self, id: Any, value: Any) -> tuple[str, Any]:
        """Return the backend ``(key, value)`` pair for a cross-store batch."""

        return self.key(id), value

    async def get_one(self, id: Any) -> Any:
        key = self.key(id)
        data = await self.backend.get([key])
        return data.get(key)

    async def get_multi(self, ids: Iterable[Any], default: Any = None) -> Dict[Any, Any]:
        """Return ``{id: value}`` for every id, ``default`` where absent."""

        ids = list(ids)
        data = await self.backend.get([self.key(i) for i in ids])
        result: Dict[Any, Any] = {}
        for i in ids:
            key = self.key(i)
            result[i] = data[key] if key in data else copy.deepcopy(default)
        return result

    async def set(self, id: Any, value: Any) -> None:
        if not id:
            return
        await self.backend.set({self.key(id): value})

    async def dump(self, mapping: Mapping[Any, Any]) -> None:
        """Write many ``id -> value`` pairs in one batch."""

        updates = {self.key(i): v for i, v in mapping.items() if i}
        if updates:
            await self.backend.set(updates)

    async def remove(self, id: Any) -> None:
        if not id:
            return
        await self.backend.remove([self.key(id)])

    async def remove_multi(self, ids: Iterable[Any]) -> None:
        keys = [self.key(i) for i in ids if i]
        if keys:
            await self.backend.remove(keys)

    async def fetch(self, url: str, validator=None) -> None:
        """Fetch ``url`` through the attached coalescer (best effort)."""

        if self.coalescer is None:
            raise TypeError(f"Store '{self.name}' has no fetch behaviour")
        await self.coalescer.fetch(url, validator)

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        return f"KeyedStore({self.name!r}, prefix={self.prefix!r})"


@dataclass(slots=True)
class SubStores:
    """The five namespaces the vault persists into."""

    script: KeyedStore
    code: KeyedStore
    value: KeyedStore
    require: KeyedStore
    cache: KeyedStore

    def all(self) -> list[KeyedStore]:
        return [self.script, self.code, self.value, self.require, self.cache]


def build_stores(backend: StorageBackend, fetcher: Fetcher | None = None) -> SubStores:
    """Create every sub-store over ``backend``; attach coalescers when fetching is possible."""

    stores = SubStores(
        script=KeyedStore(backend, SCRIPT),
        code=KeyedStore(backend, CODE),
        value=KeyedStore(backend, VALUE),
        require=KeyedStore(backend, REQUIRE),
        cache=KeyedStore(backend, CACHE),
    )
    if fetcher is not None:
        for store in stores.all():
            if store.spec.fetch_mode is not None:
                store.coalescer = FetchCoalescer(store, fetcher, store.spec.fetch_mode)
    return stores


__all__ = [
    "FetchMode",
    "StoreSpec",
    "KeyedStore",
    "SubStores",
    "build_stores",
    "SCRIPT",
    "CODE",
    "VALUE",
    "REQUIRE",
    "CACHE",
]
