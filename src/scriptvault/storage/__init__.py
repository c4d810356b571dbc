"""
Storage layer: backends, prefixed sub-stores and coalesced remote fetches.

The vault builds one :class:`SubStores` bundle per backend with
:func:`build_stores` and hands it to the index, the install pipeline and the
vacuum pass.
"""

from .backend import JsonFileBackend, MemoryBackend, StorageBackend
from .fetch import FetchCoalescer, FetchedPayload, Fetcher, HttpFetcher, validate_image
from .keyed import KeyedStore, StoreSpec, SubStores, build_stores

__all__ = [
    "StorageBackend",
    "MemoryBackend",
    "JsonFileBackend",
    "FetchCoalescer",
    "FetchedPayload",
    "Fetcher",
    "HttpFetcher",
    "validate_image",
    "KeyedStore",
    "StoreSpec",
    "SubStores",
    "build_stores",
]
