"""Persistence and resource layer for a userscript manager."""

__version__ = "0.3.0"

from .errors import (  # noqa: E402
    FetchError,
    InvalidScriptError,
    NamespaceConflictError,
    NotFoundError,
    ScriptVaultError,
    ValidationError,
)
from .events import Event, EventBus  # noqa: E402
from .install import InstallRequest  # noqa: E402
from .storage import HttpFetcher, JsonFileBackend, MemoryBackend  # noqa: E402
from .vault import InjectionBundle, ScriptVault  # noqa: E402

__all__ = [
    "__version__",
    "ScriptVault",
    "InjectionBundle",
    "InstallRequest",
    "Event",
    "EventBus",
    "MemoryBackend",
    "JsonFileBackend",
    "HttpFetcher",
    "ScriptVaultError",
    "ValidationError",
    "InvalidScriptError",
    "NamespaceConflictError",
    "NotFoundError",
    "FetchError",
]
