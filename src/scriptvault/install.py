"""
Install pipeline
================
1. Input        : :class:`InstallRequest` (source text + install bookkeeping).
2. Validate     : parse the metadata block; no ``@name`` -> InvalidScriptError.
3. Resolve      : existing record by id, else by name/namespace URI. A request
                  flagged ``is_new`` that collides with one -> NamespaceConflictError.
4. Merge        : config/custom shallow-merged over the existing (or default)
                  record, ``removed`` reset to 0, meta replaced, timestamps set.
5. Persist      : index insert/replace, then record + code (+ any renumbered
                  records) written in one backend call.
6. Dependencies : ``@require``/``@resource``/``@icon`` fetched in the
                  background; inline payloads from the request skip the network.
7. Notify       : ``AddScript`` / ``UpdateScript`` event returned and emitted.

NOTE: dependency failures never fail an install. They are logged and left for
a later install or vacuum pass to retry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, Set, Tuple

from .errors import InvalidScriptError, NamespaceConflictError
from .events import Event, EventBus
from .script.index import ScriptIndex
from .script.meta import is_remote, new_script, parse_meta
from .script.model import ScriptRecord
from .script.paths import build_path_map, icon_key, resolve
from .storage.fetch import Validator, validate_image
from .storage.keyed import KeyedStore, SubStores

logger = logging.getLogger(__name__)

MSG_INSTALLED = "Script installed."
MSG_UPDATED = "Script updated."


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class InstallRequest:
    """
    One install or update.

    Attributes:
        code: Full script source including the metadata block.
        id: Target record id when updating a known script.
        url: URL the source was downloaded from; becomes ``lastInstallURL``
            when remote and is the base for relative dependency URLs.
        from_url: Page that initiated the install; used as homepage fallback.
        is_new: Refuse to overwrite an existing script with the same name.
        config: Config overrides (``enabled``, ``shouldUpdate``).
        custom: Custom overrides (include/match lists, orig flags...).
        message: Status text for the event; ``None`` picks the default.
        modified: ``lastModified`` in epoch milliseconds (defaults to now).
        position: 1-based target position, clamped to the list bounds.
        require: Inline ``{absolute_url: text}`` payloads for ``@require``.
        resources: Inline ``{absolute_url: base64}`` payloads for ``@resource``.
    """

    code: str
    id: Optional[int] = None
    url: Optional[str] = None
    from_url: Optional[str] = None
    is_new: bool = False
    config: Optional[Dict[str, Any]] = None
    custom: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    modified: Optional[int] = None
    position: Optional[int] = None
    require: Dict[str, str] = field(default_factory=dict)
    resources: Dict[str, str] = field(default_factory=dict)


class InstallPipeline:
    """Validate, merge and persist scripts, then warm their dependency caches."""

    def __init__(
        self,
        index: ScriptIndex,
        stores: SubStores,
        events: EventBus | None = None,
    ) -> None:
        self._index = index
        self._stores = stores
        self._events = events
        self._tasks: Set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Background dependency jobs still running."""

        return len(self._tasks)

    async def parse_script(self, request: InstallRequest) -> Event:
        meta = parse_meta(request.code)
        if not meta.name:
            raise InvalidScriptError()

        old = self._index.find(id=request.id, meta=meta)
        if old is not None:
            if request.is_new:
                raise NamespaceConflictError(old.props.uri)
            script = old.copy()
            cmd, default_message = "UpdateScript", MSG_UPDATED
        else:
            script, _ = new_script()
            cmd, default_message = "AddScript", MSG_INSTALLED

        # Reinstalling always un-removes.
        script.config = script.config.merged(request.config).merged({"removed": 0})
        script.custom = script.custom.merged(request.custom)
        script.meta = meta
        if not meta.homepage_url and not script.custom.homepage_url and is_remote(request.from_url):
            script.custom.homepage_url = request.from_url
        if is_remote(request.url):
            script.custom.last_install_url = request.url
        script.props.last_modified = request.modified or _now_ms()
        build_path_map(script)

        changed = self._index.insert_or_replace(script, request.position)
        updates = self._index.entries(changed)
        updates.update([self._stores.code.entry(script.props.id, request.code)])
        await self._stores.script.backend.set(updates)
        logger.info(
            "%s %s (id %s, position %s)",
            "Installed" if cmd == "AddScript" else "Updated",
            script.props.uri,
            script.props.id,
            script.props.position,
        )

        self._schedule(self.fetch_script_resources(script, request))

        message = default_message if request.message is None else request.message or ""
        event = Event(
            cmd,
            {
                "update": {"message": message, **script.to_dict()},
                "where": {"id": script.props.id},
            },
        )
        if self._events is not None:
            await self._events.emit(event)
        return event

    # ------------------------------------------------------------------ #
    # Dependencies
    # ------------------------------------------------------------------ #

    def _schedule(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every scheduled dependency job to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _fetch(self, store: KeyedStore, url: str, validator: Validator | None = None) -> None:
        if store.coalescer is None:
            logger.debug("No fetcher configured; %s stays uncached", url)
            return
        await store.coalescer.fetch(url, validator)

    async def fetch_script_resources(
        self, script: ScriptRecord, request: InstallRequest | None = None
    ) -> None:
        """Persist inline payloads and fetch the rest of ``script``'s dependencies."""

        inline_require = request.require if request else {}
        inline_resources = request.resources if request else {}
        jobs: List[Tuple[str, Awaitable[None]]] = []

        for key in script.meta.require:
            full_url = resolve(script, key)
            cached = inline_require.get(full_url)
            if cached:
                jobs.append((f"require {full_url}", self._stores.require.set(full_url, cached)))
            else:
                jobs.append((f"require {full_url}", self._fetch(self._stores.require, full_url)))

        for url in script.meta.resources.values():
            full_url = resolve(script, url)
            cached = inline_resources.get(full_url)
            if cached:
                jobs.append((f"resource {full_url}", self._stores.cache.set(full_url, cached)))
            else:
                jobs.append((f"resource {full_url}", self._fetch(self._stores.cache, full_url)))

        icon = icon_key(script)
        if icon:
            jobs.append((f"icon {icon}", self._fetch(self._stores.cache, icon, validate_image)))

        if not jobs:
            return
        results = await asyncio.gather(*(job for _, job in jobs), return_exceptions=True)
        for (label, _), result in zip(jobs, results):
            if isinstance(result, Exception):
                logger.warning("Failed to cache %s for %s: %s", label, script.props.uri, result)


__all__ = ["InstallPipeline", "InstallRequest", "MSG_INSTALLED", "MSG_UPDATED"]
