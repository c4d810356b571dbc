"""
ScriptVault service.

One :class:`ScriptVault` instance owns the backend, the sub-stores, the
in-memory :class:`ScriptIndex`, the install pipeline and the vacuum pass for
the lifetime of the process. It is created explicitly, opened once with
:meth:`ScriptVault.open` (version check, migration, index load) and closed
with :meth:`ScriptVault.close`, which waits for background dependency fetches
before releasing the fetcher and backend::

    async with ScriptVault(JsonFileBackend("data/store.json.gz"), HttpFetcher()) as vault:
        event = await vault.parse_script(InstallRequest(code=source, url=url))
        bundle = await vault.get_scripts_by_url("https://example.com/")

Everything collaborators need (injection bundles, dashboard data, export,
ordering, removal, value stores) goes through the methods below.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from . import __version__, maintenance
from .config import matching as matching_cfg
from .config import storage as storage_cfg
from .errors import NotFoundError
from .events import Event, EventBus
from .install import InstallPipeline, InstallRequest
from .migrations import ensure_version
from .script.index import ScriptIndex
from .script.matcher import is_blacklisted, script_matches_url
from .script.meta import is_remote
from .script.model import ScriptMeta, ScriptRecord
from .script.paths import build_path_map, require_keys, resolve, resource_keys
from .storage.backend import JsonFileBackend, StorageBackend
from .storage.fetch import Fetcher, HttpFetcher
from .storage.keyed import build_stores
from .vacuum import Vacuum, VacuumReport

logger = logging.getLogger(__name__)

GM_VALUE_GRANTS = frozenset({"GM_getValue", "GM_setValue", "GM_listValues", "GM_deleteValue"})


@dataclass(slots=True)
class InjectionBundle:
    """Everything needed to run the scripts matching one page URL."""

    scripts: List[ScriptRecord]
    require: Dict[str, Any]
    cache: Dict[str, Any]
    values: Dict[int, Any]
    code: Dict[int, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scripts": [s.to_dict() for s in self.scripts],
            "require": self.require,
            "cache": self.cache,
            "values": self.values,
            "code": self.code,
        }


class ScriptVault:
    """Long-lived owner of the script store and its caches."""

    def __init__(
        self,
        backend: StorageBackend,
        fetcher: Fetcher | None = None,
        *,
        events: EventBus | None = None,
        blacklist: Iterable[str] | None = None,
        version: str = __version__,
    ) -> None:
        self.backend = backend
        self.fetcher = fetcher
        self.events = events if events is not None else EventBus()
        self.blacklist = list(blacklist) if blacklist is not None else list(matching_cfg.BLACKLIST)
        self.version = version
        self.stores = build_stores(backend, fetcher)
        self.index = ScriptIndex(self.stores.script)
        self.installer = InstallPipeline(self.index, self.stores, self.events)
        self._vacuum = Vacuum(backend, self.stores, self.index)
        self._maintenance_task: asyncio.Task | None = None

    @classmethod
    def from_config(cls, data_file: str | None = None) -> "ScriptVault":
        """Build a vault over the configured data file with an HTTP fetcher."""

        return cls(
            JsonFileBackend(data_file or storage_cfg.DATA_FILE),
            HttpFetcher.from_config(),
        )

    # ------------------------------------------------------------------ #
    # LIFECYCLE
    # ------------------------------------------------------------------ #

    async def open(self) -> "ScriptVault":
        await ensure_version(self.backend, self.version)
        await self.index.load(await self.backend.get())
        return self

    async def close(self) -> None:
        await self.stop_maintenance()
        await self.installer.drain()
        if self.fetcher is not None:
            await self.fetcher.close()
        await self.backend.close()

    async def __aenter__(self) -> "ScriptVault":
        return await self.open()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def start_maintenance(self, interval: float | None = None) -> asyncio.Task:
        """Schedule :meth:`vacuum` every ``interval`` seconds (config default)."""

        if self._maintenance_task is None or self._maintenance_task.done():
            self._maintenance_task = maintenance.startup(
                self.vacuum,
                interval or storage_cfg.VACUUM_INTERVAL,
                name="vacuum",
            )
        return self._maintenance_task

    async def stop_maintenance(self) -> None:
        task, self._maintenance_task = self._maintenance_task, None
        await maintenance.shutdown(task)

    # ------------------------------------------------------------------ #
    # READ helpers
    # ------------------------------------------------------------------ #

    async def get_script(
        self,
        *,
        id: int | None = None,
        uri: str | None = None,
        meta: ScriptMeta | None = None,
    ) -> Optional[ScriptRecord]:
        return self.index.find(id=id, uri=uri, meta=meta)

    async def get_scripts(self) -> List[ScriptRecord]:
        return list(self.index.scripts)

    async def get_script_by_ids(self, ids: Iterable[int]) -> List[ScriptRecord]:
        return self.index.get_by_ids(ids)

    async def get_script_code(self, id: int) -> Optional[str]:
        return await self.stores.code.get_one(id)

    async def get_value_stores_by_ids(self, ids: Iterable[int]) -> Dict[int, Any]:
        return await self.stores.value.get_multi(ids)

    async def get_scripts_by_url(self, url: str) -> InjectionBundle:
        """
        Collect the scripts that run on ``url`` and their injection data.

        Disabled scripts are listed but contribute no code, values or
        dependency keys. Values are only loaded for scripts granting a
        ``GM_*Value`` API.
        """

        if is_blacklisted(url, self.blacklist):
            scripts: List[ScriptRecord] = []
        else:
            scripts = [
                s for s in self.index.scripts if not s.removed and script_matches_url(url, s)
            ]
        enabled = [s for s in scripts if s.enabled]

        req_keys: Dict[str, None] = {}
        cache_keys: Dict[str, None] = {}
        for script in enabled:
            req_keys.update(dict.fromkeys(require_keys(script)))
            cache_keys.update(dict.fromkeys(resource_keys(script)))
        with_values = [s.props.id for s in enabled if GM_VALUE_GRANTS.intersection(s.meta.grant)]

        require, cache, values, code = await asyncio.gather(
            self.stores.require.get_multi(req_keys),
            self.stores.cache.get_multi(cache_keys),
            self.stores.value.get_multi(with_values, {}),
            self.stores.code.get_multi([s.props.id for s in enabled]),
        )
        return InjectionBundle(scripts=scripts, require=require, cache=cache, values=values, code=code)

    async def get_dashboard_data(self) -> Dict[str, Any]:
        """All scripts plus their cached icons as ``data:`` URIs keyed by ``@icon``."""

        scripts = list(self.index.scripts)
        icons: Dict[str, str] = {}
        for script in scripts:
            if is_remote(script.meta.icon):
                icons[script.meta.icon] = resolve(script, script.meta.icon)
        cached = await self.stores.cache.get_multi(set(icons.values()))
        cache = {
            icon: f"data:image/png;base64,{cached[key]}"
            for icon, key in icons.items()
            if cached.get(key)
        }
        return {"scripts": scripts, "cache": cache}

    async def get_export_data(self, ids: Iterable[int], with_values: bool = False) -> Dict[str, Any]:
        """Scripts (with code) ready for export; removed or unknown ids are skipped."""

        available = [s for s in self.index.get_by_ids(ids) if not s.removed]
        available_ids = [s.props.id for s in available]
        code = await self.stores.code.get_multi(available_ids)
        data: Dict[str, Any] = {
            "items": [{"script": s.to_dict(), "code": code[s.props.id]} for s in available],
        }
        if with_values:
            data["values"] = await self.stores.value.get_multi(available_ids)
        return data

    # ------------------------------------------------------------------ #
    # WRITE helpers
    # ------------------------------------------------------------------ #

    async def parse_script(self, request: InstallRequest) -> Event:
        return await self.installer.parse_script(request)

    async def dump_value_stores(self, value_dict: Mapping[int, Any]) -> Mapping[int, Any]:
        logger.debug("Update value stores for %s", list(value_dict))
        await self.stores.value.dump(value_dict)
        return value_dict

    async def dump_value_store(
        self,
        value_store: Any,
        *,
        id: int | None = None,
        uri: str | None = None,
        meta: ScriptMeta | None = None,
    ) -> None:
        if not id:
            script = self.index.find(uri=uri, meta=meta)
            id = script.props.id if script else None
        if id:
            await self.dump_value_stores({id: value_store})

    async def update_script_info(
        self,
        id: int,
        *,
        config: Mapping[str, Any] | None = None,
        custom: Mapping[str, Any] | None = None,
    ) -> ScriptRecord:
        script = self.index.find(id=id)
        if script is None:
            raise NotFoundError(f"Script {id} not found")
        last_install_url = script.custom.last_install_url
        script.config = script.config.merged(config)
        script.custom = script.custom.merged(custom)
        if script.custom.last_install_url != last_install_url:
            build_path_map(script)
        await self.index.dump([script])
        return script

    async def move_script(self, id: int, offset: int) -> int:
        return await self.index.move(id, offset)

    async def remove_script(self, id: int) -> Event:
        """Hard-delete ``id`` (record, code and values) and emit ``RemoveScript``."""

        if self.index.remove(id) is not None:
            await asyncio.gather(
                self.index.normalize_position(),
                self.stores.script.remove(id),
                self.stores.code.remove(id),
                self.stores.value.remove(id),
            )
            logger.info("Removed script %s", id)
        event = Event("RemoveScript", id)
        await self.events.emit(event)
        return event

    async def check_remove(self) -> int:
        """Purge every soft-removed script; returns how many were dropped."""

        removed = self.index.remove_flagged()
        if removed:
            ids = [s.props.id for s in removed]
            await asyncio.gather(
                self.index.normalize_position(),
                self.stores.script.remove_multi(ids),
                self.stores.code.remove_multi(ids),
                self.stores.value.remove_multi(ids),
            )
            logger.info("Purged %d removed scripts", len(ids))
        return len(removed)

    async def vacuum(self) -> VacuumReport:
        return await self._vacuum.run()


__all__ = ["ScriptVault", "InjectionBundle", "GM_VALUE_GRANTS"]
