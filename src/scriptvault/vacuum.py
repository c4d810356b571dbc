"""
Vacuum: reconcile persisted keys with the keys scripts actually reference.

Each key of the code, value, require and cache namespaces gets a mark:

* ``-1`` (orphan)   persisted, not referenced yet;
* ``1``  (touched)  persisted and referenced;
* ``2``  (missing)  referenced but never persisted.

Every record touches its code and value keys (whether removed or not, so
soft-removed scripts stay restorable until purged). Only non-removed records
touch their require, resource and icon keys. Orphans are deleted; missing
require/cache keys are fetched again; missing code is data loss and only
reported.

This is a maintenance sweep, not something to run after every mutation.
"""

from __future__ import annotations

import asyncio
import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List

from .errors import ConsistencyWarning
from .script.index import ScriptIndex
from .script.paths import icon_key, require_keys, resource_keys
from .storage.backend import StorageBackend
from .storage.keyed import KeyedStore, SubStores

logger = logging.getLogger(__name__)

ORPHAN = -1
TOUCHED = 1
MISSING = 2


@dataclass(slots=True)
class VacuumReport:
    """Outcome of one :meth:`Vacuum.run` pass, keyed by sub-store name."""

    removed: Dict[str, List[str]] = field(default_factory=dict)
    refetched: Dict[str, List[str]] = field(default_factory=dict)
    missing_code: List[str] = field(default_factory=list)

    @property
    def removed_count(self) -> int:
        return sum(len(keys) for keys in self.removed.values())

    @property
    def refetched_count(self) -> int:
        return sum(len(keys) for keys in self.refetched.values())


def _touch(marks: Dict[str, int], key: str) -> None:
    state = marks.get(key)
    if state is None:
        marks[key] = MISSING
    elif state == ORPHAN:
        marks[key] = TOUCHED


class Vacuum:
    """Garbage-collect orphaned keys and re-fetch missing dependencies."""

    def __init__(self, backend: StorageBackend, stores: SubStores, index: ScriptIndex) -> None:
        self._backend = backend
        self._stores = stores
        self._index = index

    def _targets(self) -> List[KeyedStore]:
        s = self._stores
        return [s.value, s.cache, s.require, s.code]

    async def run(self) -> VacuumReport:
        targets = self._targets()
        marks: Dict[str, Dict[str, int]] = {store.name: {} for store in targets}

        data = await self._backend.get()
        for key in data:
            for store in targets:
                suffix = store.strip(key)
                if suffix is not None:
                    marks[store.name][suffix] = ORPHAN
                    break

        s = self._stores
        for script in self._index.scripts:
            script_id = str(script.props.id)
            _touch(marks[s.code.name], script_id)
            _touch(marks[s.value.name], script_id)
            if script.removed:
                continue
            for url in require_keys(script):
                _touch(marks[s.require.name], url)
            for url in resource_keys(script):
                _touch(marks[s.cache.name], url)
            icon = icon_key(script)
            if icon:
                _touch(marks[s.cache.name], icon)

        report = VacuumReport()
        fetches = []
        for store in targets:
            store_marks = marks[store.name]
            orphans = [key for key, state in store_marks.items() if state == ORPHAN]
            if orphans:
                await store.remove_multi(orphans)
                report.removed[store.name] = orphans
            missing = [key for key, state in store_marks.items() if state == MISSING]
            if not missing:
                continue
            if store.coalescer is not None:
                report.refetched[store.name] = missing
                fetches.extend(store.coalescer.fetch(url) for url in missing)
            elif store is s.code:
                report.missing_code = missing
                # Values are legitimately absent for scripts that never stored any.

        if report.missing_code:
            message = f"Code missing for script ids: {', '.join(report.missing_code)}"
            logger.warning(message)
            warnings.warn(message, ConsistencyWarning, stacklevel=2)
        if fetches:
            await asyncio.gather(*fetches)

        logger.info(
            "Vacuum removed %d orphaned keys, re-fetched %d dependencies",
            report.removed_count,
            report.refetched_count,
        )
        return report


__all__ = ["Vacuum", "VacuumReport", "ORPHAN", "TOUCHED", "MISSING"]
