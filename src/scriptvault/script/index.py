"""
In-memory ordered index of script records.

:class:`ScriptIndex` owns the ordered list of :class:`ScriptRecord` objects,
the ``id -> record`` map, and the id/position counters. It is rebuilt from the
``scr:`` namespace at startup and kept in sync with it afterwards.

Every mutating method does its in-memory work before its first ``await``, so
on a single event loop no other coroutine can observe a half-applied change.
Persisting goes through the script :class:`KeyedStore`; a crash between the
memory mutation and the write is repaired by :meth:`load` on next start, which
treats the backend as ground truth.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..errors import NamespaceConflictError, NotFoundError
from ..storage.keyed import KeyedStore
from .meta import NAME_PLACEHOLDER_ID, get_name_uri
from .model import ScriptMeta, ScriptRecord, script_from_dict

logger = logging.getLogger(__name__)


class ScriptIndex:
    """Ordered, uniqueness-checked collection of script records."""

    def __init__(self, store: KeyedStore) -> None:
        self._store = store
        self._scripts: List[ScriptRecord] = []
        self._by_id: Dict[int, ScriptRecord] = {}
        self.next_id = 0
        self.next_position = 0

    # ------------------------------------------------------------------ #
    # READ helpers
    # ------------------------------------------------------------------ #

    @property
    def scripts(self) -> List[ScriptRecord]:
        """Records ordered by position (the live list; do not mutate)."""

        return self._scripts

    def __len__(self) -> int:
        return len(self._scripts)

    def __iter__(self):
        return iter(list(self._scripts))

    def find(
        self,
        *,
        id: int | None = None,
        uri: str | None = None,
        meta: ScriptMeta | None = None,
    ) -> Optional[ScriptRecord]:
        """Look a record up by id, or by URI (given or derived from ``meta``)."""

        if id:
            return self._by_id.get(id)
        if uri is None:
            if meta is None:
                return None
            uri = get_name_uri(meta, NAME_PLACEHOLDER_ID)
        return next((s for s in self._scripts if s.props.uri == uri), None)

    def get_by_ids(self, ids: Iterable[int]) -> List[ScriptRecord]:
        return [s for s in (self._by_id.get(i) for i in ids) if s is not None]

    def index_of(self, id: int) -> int:
        for i, script in enumerate(self._scripts):
            if script.props.id == id:
                return i
        return -1

    # ------------------------------------------------------------------ #
    # LOAD / PERSIST
    # ------------------------------------------------------------------ #

    async def load(self, entries: Mapping[str, Any]) -> int:
        """
        Rebuild from raw backend ``entries`` (any keys; non-script keys skipped).

        Counters become the max observed id/position; records are sorted by
        stored position (stable, so ties keep enumeration order) and then
        normalised. Returns the number of records rewritten by normalisation.
        """

        scripts: List[ScriptRecord] = []
        next_id = next_position = 0
        for key, raw in entries.items():
            if self._store.strip(key) is None:
                continue
            try:
                record = script_from_dict(raw)
            except (TypeError, ValueError) as exc:
                logger.error("Skipping unreadable script record %s: %s", key, exc)
                continue
            if not record.props.id:
                logger.warning("Skipping script record %s without an id", key)
                continue
            if not record.props.uri:
                record.props.uri = get_name_uri(record.meta, record.props.id)
            scripts.append(record)
            next_id = max(next_id, record.props.id)
            next_position = max(next_position, record.props.position or 0)

        scripts.sort(key=lambda s: s.props.position or 0)
        self._scripts = scripts
        self._by_id = {s.props.id: s for s in scripts}
        self.next_id = next_id
        self.next_position = next_position

        changed = await self.normalize_position()
        logger.info(
            "Loaded %d scripts (next id %d, %d normalised)", len(scripts), self.next_id, changed
        )
        return changed

    def entries(self, records: Iterable[ScriptRecord]) -> Dict[str, Any]:
        """Backend ``{key: stored_record}`` pairs for ``records``."""

        return dict(self._store.entry(r.props.id, r.to_dict()) for r in records)

    async def dump(self, records: Iterable[ScriptRecord]) -> None:
        records = list(records)
        if records:
            await self._store.dump({r.props.id: r.to_dict() for r in records})

    # ------------------------------------------------------------------ #
    # ORDERING
    # ------------------------------------------------------------------ #

    def _renumber(self) -> List[ScriptRecord]:
        """Make positions dense (1..N) in list order; return the records touched."""

        changed: List[ScriptRecord] = []
        for i, script in enumerate(self._scripts):
            position = i + 1
            if script.props.position != position:
                script.props.position = position
                changed.append(script)
        self.next_position = len(self._scripts)
        return changed

    async def normalize_position(self) -> int:
        """
        Re-derive every position from list order and persist what changed.

        Records stored before the ``orig_*`` custom flags existed get them
        backfilled to ``True`` here as well. Returns the count persisted.
        """

        updates = self._renumber()
        for script in self._scripts:
            if script.custom.missing_orig_flags():
                script.custom.backfill_orig_flags()
                if script not in updates:
                    updates.append(script)
        await self.dump(updates)
        return len(updates)

    async def move(self, id: int, offset: int) -> int:
        """Shift record ``id`` by ``offset`` slots (clamped to the list bounds)."""

        index = self.index_of(id)
        if index < 0:
            raise NotFoundError(f"Script {id} not found")
        target = min(max(index + offset, 0), len(self._scripts) - 1)
        if target != index:
            lo, hi = min(index, target), max(index, target)
            window = self._scripts[lo:hi + 1]
            # Rotate the window so the moved record lands on ``target``.
            if target > index:
                window.append(window.pop(0))
            else:
                window.insert(0, window.pop())
            self._scripts[lo:hi + 1] = window
        return await self.normalize_position()

    # ------------------------------------------------------------------ #
    # WRITE helpers
    # ------------------------------------------------------------------ #

    def insert_or_replace(
        self, record: ScriptRecord, position: int | None = None
    ) -> List[ScriptRecord]:
        """
        Add ``record`` or replace the record sharing its id.

        The namespace check runs before anything is touched; on conflict the
        index is left exactly as it was. New records get the next id and are
        appended; replacements keep their slot and merge props over the old
        ones. An explicit ``position`` (1-based) is clamped to the list bounds
        and moves the record there.

        Returns every record whose stored form must be rewritten (``record``
        first). Nothing is persisted here; callers batch the write.
        """

        props = record.props
        old = self._by_id.get(props.id) if props.id else None
        # Ids of new records always come from the counter, never from the caller.
        record_id = old.props.id if old is not None else self.next_id + 1
        uri = get_name_uri(record.meta, record_id)
        for item in self._scripts:
            if item.props.id != record_id and item.props.uri == uri:
                raise NamespaceConflictError(uri)

        props.id = record_id
        props.uri = uri
        self.next_id = max(self.next_id, record_id)

        if old is not None:
            record.config = old.config.merged(record.config)
            record.props = old.props.merged(props)
            index = self.index_of(record_id)
            self._scripts[index] = record
        else:
            self.next_position += 1
            props.position = self.next_position
            index = len(self._scripts)
            self._scripts.append(record)
        self._by_id[record_id] = record

        if position:
            target = min(max(int(position), 1), len(self._scripts)) - 1
            if target != index:
                self._scripts.insert(target, self._scripts.pop(index))

        changed = self._renumber()
        return [record] + [s for s in changed if s is not record]

    def remove(self, id: int) -> Optional[ScriptRecord]:
        """Drop ``id`` from memory; returns the record or ``None``."""

        record = self._by_id.pop(id, None)
        if record is not None:
            self._scripts.remove(record)
        return record

    def remove_flagged(self) -> List[ScriptRecord]:
        """Drop every soft-removed record from memory and return them."""

        flagged = [s for s in self._scripts if s.removed]
        if flagged:
            self._scripts = [s for s in self._scripts if not s.removed]
            for script in flagged:
                self._by_id.pop(script.props.id, None)
        return flagged


__all__ = ["ScriptIndex"]
