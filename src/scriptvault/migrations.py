"""
Schema version marker and one-time migrations.

The top-level ``version`` key records which release last opened the store.
A store without the marker predates it and gets :func:`patch_legacy` before
the index loads: every ``scr:`` record is rewritten through the current
record model so missing sections pick up their defaults.
"""

from __future__ import annotations

import logging

from .script.model import script_from_dict
from .storage.backend import StorageBackend
from .storage.keyed import SCRIPT

logger = logging.getLogger(__name__)

VERSION_KEY = "version"


async def patch_legacy(backend: StorageBackend) -> int:
    """Rewrite legacy script records in the current layout; returns the count."""

    data = await backend.get()
    updates = {}
    for key, raw in data.items():
        if not key.startswith(SCRIPT.prefix) or not isinstance(raw, dict):
            continue
        record = script_from_dict(raw)
        if record.props.id is None:
            suffix = key[len(SCRIPT.prefix):]
            if suffix.isdigit():
                record.props.id = int(suffix)
        updates[key] = record.to_dict()
    if updates:
        await backend.set(updates)
    logger.info("Migrated %d legacy script records", len(updates))
    return len(updates)


async def ensure_version(backend: StorageBackend, version: str) -> bool:
    """
    Run pending migrations and stamp ``version``.

    Returns ``True`` when the legacy migration ran.
    """

    data = await backend.get([VERSION_KEY])
    last_version = data.get(VERSION_KEY)
    migrated = False
    if not last_version:
        await patch_legacy(backend)
        migrated = True
    if last_version != version:
        await backend.set({VERSION_KEY: version})
        logger.info("Store version %s -> %s", last_version or "<none>", version)
    return migrated


__all__ = ["VERSION_KEY", "ensure_version", "patch_legacy"]
