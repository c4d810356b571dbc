"""
Dependency key resolution.

Scripts may declare ``@require``/``@resource``/``@icon`` URLs relative to the
URL they were installed from. :func:`build_path_map` resolves them against
``custom.last_install_url`` once and caches the result on the record as
``custom.path_map`` (``{declared: absolute}``, only for entries whose
resolution changed the string). Everything else asks :func:`resolve` for the
cache key of a declared identifier.
"""

from __future__ import annotations

from typing import Dict, List

from .meta import get_full_url, is_remote
from .model import ScriptRecord


def _declared_keys(script: ScriptRecord) -> List[str]:
    meta = script.meta
    keys = [*meta.require, *meta.resources.values()]
    if is_remote(meta.icon):
        keys.append(meta.icon)
    return [key for key in keys if key]


def build_path_map(script: ScriptRecord) -> Dict[str, str]:
    """Rebuild and store ``custom.path_map`` for ``script``."""

    base = script.custom.last_install_url
    path_map: Dict[str, str] = {}
    for key in _declared_keys(script):
        full_url = get_full_url(key, base)
        if full_url != key:
            path_map[key] = full_url
    script.custom.path_map = path_map
    return path_map


def ensure_path_map(script: ScriptRecord) -> Dict[str, str]:
    if script.custom.path_map is None:
        return build_path_map(script)
    return script.custom.path_map


def resolve(script: ScriptRecord, key: str) -> str:
    """Return the cache key for the declared identifier ``key``."""

    return ensure_path_map(script).get(key, key)


def require_keys(script: ScriptRecord) -> List[str]:
    return [resolve(script, key) for key in script.meta.require if key]


def resource_keys(script: ScriptRecord) -> List[str]:
    return [resolve(script, url) for url in script.meta.resources.values() if url]


def icon_key(script: ScriptRecord) -> str | None:
    icon = script.meta.icon
    if not is_remote(icon):
        return None
    return resolve(script, icon)


__all__ = [
    "build_path_map",
    "ensure_path_map",
    "resolve",
    "require_keys",
    "resource_keys",
    "icon_key",
]
