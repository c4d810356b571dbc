"""
Metadata block parsing and identity helpers.

:func:`parse_meta` reads the ``// ==UserScript== ... // ==/UserScript==``
header of a script into a :class:`ScriptMeta`. Repeated keys such as
``@include``, ``@match`` or ``@require`` accumulate into lists, ``@resource``
lines become a ``{name: url}`` mapping, ``@noframes`` is a flag, and any other
key keeps its last value. Dashed or underscored keys are camel-cased
(``@exclude-match`` -> ``excludeMatch``); localized keys (``@name:fr``) are
kept in ``meta.extra`` under ``name:fr``.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Tuple
from urllib.parse import quote, urljoin

from .model import ScriptConfig, ScriptCustom, ScriptMeta, ScriptRecord, _section_kwargs

_META_BLOCK = re.compile(
    r"(?:^|\n)\s*//\x20==UserScript==([\s\S]*?\n)\s*//\x20==/UserScript==",
)
_META_LINE = re.compile(r"(?:^|\n)\s*//\x20(@\S+)(.*)")

_LIST_KEYS = frozenset({"include", "exclude", "match", "excludeMatch", "require", "grant"})
_FLAG_KEYS = frozenset({"noframes"})

NAME_PLACEHOLDER_ID = "@@should-have-name"

NEW_SCRIPT_TEMPLATE = """\
// ==UserScript==
// @name New Script
// @namespace scriptvault
// @match {{url}}
// @grant none
// ==/UserScript==
"""


def _camel(key: str) -> str:
    return re.sub(r"[-_](\w)", lambda m: m.group(1).upper(), key)


def parse_meta(code: str) -> ScriptMeta:
    """Parse the metadata block of ``code``; a missing block yields empty meta."""

    raw: Dict[str, Any] = {"resources": {}}
    block = _META_BLOCK.search(code or "")
    if block:
        for m in _META_LINE.finditer(block.group(1)):
            raw_key, raw_value = m.group(1)[1:], m.group(2).strip()
            key_name, _, locale = raw_key.partition(":")
            key = _camel(key_name)
            if locale:
                raw[f"{key}:{locale.lower()}"] = raw_value
            elif key in _LIST_KEYS:
                raw.setdefault(key, []).append(raw_value)
            elif key in _FLAG_KEYS:
                raw[key] = True
            elif key == "resource":
                name, _, url = raw_value.partition(" ")
                if name:
                    raw["resources"][name] = url.strip()
            else:
                raw[key] = raw_value

    if "homepage" in raw:
        raw["homepageURL"] = raw.pop("homepage")
    return ScriptMeta(**_section_kwargs(ScriptMeta, raw))


def get_name_uri(meta: ScriptMeta, id: Any = None) -> str:
    """Derive the ``namespace:name:`` identity used for uniqueness checks."""

    ns = meta.namespace or ""
    name = meta.name or ""
    uri = f"{quote(ns, safe='')}:{quote(name, safe='')}:"
    if not ns and not name:
        uri += str(id or "")
    return uri


def is_remote(url: str | None) -> bool:
    """``True`` for anything that is not a ``file:`` or ``data:`` URL."""

    return bool(url) and not re.match(r"^(file|data):", url)


def get_full_url(url: str, base: str | None = None) -> str:
    """Resolve ``url`` against ``base``; absolute URLs come back unchanged."""

    if not base:
        return url
    try:
        return urljoin(base, url)
    except ValueError:
        return url


def new_script() -> Tuple[ScriptRecord, str]:
    """Return the default record and template source for a fresh script."""

    code = NEW_SCRIPT_TEMPLATE
    record = ScriptRecord(
        config=ScriptConfig(enabled=1, should_update=1),
        meta=parse_meta(code),
        custom=ScriptCustom(
            orig_include=True,
            orig_exclude=True,
            orig_match=True,
            orig_exclude_match=True,
        ),
    )
    return record, code


__all__ = [
    "parse_meta",
    "get_name_uri",
    "is_remote",
    "get_full_url",
    "new_script",
    "NAME_PLACEHOLDER_ID",
    "NEW_SCRIPT_TEMPLATE",
]
