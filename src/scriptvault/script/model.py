"""Dataclass models for script records.

Persisted record schema (output of :meth:`ScriptRecord.to_dict`):

```
{"props":  {"id": 3, "uri": "ns:name:", "position": 2, "lastModified": 1700000000000},
 "config": {"enabled": 1, "shouldUpdate": 1, "removed": 0},
 "meta":   {"name": "Foo", "namespace": "ns", "require": [...], "resources": {...}, ...},
 "custom": {"pathMap": {...}, "lastInstallURL": "...", "origInclude": true, ...}}
```

Field names are snake_case in Python and mapped to the camelCase keys of the
stored format through ``field(metadata={"key": ...})``. Unknown keys survive a
load/dump round trip through each section's ``extra`` dict.

Merge precedence is explicit: ``merged()`` returns a new object where every
field present in the override wins and every other field keeps its old value.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

T = TypeVar("T")


def _key(f) -> str:
    return f.metadata.get("key", f.name)


def _section_to_dict(obj: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for f in fields(obj):
        if f.name == "extra":
            continue
        value = getattr(obj, f.name)
        if value is None:
            continue
        out[_key(f)] = copy.deepcopy(value)
    out.update(copy.deepcopy(getattr(obj, "extra", {})))
    return out


def _section_kwargs(cls: Type[T], raw: Mapping[str, Any] | None) -> Dict[str, Any]:
    """Map stored keys (camelCase or snake_case) onto ``cls`` field names."""

    raw = dict(raw or {})
    kwargs: Dict[str, Any] = {}
    known = {f.name for f in fields(cls)}
    for f in fields(cls):
        if f.name == "extra":
            continue
        for candidate in (_key(f), f.name):
            if candidate in raw:
                kwargs[f.name] = copy.deepcopy(raw.pop(candidate))
                break
    if "extra" in known:
        kwargs["extra"] = copy.deepcopy(raw)
    return kwargs


def _section_from_dict(cls: Type[T], raw: Mapping[str, Any] | None) -> T:
    return cls(**_section_kwargs(cls, raw))


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass(slots=True)
class ScriptProps:
    """Identity and ordering. ``None`` means "not assigned yet"."""

    id: Optional[int] = None
    uri: str = ""
    position: Optional[int] = None
    last_modified: Optional[int] = field(default=None, metadata={"key": "lastModified"})
    extra: Dict[str, Any] = field(default_factory=dict)

    def merged(self, other: "ScriptProps") -> "ScriptProps":
        """Return ``self`` overridden by every assigned field of ``other``."""

        return ScriptProps(
            id=other.id if other.id is not None else self.id,
            uri=other.uri or self.uri,
            position=other.position if other.position is not None else self.position,
            last_modified=(
                other.last_modified if other.last_modified is not None else self.last_modified
            ),
            extra=copy.deepcopy({**self.extra, **other.extra}),
        )


@dataclass(slots=True)
class ScriptConfig:
    """User-controlled switches, stored as ints for compatibility."""

    enabled: int = 1
    should_update: int = field(default=1, metadata={"key": "shouldUpdate"})
    removed: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.enabled = _int(self.enabled)
        self.should_update = _int(self.should_update)
        self.removed = _int(self.removed)

    def merged(self, overrides: Mapping[str, Any] | "ScriptConfig" | None) -> "ScriptConfig":
        """Return a copy where each field named in ``overrides`` wins."""

        if overrides is None:
            return copy.deepcopy(self)
        if isinstance(overrides, ScriptConfig):
            return copy.deepcopy(overrides)
        kwargs = _section_kwargs(ScriptConfig, overrides)
        extra = {**self.extra, **kwargs.pop("extra", {})}
        return replace(copy.deepcopy(self), extra=extra, **kwargs)


@dataclass(slots=True)
class ScriptMeta:
    """Parsed ``==UserScript==`` block."""

    name: str = ""
    namespace: str = ""
    description: str = ""
    version: str = ""
    author: str = ""
    homepage_url: str = field(default="", metadata={"key": "homepageURL"})
    icon: str = ""
    run_at: str = field(default="", metadata={"key": "runAt"})
    noframes: bool = False
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    match: List[str] = field(default_factory=list)
    exclude_match: List[str] = field(default_factory=list, metadata={"key": "excludeMatch"})
    require: List[str] = field(default_factory=list)
    resources: Dict[str, str] = field(default_factory=dict)
    grant: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ScriptCustom:
    """Install bookkeeping and user overrides layered on top of ``meta``.

    ``orig_*`` flags decide whether the script's own ``@include``/``@match``
    rules still apply next to the custom ones. They load as ``None`` when the
    stored record predates them.
    """

    path_map: Optional[Dict[str, str]] = field(default=None, metadata={"key": "pathMap"})
    last_install_url: Optional[str] = field(default=None, metadata={"key": "lastInstallURL"})
    homepage_url: Optional[str] = field(default=None, metadata={"key": "homepageURL"})
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    match: List[str] = field(default_factory=list)
    exclude_match: List[str] = field(default_factory=list, metadata={"key": "excludeMatch"})
    orig_include: Optional[bool] = field(default=None, metadata={"key": "origInclude"})
    orig_exclude: Optional[bool] = field(default=None, metadata={"key": "origExclude"})
    orig_match: Optional[bool] = field(default=None, metadata={"key": "origMatch"})
    orig_exclude_match: Optional[bool] = field(default=None, metadata={"key": "origExcludeMatch"})
    extra: Dict[str, Any] = field(default_factory=dict)

    def merged(self, overrides: Mapping[str, Any] | None) -> "ScriptCustom":
        if not overrides:
            return copy.deepcopy(self)
        kwargs = _section_kwargs(ScriptCustom, overrides)
        extra = {**self.extra, **kwargs.pop("extra", {})}
        return replace(copy.deepcopy(self), extra=extra, **kwargs)

    _ORIG_FLAGS = ("orig_include", "orig_exclude", "orig_match", "orig_exclude_match")

    def missing_orig_flags(self) -> bool:
        return any(getattr(self, name) is None for name in self._ORIG_FLAGS)

    def backfill_orig_flags(self) -> None:
        """Default every unset ``orig_*`` flag to ``True``."""

        for name in self._ORIG_FLAGS:
            if getattr(self, name) is None:
                setattr(self, name, True)


@dataclass(slots=True, eq=False)
class ScriptRecord:
    """A script's metadata, configuration and bookkeeping (never its code)."""

    props: ScriptProps = field(default_factory=ScriptProps)
    config: ScriptConfig = field(default_factory=ScriptConfig)
    meta: ScriptMeta = field(default_factory=ScriptMeta)
    custom: ScriptCustom = field(default_factory=ScriptCustom)

    @property
    def id(self) -> Optional[int]:
        return self.props.id

    @property
    def removed(self) -> bool:
        return bool(self.config.removed)

    @property
    def enabled(self) -> bool:
        return bool(self.config.enabled)

    def copy(self) -> "ScriptRecord":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "props": _section_to_dict(self.props),
            "config": _section_to_dict(self.config),
            "meta": _section_to_dict(self.meta),
            "custom": _section_to_dict(self.custom),
        }


def script_from_dict(raw: Mapping[str, Any]) -> ScriptRecord:
    """Rebuild a :class:`ScriptRecord` from its stored form."""

    raw = raw or {}
    props = _section_from_dict(ScriptProps, raw.get("props"))
    if props.id is not None:
        props.id = _int(props.id) or None
    if props.position is not None:
        props.position = _int(props.position)
    return ScriptRecord(
        props=props,
        config=_section_from_dict(ScriptConfig, raw.get("config")),
        meta=_section_from_dict(ScriptMeta, raw.get("meta")),
        custom=_section_from_dict(ScriptCustom, raw.get("custom")),
    )


__all__ = [
    "ScriptProps",
    "ScriptConfig",
    "ScriptMeta",
    "ScriptCustom",
    "ScriptRecord",
    "script_from_dict",
]
