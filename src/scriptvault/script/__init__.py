"""Script records: model, metadata parsing, URL matching, dependency paths and the index."""

from .index import ScriptIndex
from .matcher import is_blacklisted, script_matches_url
from .meta import get_full_url, get_name_uri, is_remote, new_script, parse_meta
from .model import (
    ScriptConfig,
    ScriptCustom,
    ScriptMeta,
    ScriptProps,
    ScriptRecord,
    script_from_dict,
)
from .paths import build_path_map, ensure_path_map, icon_key, require_keys, resolve, resource_keys

__all__ = [
    "ScriptIndex",
    "ScriptConfig",
    "ScriptCustom",
    "ScriptMeta",
    "ScriptProps",
    "ScriptRecord",
    "script_from_dict",
    "parse_meta",
    "get_name_uri",
    "get_full_url",
    "is_remote",
    "new_script",
    "script_matches_url",
    "is_blacklisted",
    "build_path_map",
    "ensure_path_map",
    "resolve",
    "require_keys",
    "resource_keys",
    "icon_key",
]
