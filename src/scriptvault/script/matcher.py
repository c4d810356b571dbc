"""
URL matching for script selection.

Two rule flavours are supported:

* ``@match`` / ``@exclude-match``: WebExtension match patterns
  (``<all_urls>``, ``*://*.example.com/path*``).
* ``@include`` / ``@exclude``: globs where ``*`` matches anything, or a
  regular expression when wrapped in slashes (``/^https?:.*$/``).

A script whose effective rule set has neither ``@match`` nor ``@include``
matches every URL. Custom rules stored in ``custom`` are added to the script's
own rules; the script's own rules only count while the matching ``orig_*``
flag is truthy.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Iterable, List, Pattern
from urllib.parse import urlsplit

from .model import ScriptRecord

logger = logging.getLogger(__name__)

_MATCH_PATTERN = re.compile(r"^(\*|https?|file|ftp|wss?)://(\*|\*\.[^*/]+|[^*/]*)(/.*)$")
_NEVER = re.compile(r"(?!)")


def _glob_to_regex(glob: str) -> str:
    return "".join(".*" if ch == "*" else re.escape(ch) for ch in glob)


@lru_cache(maxsize=1024)
def compile_include(rule: str) -> Pattern[str]:
    """Compile an ``@include``/``@exclude`` rule."""

    if len(rule) > 1 and rule.startswith("/") and rule.endswith("/"):
        try:
            return re.compile(rule[1:-1])
        except re.error as exc:
            logger.warning("Invalid regex rule %r: %s", rule, exc)
            return _NEVER
    return re.compile(f"^{_glob_to_regex(rule)}$")


@lru_cache(maxsize=1024)
def compile_match(rule: str) -> Pattern[str]:
    """Compile an ``@match``/``@exclude-match`` pattern."""

    if rule == "<all_urls>":
        return re.compile(r"^(https?|file|ftp)://")
    m = _MATCH_PATTERN.match(rule)
    if not m:
        logger.warning("Invalid match pattern %r", rule)
        return _NEVER
    scheme, host, path = m.groups()
    scheme_re = "https?" if scheme == "*" else re.escape(scheme)
    if host == "*":
        host_re = r"[^/]*"
    elif host.startswith("*."):
        host_re = rf"(?:[^/]*\.)?{re.escape(host[2:])}"
    else:
        host_re = re.escape(host)
    # Match patterns ignore ports and credentials on the host side.
    return re.compile(rf"^{scheme_re}://(?:[^/@]*@)?{host_re}(?::\d+)?{_glob_to_regex(path)}$")


def _matches_any(url: str, rules: Iterable[str], compile_fn) -> bool:
    return any(compile_fn(rule).search(url) for rule in rules if rule)


def _merge_rules(own: List[str], use_own: bool | None, custom: List[str]) -> List[str]:
    rules: List[str] = list(own) if use_own or use_own is None else []
    rules.extend(custom or [])
    return rules


def script_matches_url(url: str, script: ScriptRecord) -> bool:
    """Return ``True`` when ``script`` should run on ``url``."""

    meta, custom = script.meta, script.custom
    include = _merge_rules(meta.include, custom.orig_include, custom.include)
    exclude = _merge_rules(meta.exclude, custom.orig_exclude, custom.exclude)
    match = _merge_rules(meta.match, custom.orig_match, custom.match)
    exclude_match = _merge_rules(meta.exclude_match, custom.orig_exclude_match, custom.exclude_match)

    ok = not match and not include
    ok = ok or _matches_any(url, match, compile_match)
    ok = ok or _matches_any(url, include, compile_include)
    ok = ok and not _matches_any(url, exclude_match, compile_match)
    ok = ok and not _matches_any(url, exclude, compile_include)
    return ok


def is_blacklisted(url: str, rules: Iterable[str]) -> bool:
    """Return ``True`` when ``url`` is blocked by any blacklist rule.

    Rules may be match patterns, include globs, or bare host names.
    """

    host = urlsplit(url).hostname or ""
    for rule in rules:
        if not rule:
            continue
        if "://" in rule or rule == "<all_urls>":
            if compile_match(rule).search(url):
                return True
        elif rule.startswith("/") or "*" in rule:
            if compile_include(rule).search(url):
                return True
        elif host == rule or host.endswith(f".{rule}"):
            return True
    return False


__all__ = ["script_matches_url", "is_blacklisted", "compile_include", "compile_match"]
