"""
Remote dependency fetching
==========================
1. :class:`HttpFetcher` downloads a URL with aiohttp and returns a
   :class:`FetchedPayload` (raw bytes plus text / base64 / stream views).
2. :class:`FetchCoalescer` wraps one fetch-capable :class:`KeyedStore`:
   concurrent ``fetch(url)`` calls share a single in-flight task, an optional
   validator may reject the payload, and the result is persisted as text
   (``@require``) or base64 (``@resource`` / ``@icon``).

NOTE: failures are logged and swallowed. A dependency that cannot be fetched
stays absent from the cache until a later install or vacuum retries it.
"""

from __future__ import annotations

import asyncio
import base64
import inspect
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Protocol

import aiohttp
from PIL import Image, UnidentifiedImageError

from ..errors import FetchError

if TYPE_CHECKING:  # pragma: no cover - type-checking only
    from .keyed import FetchMode, KeyedStore

logger = logging.getLogger(__name__)

Validator = Callable[["FetchedPayload"], Awaitable[Any] | Any]


@dataclass(slots=True)
class FetchedPayload:
    """Bytes returned by a fetcher, with the views the caches need."""

    url: str
    content: bytes
    content_type: str | None = None

    def text(self, encoding: str = "utf-8") -> str:
        return self.content.decode(encoding, errors="replace")

    def base64(self) -> str:
        return base64.b64encode(self.content).decode("ascii")

    def stream(self) -> BytesIO:
        return BytesIO(self.content)

    def data_uri(self, mime: str | None = None) -> str:
        mime = mime or self.content_type or "application/octet-stream"
        return f"data:{mime};base64,{self.base64()}"


class Fetcher(Protocol):
    async def fetch(self, url: str) -> FetchedPayload: ...

    async def close(self) -> None: ...


class HttpFetcher:
    """aiohttp-backed fetch primitive with a size cap and a request timeout."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        max_mb: int = 10,
        user_agent: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_bytes = max_mb * 1024 * 1024
        self._headers = {"User-Agent": user_agent} if user_agent else {}
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls) -> "HttpFetcher":
        from ..config import fetch as fetch_cfg

        return cls(
            timeout=fetch_cfg.REQUEST_TIMEOUT,
            max_mb=fetch_cfg.MAX_RESOURCE_MB,
            user_agent=fetch_cfg.USER_AGENT,
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._headers)
            self._owns_session = True
        return self._session

    async def fetch(self, url: str) -> FetchedPayload:
        session = self._get_session()
        try:
            async with session.get(url) as r:
                r.raise_for_status()
                if r.content_length is not None and r.content_length > self._max_bytes:
                    raise FetchError(f"{url}: resource too large ({r.content_length} bytes)")
                data = await r.read()
                content_type = r.headers.get("Content-Type")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FetchError(f"{url}: {exc}") from exc
        if len(data) > self._max_bytes:
            raise FetchError(f"{url}: resource too large ({len(data)} bytes)")
        return FetchedPayload(url=url, content=data, content_type=content_type)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


def validate_image(payload: FetchedPayload) -> None:
    """Raise :class:`FetchError` unless ``payload`` decodes as an image."""

    try:
        with Image.open(payload.stream()) as im:
            im.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise FetchError(f"{payload.url}: not a loadable image ({exc})") from exc


class FetchCoalescer:
    """At most one in-flight fetch per URL for one sub-store."""

    def __init__(self, store: "KeyedStore", fetcher: Fetcher, mode: "FetchMode") -> None:
        self._store = store
        self._fetcher = fetcher
        self._mode = mode
        self._requests: Dict[str, asyncio.Task[None]] = {}

    @property
    def pending(self) -> list[str]:
        """URLs with a fetch currently in flight."""

        return list(self._requests)

    def fetch(self, url: str, validator: Validator | None = None) -> "asyncio.Future[None]":
        """
        Start (or join) the fetch for ``url``.

        The returned awaitable never raises: every caller observes the same
        completion, successful or not. Must be called from a running loop.
        """

        task = self._requests.get(url)
        if task is None:
            task = asyncio.create_task(self._run(url, validator))
            self._requests[url] = task
        # Shield so one caller cancelling its await does not abort the shared fetch.
        return asyncio.shield(task)

    async def _run(self, url: str, validator: Validator | None) -> None:
        try:
            payload = await self._fetcher.fetch(url)
            if validator is not None:
                result = validator(payload)
                if inspect.isawaitable(result):
                    await result
            value = payload.text() if self._mode == "text" else payload.base64()
            await self._store.set(url, value)
            logger.info("Cached %s in %s store", url, self._store.name)
        except Exception as exc:
            logger.warning("Error fetching %s: %s", url, exc)
        finally:
            self._requests.pop(url, None)


__all__ = [
    "FetchedPayload",
    "Fetcher",
    "HttpFetcher",
    "FetchCoalescer",
    "Validator",
    "validate_image",
]
