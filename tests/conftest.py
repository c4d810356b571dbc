import asyncio
import sys
import textwrap
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

# Add src/ to sys.path so tests run without an editable install
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from scriptvault.errors import FetchError
from scriptvault.storage.backend import MemoryBackend
from scriptvault.storage.fetch import FetchedPayload


class FakeFetcher:
    """Records every request; optionally blocks until ``release()``."""

    def __init__(self, responses=None, *, block=False):
        self.responses = dict(responses or {})
        self.calls = []
        self.closed = False
        self._gate = asyncio.Event() if block else None

    def release(self):
        if self._gate is not None:
            self._gate.set()

    async def fetch(self, url):
        self.calls.append(url)
        if self._gate is not None:
            await self._gate.wait()
        if url not in self.responses:
            raise FetchError(f"{url}: 404")
        content = self.responses[url]
        if isinstance(content, str):
            content = content.encode("utf-8")
        return FetchedPayload(url=url, content=content)

    async def close(self):
        self.closed = True


def _source(name="Foo", namespace="ns", *lines):
    header = ["// ==UserScript=="]
    if name is not None:
        header.append(f"// @name {name}")
    if namespace is not None:
        header.append(f"// @namespace {namespace}")
    header.extend(f"// {line}" for line in lines)
    header.append("// ==/UserScript==")
    body = textwrap.dedent(
        """
        console.log("hello");
        """
    )
    return "\n".join(header) + "\n" + body


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher


@pytest.fixture
def make_source():
    return _source


@pytest.fixture
def png_bytes():
    buf = BytesIO()
    Image.new("RGBA", (4, 4), (255, 0, 0, 255)).save(buf, format="PNG")
    return buf.getvalue()
