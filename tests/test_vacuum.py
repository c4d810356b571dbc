import pytest

from scriptvault.errors import ConsistencyWarning
from scriptvault.install import InstallRequest
from scriptvault.vault import ScriptVault

LIB = "https://cdn.test/lib.js"
CSS = "https://cdn.test/style.css"


async def _install(vault, make_source):
    source = make_source("Foo", "ns", f"@require {LIB}", f"@resource css {CSS}")
    await vault.parse_script(
        InstallRequest(code=source, require={LIB: "lib"}, resources={CSS: "Y3Nz"})
    )
    await vault.installer.drain()


@pytest.mark.asyncio
async def test_vacuum_removes_orphans_and_keeps_referenced(backend, make_source):
    async with ScriptVault(backend, blacklist=[]) as vault:
        await _install(vault, make_source)
        await vault.dump_value_store({"k": 1}, id=1)
        await backend.set(
            {
                "req:https://old.test/a.js": "old",
                "cac:https://old.test/a.png": "AAAA",
                "val:42": {},
                "code:42": "orphan code",
            }
        )

        report = await vault.vacuum()
        second = await vault.vacuum()

    assert report.removed == {
        "value": ["42"],
        "cache": ["https://old.test/a.png"],
        "require": ["https://old.test/a.js"],
        "code": ["42"],
    }
    assert report.removed_count == 4
    assert report.refetched_count == 0
    assert second.removed_count == 0

    stored = backend.snapshot()
    assert stored[f"req:{LIB}"] == "lib"
    assert stored[f"cac:{CSS}"] == "Y3Nz"
    assert stored["val:1"] == {"k": 1}
    assert stored["code:1"]


@pytest.mark.asyncio
async def test_vacuum_refetches_missing_dependencies(backend, fake_fetcher, make_source):
    fetcher = fake_fetcher({LIB: "fresh lib", CSS: "css"})
    async with ScriptVault(backend, fetcher, blacklist=[]) as vault:
        await _install(vault, make_source)
        await backend.remove([f"req:{LIB}", f"cac:{CSS}"])

        report = await vault.vacuum()

    assert report.refetched == {"cache": [CSS], "require": [LIB]}
    assert fetcher.calls == [CSS, LIB]
    stored = backend.snapshot()
    assert stored[f"req:{LIB}"] == "fresh lib"
    assert stored[f"cac:{CSS}"] == "Y3Nz"  # base64 of "css"


@pytest.mark.asyncio
async def test_removed_scripts_release_dependencies(backend, make_source):
    async with ScriptVault(backend, blacklist=[]) as vault:
        await _install(vault, make_source)
        await vault.update_script_info(1, config={"removed": 1})

        report = await vault.vacuum()

    assert report.removed == {"cache": [CSS], "require": [LIB]}
    # soft-removed scripts stay restorable
    assert "code:1" in backend.snapshot()


@pytest.mark.asyncio
async def test_missing_code_is_reported(backend, make_source):
    async with ScriptVault(backend, blacklist=[]) as vault:
        await _install(vault, make_source)
        await backend.remove(["code:1"])

        with pytest.warns(ConsistencyWarning):
            report = await vault.vacuum()

    assert report.missing_code == ["1"]
    assert report.refetched_count == 0
