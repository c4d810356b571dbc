import asyncio

import pytest

from scriptvault.errors import NotFoundError
from scriptvault.install import InstallRequest
from scriptvault.migrations import VERSION_KEY
from scriptvault.storage.backend import MemoryBackend
from scriptvault.vault import ScriptVault

LIB = "https://cdn.test/lib.js"


async def _seed(vault, make_source):
    await vault.parse_script(
        InstallRequest(
            code=make_source(
                "A", "ns", "@match https://a.test/*", "@grant GM_getValue", f"@require {LIB}"
            ),
            require={LIB: "lib"},
        )
    )
    await vault.parse_script(
        InstallRequest(code=make_source("B", "ns", "@match https://a.test/*", "@grant none"))
    )
    await vault.parse_script(
        InstallRequest(code=make_source("C", "ns", "@match https://c.test/*"))
    )
    await vault.installer.drain()


@pytest.mark.asyncio
async def test_scripts_by_url_skips_disabled_payloads(backend, make_source):
    async with ScriptVault(backend, blacklist=[]) as vault:
        await _seed(vault, make_source)
        await vault.dump_value_store({"count": 2}, uri="ns:A:")

        bundle = await vault.get_scripts_by_url("https://a.test/page")
        assert [s.meta.name for s in bundle.scripts] == ["A", "B"]
        assert bundle.require == {LIB: "lib"}
        assert bundle.values == {1: {"count": 2}}
        assert set(bundle.code) == {1, 2}

        await vault.update_script_info(1, config={"enabled": 0})
        bundle = await vault.get_scripts_by_url("https://a.test/page")

    assert [s.meta.name for s in bundle.scripts] == ["A", "B"]
    assert bundle.require == {}
    assert bundle.values == {}
    assert set(bundle.code) == {2}
    assert bundle.to_dict()["scripts"][0]["config"]["enabled"] == 0


@pytest.mark.asyncio
async def test_blacklisted_and_removed_scripts_are_excluded(backend, make_source):
    async with ScriptVault(backend, blacklist=["a.test"]) as vault:
        await _seed(vault, make_source)
        assert (await vault.get_scripts_by_url("https://a.test/")).scripts == []

        vault.blacklist = []
        await vault.update_script_info(2, config={"removed": 1})
        bundle = await vault.get_scripts_by_url("https://a.test/")

    assert [s.meta.name for s in bundle.scripts] == ["A"]


@pytest.mark.asyncio
async def test_dashboard_icons(backend, fake_fetcher, make_source, png_bytes):
    icon = "https://h.test/icon.png"
    fetcher = fake_fetcher({icon: png_bytes})
    async with ScriptVault(backend, fetcher, blacklist=[]) as vault:
        await vault.parse_script(
            InstallRequest(
                code=make_source("A", "ns", "@icon icon.png"),
                url="https://h.test/a.user.js",
            )
        )
        await vault.parse_script(
            InstallRequest(code=make_source("B", "ns", "@icon https://h.test/missing.png"))
        )
        await vault.installer.drain()
        data = await vault.get_dashboard_data()

    assert [s.meta.name for s in data["scripts"]] == ["A", "B"]
    assert list(data["cache"]) == ["icon.png"]
    assert data["cache"]["icon.png"].startswith("data:image/png;base64,")


@pytest.mark.asyncio
async def test_export_data(backend, make_source):
    async with ScriptVault(backend, blacklist=[]) as vault:
        await _seed(vault, make_source)
        await vault.dump_value_stores({1: {"x": 1}})
        await vault.update_script_info(3, config={"removed": 1})

        data = await vault.get_export_data([1, 2, 3, 99], with_values=True)
        plain = await vault.get_export_data([2])

    assert [item["script"]["meta"]["name"] for item in data["items"]] == ["A", "B"]
    assert data["items"][0]["code"].startswith("// ==UserScript==")
    assert data["values"] == {1: {"x": 1}, 2: None}
    assert "values" not in plain


@pytest.mark.asyncio
async def test_remove_script_emits_and_renumbers(backend, make_source):
    events = []
    async with ScriptVault(backend, blacklist=[]) as vault:
        await _seed(vault, make_source)
        await vault.dump_value_stores({1: {"x": 1}})
        vault.events.subscribe(events.append)

        event = await vault.remove_script(1)
        missing = await vault.remove_script(404)
        scripts = await vault.get_scripts()

    assert event.to_dict() == {"cmd": "RemoveScript", "data": 1}
    assert missing.data == 404
    assert [e.data for e in events] == [1, 404]
    assert [(s.props.id, s.props.position) for s in scripts] == [(2, 1), (3, 2)]
    stored = backend.snapshot()
    assert not {"scr:1", "code:1", "val:1"} & set(stored)
    assert stored["scr:3"]["props"]["position"] == 2


@pytest.mark.asyncio
async def test_check_remove_purges_flagged(backend, make_source):
    async with ScriptVault(backend, blacklist=[]) as vault:
        await _seed(vault, make_source)
        await vault.update_script_info(1, config={"removed": 1})
        await vault.update_script_info(3, config={"removed": 1})

        assert await vault.check_remove() == 2
        assert await vault.check_remove() == 0
        scripts = await vault.get_scripts()

    assert [(s.props.id, s.props.position) for s in scripts] == [(2, 1)]
    assert sorted(k for k in backend.snapshot() if k.startswith("scr:")) == ["scr:2"]


@pytest.mark.asyncio
async def test_update_script_info(backend, make_source):
    async with ScriptVault(backend, blacklist=[]) as vault:
        await vault.parse_script(InstallRequest(code=make_source("A", "ns", "@require lib/a.js")))
        with pytest.raises(NotFoundError):
            await vault.update_script_info(9, config={"enabled": 0})

        script = await vault.update_script_info(
            1, custom={"lastInstallURL": "https://h.test/a.user.js", "match": ["https://x.test/*"]}
        )

    assert script.custom.path_map == {"lib/a.js": "https://h.test/lib/a.js"}
    stored = backend.snapshot()["scr:1"]["custom"]
    assert stored["match"] == ["https://x.test/*"]
    assert stored["pathMap"] == {"lib/a.js": "https://h.test/lib/a.js"}


@pytest.mark.asyncio
async def test_move_and_lookup(backend, make_source):
    async with ScriptVault(backend, blacklist=[]) as vault:
        await _seed(vault, make_source)
        await vault.move_script(3, -2)

        assert [s.meta.name for s in await vault.get_scripts()] == ["C", "A", "B"]
        assert [s.props.id for s in await vault.get_script_by_ids([2, 77, 1])] == [2, 1]
        assert (await vault.get_script_code(3)).startswith("// ==UserScript==")
        assert await vault.get_value_stores_by_ids([5]) == {5: None}


@pytest.mark.asyncio
async def test_open_migrates_legacy_store_and_reloads():
    backend = MemoryBackend(
        {"scr:4": {"meta": {"name": "Legacy", "namespace": "ns"}, "props": {"position": 1}}}
    )
    async with ScriptVault(backend, blacklist=[], version="9.9") as vault:
        script = await vault.get_script(id=4)

    stored = backend.snapshot()
    assert stored[VERSION_KEY] == "9.9"
    assert stored["scr:4"]["props"]["id"] == 4
    assert stored["scr:4"]["config"] == {"enabled": 1, "shouldUpdate": 1, "removed": 0}
    assert script.meta.name == "Legacy"

    reopened = ScriptVault(backend, blacklist=[], version="9.9")
    await reopened.open()
    assert [s.props.id for s in await reopened.get_scripts()] == [4]
    await reopened.close()


@pytest.mark.asyncio
async def test_maintenance_runs_vacuum_periodically(backend):
    vault = ScriptVault(backend, blacklist=[])
    await vault.open()
    runs = []

    async def fake_vacuum():
        runs.append(1)
        if len(runs) == 1:
            raise RuntimeError("boom")

    vault.vacuum = fake_vacuum
    task = vault.start_maintenance(0.01)
    assert vault.start_maintenance(0.01) is task
    await asyncio.sleep(0.1)
    await vault.close()

    assert len(runs) >= 2
    assert task.cancelled()
