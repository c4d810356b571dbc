import pytest

from scriptvault.errors import NamespaceConflictError, NotFoundError
from scriptvault.script.index import ScriptIndex
from scriptvault.script.meta import new_script
from scriptvault.script.model import ScriptMeta, ScriptRecord
from scriptvault.storage.keyed import SCRIPT, KeyedStore


def _record(name, id=None):
    record, _ = new_script()
    record.meta = ScriptMeta(name=name, namespace="ns")
    record.props.id = id
    return record


def _index(backend):
    return ScriptIndex(KeyedStore(backend, SCRIPT))


def _order(index):
    return [(s.meta.name, s.props.position) for s in index.scripts]


def test_insert_assigns_ids_and_dense_positions(backend):
    index = _index(backend)
    for name in "abc":
        changed = index.insert_or_replace(_record(name))
        assert changed[0].meta.name == name

    assert [s.props.id for s in index.scripts] == [1, 2, 3]
    assert _order(index) == [("a", 1), ("b", 2), ("c", 3)]
    assert index.next_id == 3 and index.next_position == 3
    assert index.find(uri="ns:b:").props.id == 2
    assert index.find(meta=ScriptMeta(name="c", namespace="ns")).props.id == 3


def test_explicit_position_is_clamped(backend):
    index = _index(backend)
    for name in "abc":
        index.insert_or_replace(_record(name))

    changed = index.insert_or_replace(_record("d"), position=1)
    assert _order(index) == [("d", 1), ("a", 2), ("b", 3), ("c", 4)]
    assert {s.meta.name for s in changed} == {"a", "b", "c", "d"}

    index.insert_or_replace(_record("e"), position=99)
    assert index.scripts[-1].meta.name == "e"


def test_conflict_leaves_index_untouched(backend):
    index = _index(backend)
    index.insert_or_replace(_record("a"))
    index.insert_or_replace(_record("b"))
    before = _order(index)

    clash = _record("a", id=2)
    with pytest.raises(NamespaceConflictError):
        index.insert_or_replace(clash)

    assert _order(index) == before
    assert index.find(id=2).meta.name == "b"
    assert index.next_id == 2


def test_replace_keeps_slot_and_merges_props(backend):
    index = _index(backend)
    index.insert_or_replace(_record("a"))
    index.insert_or_replace(_record("b"))

    update = index.find(id=1).copy()
    update.props.position = None
    update.meta.version = "2"
    index.insert_or_replace(update)

    assert index.scripts[0] is update
    assert update.props.position == 1
    assert index.find(id=1).meta.version == "2"
    assert len(index) == 2


@pytest.mark.asyncio
async def test_move_round_trip(backend):
    index = _index(backend)
    for name in "abcd":
        index.insert_or_replace(_record(name))

    await index.move(1, 2)
    assert [n for n, _ in _order(index)] == ["b", "c", "a", "d"]
    await index.move(1, -2)
    assert [n for n, _ in _order(index)] == ["a", "b", "c", "d"]

    await index.move(4, -10)
    assert _order(index)[0] == ("d", 1)
    assert backend.snapshot()["scr:4"]["props"]["position"] == 1

    with pytest.raises(NotFoundError):
        await index.move(99, 1)


@pytest.mark.asyncio
async def test_load_sorts_and_backfills(backend):
    legacy = {"props": {"id": 5, "position": 9}, "meta": {"name": "old", "namespace": "ns"}}
    fresh = _record("new", id=2)
    fresh.props.position = 3
    await backend.set(
        {
            "scr:5": legacy,
            "scr:2": fresh.to_dict(),
            "scr:bad": {"props": {}},
            "code:5": "ignored",
            "version": "0.3.0",
        }
    )
    index = _index(backend)

    changed = await index.load(await backend.get())

    assert [s.props.id for s in index.scripts] == [2, 5]
    assert _order(index) == [("new", 1), ("old", 2)]
    assert index.next_id == 5
    assert index.next_position == 2
    assert changed == 2
    stored = backend.snapshot()["scr:5"]
    assert stored["props"]["uri"] == "ns:old:"
    assert stored["custom"]["origInclude"] is True


@pytest.mark.asyncio
async def test_remove_flagged(backend):
    index = _index(backend)
    for name in "abc":
        index.insert_or_replace(_record(name))
    index.find(id=2).config.removed = 1

    removed = index.remove_flagged()
    assert [s.props.id for s in removed] == [2]
    assert index.find(id=2) is None
    assert index.remove(1).props.id == 1
    assert index.remove(1) is None
    await index.normalize_position()
    assert _order(index) == [("c", 1)]


@pytest.mark.asyncio
async def test_unknown_props_and_config_keys_survive_rewrite(backend):
    raw = {
        "props": {"id": 1, "position": 4, "syncedAt": 99},
        "config": {"enabled": 1, "notifyUpdates": 0},
        "meta": {"name": "a", "namespace": "ns"},
    }
    await backend.set({"scr:1": raw})
    index = _index(backend)

    await index.load(await backend.get())
    index.find(id=1).config = index.find(id=1).config.merged({"enabled": 0})
    await index.dump([index.find(id=1)])

    stored = backend.snapshot()["scr:1"]
    assert stored["props"]["syncedAt"] == 99
    assert stored["props"]["position"] == 1
    assert stored["config"] == {"enabled": 0, "shouldUpdate": 1, "removed": 0, "notifyUpdates": 0}
