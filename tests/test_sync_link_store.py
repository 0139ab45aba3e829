import asyncio
import gc
import json

import pytest
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.db import init_db
from app.mapping.sync_link_db import DbSyncLinkStore
from app.mapping.sync_link_store import JsonSyncLinkStore, MemorySyncLinkStore, SyncLinkStore
from app.models.sync_link import InvalidTransition, SyncLink, SyncStatus, can_transition, new_link


def _synced(pid="42", acc="main", **color_map):
    return new_link(pid, acc).transition(SyncStatus.SYNCED, color_map=color_map or {"Black": "gid://shopify/Product/1"})


def test_transitions():
    assert can_transition(SyncStatus.UNSYNCED, SyncStatus.SYNCED)
    assert can_transition(SyncStatus.PENDING, SyncStatus.FAILED)
    assert not can_transition(SyncStatus.UNSYNCED, SyncStatus.FAILED)
    with pytest.raises(InvalidTransition):
        new_link(1, "main").transition(SyncStatus.FAILED)


def test_synced_requires_color_map():
    with pytest.raises(ValidationError):
        SyncLink(product_id="1", account_id="main", status=SyncStatus.SYNCED)
    with pytest.raises(ValidationError):
        new_link(1, "main").transition(SyncStatus.SYNCED)


def test_transition_to_synced_stamps_time():
    link = _synced()
    assert link.synced_at is not None
    assert link.is_linked
    assert link.product_id == "42"


def test_record_round_trip():
    link = _synced()
    assert SyncLink.from_record(link.to_record()) == link


@pytest.mark.parametrize("make_store", [
    lambda tmp: MemorySyncLinkStore(),
    lambda tmp: JsonSyncLinkStore(tmp / "links.json"),
])
def test_store_get_put_clear(tmp_path, make_store):
    store = make_store(tmp_path)

    async def run():
        assert await store.get(42, "main") is None
        link = _synced()
        await store.put(42, "main", link)
        got = await store.get("42", "main")
        assert got == link
        assert [l.product_id for l in await store.all()] == ["42"]
        assert await store.clear(42, "main") is True
        assert await store.clear(42, "main") is False
        assert await store.get(42, "main") is None

    asyncio.run(run())


def test_put_under_wrong_key_is_rejected():
    store = MemorySyncLinkStore()
    with pytest.raises(ValueError):
        asyncio.run(store.put(7, "main", _synced(pid="42")))


def test_invalid_persisted_link_reads_as_missing(tmp_path):
    path = tmp_path / "links.json"
    path.write_text(json.dumps({
        "version": 1,
        "links": {
            "42:main": {"version": 1, "product_id": "42", "account_id": "main", "status": "synced", "color_map": {}},
            "43:main": {"version": 99, "product_id": "43", "account_id": "main", "status": "unsynced"},
            "44:main": {"version": 1, "product_id": "44", "account_id": "main", "status": "pending", "color_map": {}},
        },
    }))
    store = JsonSyncLinkStore(path)

    async def run():
        assert await store.get(42, "main") is None
        assert await store.get(43, "main") is None
        assert (await store.get(44, "main")).status == SyncStatus.PENDING
        assert [l.product_id for l in await store.all()] == ["44"]

    asyncio.run(run())


def test_corrupt_file_reads_as_empty(tmp_path):
    path = tmp_path / "links.json"
    path.write_text("{not json")
    store = JsonSyncLinkStore(path)
    assert asyncio.run(store.get(1, "main")) is None


def test_lock_is_per_key():
    store = MemorySyncLinkStore()
    assert store.lock(1, "main") is store.lock("1", "main")
    assert store.lock(1, "main") is not store.lock(1, "backup")


def test_idle_locks_are_dropped():
    store = MemorySyncLinkStore()

    async def run():
        async with store.lock(1, "main"):
            assert "1:main" in store._locks
        assert store.lock(1, "main") is not None

    asyncio.run(run())
    gc.collect()
    assert "1:main" not in store._locks


def test_base_store_is_abstract():
    with pytest.raises(TypeError):
        SyncLinkStore()

    class Partial(SyncLinkStore):
        async def get(self, product_id, account_id):
            return None

    with pytest.raises(TypeError):
        Partial()


def test_db_store(tmp_path):
    async def run():
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}")
        await init_db(engine)
        store = DbSyncLinkStore(async_sessionmaker(engine, expire_on_commit=False))

        link = _synced()
        await store.put(42, "main", link)
        got = await store.get(42, "main")
        assert got.color_map == link.color_map
        assert got.status == SyncStatus.SYNCED

        moved = got.transition(SyncStatus.SYNCED, color_map={"Black": "gid://shopify/Product/1", "White": "gid://shopify/Product/2"})
        await store.put(42, "main", moved)
        assert set((await store.get(42, "main")).color_map) == {"Black", "White"}
        assert len(await store.all()) == 1

        assert await store.clear(42, "main") is True
        assert await store.get(42, "main") is None
        await engine.dispose()

    asyncio.run(run())
