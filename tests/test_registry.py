import asyncio
import base64
import json

import pytest

from filehub.codec import decode_data_uri, encode_data_uri
from filehub.core.exceptions import StoreError, StoreWriteError
from filehub.core.metrics import MetricsStore
from filehub.models import FileRecord
from filehub.registry import FileRegistry, generate_file_id
from filehub.store import MemoryStore


class FlakyStore(MemoryStore):
    """MemoryStore that can be told to fail individual calls."""

    def __init__(self):
        super().__init__()
        self.failing_gets = set()
        self.fail_list = False
        self.fail_set = False
        self.fail_delete = False

    async def list(self, prefix, shared=False):
        if self.fail_list:
            raise StoreError("list unavailable")
        return await super().list(prefix, shared)

    async def get(self, key, shared=False):
        if key in self.failing_gets:
            raise StoreError(f"cannot read {key}")
        return await super().get(key, shared)

    async def set(self, key, value, shared=False):
        if self.fail_set:
            raise StoreError("write rejected")
        await super().set(key, value, shared)

    async def delete(self, key, shared=False):
        if self.fail_delete:
            raise StoreError("delete rejected")
        await super().delete(key, shared)


def _create(registry, name="notes.txt", content=b"0123456789", media_type="text/plain", user="Ava"):
    return asyncio.run(
        registry.create(
            name=name,
            size=len(content),
            media_type=media_type,
            uploaded_by=user,
            payload=encode_data_uri(content, media_type),
        )
    )


def test_create_then_list_round_trips_the_file():
    registry = FileRegistry(MemoryStore())
    _create(registry)

    records = asyncio.run(registry.list())
    assert len(records) == 1
    record = records[0]
    assert record.name == "notes.txt"
    assert record.size == 10
    assert record.media_type == "text/plain"
    assert record.uploaded_by == "Ava"
    media_type, content = decode_data_uri(record.payload)
    assert media_type == "text/plain"
    assert content == b"0123456789"


def test_records_are_stored_under_the_reserved_prefix_with_wire_field_names():
    store = MemoryStore()
    registry = FileRegistry(store)
    record = _create(registry)

    keys = asyncio.run(store.list("file:", shared=True))["keys"]
    assert keys == [record.id]
    raw = json.loads(asyncio.run(store.get(record.id, shared=True))["value"])
    assert list(raw) == ["id", "name", "size", "type", "uploadedAt", "uploadedBy", "data"]
    assert raw["data"] == "data:text/plain;base64," + base64.b64encode(b"0123456789").decode()
    # nothing leaks into the private scope
    assert asyncio.run(store.list("file:", shared=False))["keys"] == []


def test_list_omits_records_whose_fetch_fails():
    store = FlakyStore()
    metrics = MetricsStore()
    registry = FileRegistry(store, metrics=metrics)
    created = [_create(registry, name=f"f{i}.txt") for i in range(3)]
    store.failing_gets.add(created[1].id)

    listing = asyncio.run(registry.scan())
    assert [r.id for r in listing.records] == [created[0].id, created[2].id]
    assert [o.key for o in listing.failures] == [created[1].id]
    assert listing.scan_error is None
    assert metrics.snapshot()["fetch_failures"] == 1

    assert len(asyncio.run(registry.list())) == 2


def test_list_returns_empty_when_the_scan_fails():
    store = FlakyStore()
    metrics = MetricsStore()
    registry = FileRegistry(store, metrics=metrics)
    _create(registry)
    store.fail_list = True

    listing = asyncio.run(registry.scan())
    assert listing.records == []
    assert listing.scan_error is not None
    assert asyncio.run(registry.list()) == []
    assert metrics.snapshot()["scan_failures"] == 2
    assert metrics.snapshot()["fetch_failures"] == 0


def test_list_skips_malformed_and_foreign_values():
    store = MemoryStore()
    registry = FileRegistry(store)
    good = _create(registry)
    asyncio.run(store.set("file:broken", "{not json", shared=True))
    asyncio.run(store.set("settings:theme", "dark", shared=True))

    listing = asyncio.run(registry.scan())
    assert [r.id for r in listing.records] == [good.id]
    assert len(listing.failures) == 1


def test_list_is_ordered_by_creation():
    registry = FileRegistry(MemoryStore())
    first = _create(registry, name="a.txt")
    second = _create(registry, name="b.txt")
    ids = [r.id for r in asyncio.run(registry.list())]
    assert ids == sorted([first.id, second.id])


def test_concurrent_listings_do_not_interfere():
    store = FlakyStore()
    registry = FileRegistry(store)
    created = [_create(registry, name=f"f{i}.txt") for i in range(5)]
    store.failing_gets.add(created[0].id)

    async def _both():
        return await asyncio.gather(registry.list(), registry.list())

    left, right = asyncio.run(_both())
    assert [r.id for r in left] == [r.id for r in right]
    assert len(left) == 4


def test_delete_is_idempotent():
    registry = FileRegistry(MemoryStore())
    record = _create(registry)

    asyncio.run(registry.delete(record.id))
    assert record.id not in [r.id for r in asyncio.run(registry.list())]
    asyncio.run(registry.delete(record.id))


def test_deleting_an_unknown_id_leaves_the_listing_unchanged():
    registry = FileRegistry(MemoryStore())
    record = _create(registry)
    asyncio.run(registry.delete("file:0_missing"))
    assert [r.id for r in asyncio.run(registry.list())] == [record.id]


def test_delete_never_touches_keys_outside_the_prefix():
    store = MemoryStore()
    registry = FileRegistry(store)
    asyncio.run(store.set("settings:theme", "dark", shared=True))
    asyncio.run(registry.delete("settings:theme"))
    assert asyncio.run(store.get("settings:theme", shared=True)) == {"value": "dark"}


def test_failed_write_raises_and_leaves_no_record():
    store = FlakyStore()
    store.fail_set = True
    registry = FileRegistry(store)

    with pytest.raises(StoreWriteError):
        _create(registry)
    assert asyncio.run(registry.list()) == []


def test_failed_delete_raises_store_write_error():
    store = FlakyStore()
    registry = FileRegistry(store)
    record = _create(registry)
    store.fail_delete = True

    with pytest.raises(StoreWriteError):
        asyncio.run(registry.delete(record.id))
    assert len(asyncio.run(registry.list())) == 1


def test_create_never_overwrites_an_existing_key(monkeypatch):
    ids = iter(["file:1_aaaa", "file:1_aaaa", "file:2_bbbb"])
    monkeypatch.setattr("filehub.registry.generate_file_id", lambda prefix, token_length: next(ids))
    registry = FileRegistry(MemoryStore())

    first = _create(registry, name="first.txt")
    second = _create(registry, name="second.txt")
    assert first.id == "file:1_aaaa"
    assert second.id == "file:2_bbbb"
    names = {r.id: r.name for r in asyncio.run(registry.list())}
    assert names == {"file:1_aaaa": "first.txt", "file:2_bbbb": "second.txt"}


def test_create_gives_up_when_no_free_id_is_found(monkeypatch):
    monkeypatch.setattr("filehub.registry.generate_file_id", lambda prefix, token_length: "file:1_same")
    registry = FileRegistry(MemoryStore())
    _create(registry)
    with pytest.raises(StoreWriteError):
        _create(registry)


def test_create_rejects_empty_names():
    registry = FileRegistry(MemoryStore())
    with pytest.raises(ValueError):
        _create(registry, name="")


def test_generate_file_id_shape():
    file_id = generate_file_id("file:", 9, now=1700000000.123)
    prefix, token = file_id.split("_")
    assert prefix == "file:1700000000123"
    assert len(token) == 9
    assert token.isalnum() and token.lower() == token


def test_get_returns_record_or_none():
    registry = FileRegistry(MemoryStore())
    record = _create(registry)
    assert asyncio.run(registry.get(record.id)) == record
    assert asyncio.run(registry.get("file:0_missing")) is None
    assert asyncio.run(registry.get("other:1")) is None


def test_record_json_uses_wire_names():
    record = FileRecord(
        id="file:1_abc",
        name="a.bin",
        size=0,
        media_type="",
        created_at="01/02/2026, 03:04:05 PM",
        uploaded_by="Ava",
        payload="data:application/octet-stream;base64,",
    )
    assert FileRecord.from_json(record.to_json()) == record
    assert json.loads(record.to_json())["uploadedAt"] == "01/02/2026, 03:04:05 PM"
