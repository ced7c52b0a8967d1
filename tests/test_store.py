import asyncio
import fnmatch

import pytest
import redis
from sqlmodel import SQLModel, create_engine

from filehub.core.exceptions import StoreError
from filehub.store import MemoryStore, RedisStore, SQLStore, build_store


class FakeRedis:
    """Just enough of the redis asyncio client for RedisStore."""

    def __init__(self, fail=False):
        self.data = {}
        self.fail = fail

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("connection refused")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value):
        self._check()
        self.data[key] = value

    async def delete(self, key):
        self._check()
        self.data.pop(key, None)

    async def scan_iter(self, match):
        self._check()
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key


@pytest.fixture
def sql_store(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'kv.db'}")
    SQLModel.metadata.create_all(engine)
    return SQLStore(engine, owner="ava")


@pytest.fixture(params=["memory", "sql", "redis"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore(owner="ava")
    if request.param == "redis":
        return RedisStore(FakeRedis(), owner="ava")
    return request.getfixturevalue("sql_store")


def test_set_get_list_delete(store):
    asyncio.run(store.set("file:1_a", "one", shared=True))
    asyncio.run(store.set("file:2_b", "two", shared=True))
    asyncio.run(store.set("note:1", "other", shared=True))

    keys = asyncio.run(store.list("file:", shared=True))["keys"]
    assert sorted(keys) == ["file:1_a", "file:2_b"]
    assert asyncio.run(store.get("file:1_a", shared=True)) == {"value": "one"}

    asyncio.run(store.delete("file:1_a", shared=True))
    assert asyncio.run(store.get("file:1_a", shared=True)) is None
    assert asyncio.run(store.list("file:", shared=True))["keys"] == ["file:2_b"]


def test_missing_keys(store):
    assert asyncio.run(store.get("file:nope", shared=True)) is None
    asyncio.run(store.delete("file:nope", shared=True))
    assert asyncio.run(store.list("file:", shared=True)) == {"keys": []}


def test_shared_and_private_scopes_are_separate(store):
    asyncio.run(store.set("file:1_a", "private"))
    asyncio.run(store.set("file:1_a", "shared", shared=True))

    assert asyncio.run(store.get("file:1_a")) == {"value": "private"}
    assert asyncio.run(store.get("file:1_a", shared=True)) == {"value": "shared"}
    asyncio.run(store.delete("file:1_a"))
    assert asyncio.run(store.get("file:1_a", shared=True)) == {"value": "shared"}


def test_sql_prefix_is_matched_literally(sql_store):
    asyncio.run(sql_store.set("file_1", "literal", shared=True))
    asyncio.run(sql_store.set("fileX1", "wildcard", shared=True))
    assert asyncio.run(sql_store.list("file_", shared=True))["keys"] == ["file_1"]


def test_private_scope_is_per_owner(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'kv.db'}")
    SQLModel.metadata.create_all(engine)
    ava = SQLStore(engine, owner="ava")
    ben = SQLStore(engine, owner="ben")

    asyncio.run(ava.set("draft", "mine"))
    assert asyncio.run(ben.get("draft")) is None
    asyncio.run(ava.set("file:1_a", "everyone", shared=True))
    assert asyncio.run(ben.get("file:1_a", shared=True)) == {"value": "everyone"}


def test_redis_failures_become_store_errors():
    store = RedisStore(FakeRedis(fail=True))
    with pytest.raises(StoreError):
        asyncio.run(store.get("file:1_a", shared=True))
    with pytest.raises(StoreError):
        asyncio.run(store.set("file:1_a", "x", shared=True))
    with pytest.raises(StoreError):
        asyncio.run(store.list("file:", shared=True))


def test_redis_keys_are_namespaced():
    client = FakeRedis()
    store = RedisStore(client, owner="ava")
    asyncio.run(store.set("file:1_a", "x", shared=True))
    asyncio.run(store.set("draft", "y"))
    assert sorted(client.data) == ["filehub:shared:file:1_a", "filehub:user:ava:draft"]


def test_build_store_rejects_unknown_backends():
    assert isinstance(build_store("memory"), MemoryStore)
    with pytest.raises(ValueError):
        build_store("carrier-pigeon")
