"""Adapters over the shared key-value store.

Every adapter offers the same four async calls: ``list`` (prefix scan),
``get``, ``set`` and ``delete``. ``shared=True`` addresses the scope visible
to every user; ``shared=False`` addresses the adapter owner's private scope.
Backend failures surface as :class:`StoreError`.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import redis
import redis.asyncio
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from filehub.core.exceptions import StoreError
from filehub.models import StoreEntry

logger = logging.getLogger("filehub.store")

SHARED_SCOPE = "shared"


class KeyValueStore(Protocol):
    async def list(self, prefix: str, shared: bool = False) -> dict:
        """Return ``{"keys": [...]}`` for every key starting with ``prefix``."""
        ...

    async def get(self, key: str, shared: bool = False) -> Optional[dict]:
        """Return ``{"value": str}`` or ``None`` when the key is absent."""
        ...

    async def set(self, key: str, value: str, shared: bool = False) -> None:
        ...

    async def delete(self, key: str, shared: bool = False) -> None:
        """Remove ``key``. Absent keys are not an error."""
        ...


class MemoryStore:
    """Process-local store, handy for development and tests."""

    def __init__(self, owner: str = "local") -> None:
        self.owner = owner
        self._entries: dict[tuple[str, str], str] = {}

    def _scope(self, shared: bool) -> str:
        return SHARED_SCOPE if shared else f"user:{self.owner}"

    async def list(self, prefix: str, shared: bool = False) -> dict:
        scope = self._scope(shared)
        keys = [key for (s, key) in self._entries if s == scope and key.startswith(prefix)]
        return {"keys": keys}

    async def get(self, key: str, shared: bool = False) -> Optional[dict]:
        value = self._entries.get((self._scope(shared), key))
        if value is None:
            return None
        return {"value": value}

    async def set(self, key: str, value: str, shared: bool = False) -> None:
        self._entries[(self._scope(shared), key)] = value

    async def delete(self, key: str, shared: bool = False) -> None:
        self._entries.pop((self._scope(shared), key), None)


class SQLStore:
    """Store backed by the ``StoreEntry`` table on the configured database."""

    def __init__(self, engine, owner: str = "local") -> None:
        self.engine = engine
        self.owner = owner

    def _scope(self, shared: bool) -> str:
        return SHARED_SCOPE if shared else f"user:{self.owner}"

    async def list(self, prefix: str, shared: bool = False) -> dict:
        scope = self._scope(shared)
        try:
            with Session(self.engine) as session:
                stmt = select(StoreEntry.key).where(
                    StoreEntry.scope == scope,
                    StoreEntry.key.startswith(prefix, autoescape=True),
                )
                keys = list(session.exec(stmt).all())
        except SQLAlchemyError as exc:
            logger.error("event=store_list_failure prefix=%s error=%s", prefix, str(exc))
            raise StoreError(f"Failed to list keys under {prefix!r}") from exc
        return {"keys": keys}

    async def get(self, key: str, shared: bool = False) -> Optional[dict]:
        try:
            with Session(self.engine) as session:
                entry = session.get(StoreEntry, (self._scope(shared), key))
                value = entry.value if entry else None
        except SQLAlchemyError as exc:
            logger.error("event=store_get_failure key=%s error=%s", key, str(exc))
            raise StoreError(f"Failed to read {key!r}") from exc
        if value is None:
            return None
        return {"value": value}

    async def set(self, key: str, value: str, shared: bool = False) -> None:
        try:
            with Session(self.engine) as session:
                session.merge(StoreEntry(scope=self._scope(shared), key=key, value=value))
                session.commit()
        except SQLAlchemyError as exc:
            logger.error("event=store_set_failure key=%s error=%s", key, str(exc))
            raise StoreError(f"Failed to write {key!r}") from exc

    async def delete(self, key: str, shared: bool = False) -> None:
        try:
            with Session(self.engine) as session:
                entry = session.get(StoreEntry, (self._scope(shared), key))
                if entry is not None:
                    session.delete(entry)
                    session.commit()
        except SQLAlchemyError as exc:
            logger.error("event=store_delete_failure key=%s error=%s", key, str(exc))
            raise StoreError(f"Failed to delete {key!r}") from exc


class RedisStore:
    """Store backed by Redis; prefix listing uses ``SCAN`` with a match pattern."""

    def __init__(self, client, owner: str = "local", namespace: str = "filehub") -> None:
        self._client = client
        self.owner = owner
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, owner: str = "local") -> "RedisStore":
        return cls(redis.asyncio.from_url(url, decode_responses=True), owner=owner)

    def _base(self, shared: bool) -> str:
        scope = SHARED_SCOPE if shared else f"user:{self.owner}"
        return f"{self.namespace}:{scope}:"

    @staticmethod
    def _escape(pattern: str) -> str:
        for char in "\\*?[]":
            pattern = pattern.replace(char, "\\" + char)
        return pattern

    async def list(self, prefix: str, shared: bool = False) -> dict:
        base = self._base(shared)
        match = self._escape(base + prefix) + "*"
        try:
            keys = [key[len(base):] async for key in self._client.scan_iter(match=match)]
        except redis.RedisError as exc:
            logger.error("event=store_list_failure prefix=%s error=%s", prefix, str(exc))
            raise StoreError(f"Failed to list keys under {prefix!r}") from exc
        return {"keys": keys}

    async def get(self, key: str, shared: bool = False) -> Optional[dict]:
        try:
            value = await self._client.get(self._base(shared) + key)
        except redis.RedisError as exc:
            logger.error("event=store_get_failure key=%s error=%s", key, str(exc))
            raise StoreError(f"Failed to read {key!r}") from exc
        if value is None:
            return None
        return {"value": value}

    async def set(self, key: str, value: str, shared: bool = False) -> None:
        try:
            await self._client.set(self._base(shared) + key, value)
        except redis.RedisError as exc:
            logger.error("event=store_set_failure key=%s error=%s", key, str(exc))
            raise StoreError(f"Failed to write {key!r}") from exc

    async def delete(self, key: str, shared: bool = False) -> None:
        try:
            await self._client.delete(self._base(shared) + key)
        except redis.RedisError as exc:
            logger.error("event=store_delete_failure key=%s error=%s", key, str(exc))
            raise StoreError(f"Failed to delete {key!r}") from exc


def build_store(backend: str, owner: str = "local") -> KeyValueStore:
    """Create the adapter named by ``STORE_BACKEND``."""
    if backend == "memory":
        return MemoryStore(owner=owner)
    if backend == "redis":
        from filehub.config import REDIS_URL

        if not REDIS_URL:
            raise ValueError("REDIS_URL must be set when STORE_BACKEND=redis")
        return RedisStore.from_url(REDIS_URL, owner=owner)
    if backend == "sql":
        from filehub.db import engine, init_db

        init_db()
        return SQLStore(engine, owner=owner)
    raise ValueError(f"Unknown store backend: {backend}")
