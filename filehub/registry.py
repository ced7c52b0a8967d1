"""The shared file catalog.

Maps the versionless key-value store onto an enumerable set of
:class:`FileRecord` values. Records are write-once: the registry only creates
and deletes, and it never overwrites a key that already holds a value.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError

from filehub.config import FILE_ID_TOKEN_LENGTH, FILE_PREFIX, TIMESTAMP_FORMAT
from filehub.core.exceptions import EncodingError, StoreReadError, StoreWriteError
from filehub.core.metrics import MetricsStore
from filehub.models import FileRecord
from filehub.store import KeyValueStore

logger = logging.getLogger("filehub.registry")

_TOKEN_ALPHABET = string.ascii_lowercase + string.digits
_MAX_ID_ATTEMPTS = 5


def generate_file_id(
    prefix: str = FILE_PREFIX,
    token_length: int = FILE_ID_TOKEN_LENGTH,
    now: Optional[float] = None,
) -> str:
    """``<prefix><epoch ms>_<base-36 token>``; sorts by creation time."""
    millis = int((time.time() if now is None else now) * 1000)
    token = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(token_length))
    return f"{prefix}{millis}_{token}"


@dataclass
class FetchOutcome:
    """Result of loading one key during a listing."""

    key: str
    record: Optional[FileRecord] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.record is not None


@dataclass
class Listing:
    records: list[FileRecord] = field(default_factory=list)
    outcomes: list[FetchOutcome] = field(default_factory=list)
    scan_error: Optional[StoreReadError] = None

    @property
    def failures(self) -> list[FetchOutcome]:
        return [outcome for outcome in self.outcomes if outcome.error is not None]


class FileRegistry:
    def __init__(
        self,
        store: KeyValueStore,
        metrics: Optional[MetricsStore] = None,
        prefix: str = FILE_PREFIX,
        token_length: int = FILE_ID_TOKEN_LENGTH,
        timestamp_format: str = TIMESTAMP_FORMAT,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.metrics = metrics
        self.prefix = prefix
        self.token_length = token_length
        self.timestamp_format = timestamp_format
        self._now = now

    async def scan(self) -> Listing:
        """Enumerate the catalog, keeping one outcome per key.

        A failed prefix scan yields an empty listing with ``scan_error`` set;
        a failed fetch drops only that key's record.
        """
        try:
            result = await self.store.list(self.prefix, shared=True)
        except Exception as exc:
            logger.error("event=registry_scan_failure prefix=%s error=%s", self.prefix, str(exc))
            if self.metrics is not None:
                self.metrics.record_scan_failure()
            return Listing(scan_error=StoreReadError(f"Failed to list files: {exc}"))

        keys = list((result or {}).get("keys") or [])
        outcomes = await asyncio.gather(*(self._fetch(key) for key in keys))
        records = sorted((o.record for o in outcomes if o.ok), key=lambda r: r.id)
        listing = Listing(records=records, outcomes=list(outcomes))

        failures = listing.failures
        if failures:
            if self.metrics is not None:
                self.metrics.record_fetch_failures(len(failures))
            logger.warning(
                "event=registry_partial_listing keys=%d loaded=%d failed=%d",
                len(keys),
                len(records),
                len(failures),
            )
        return listing

    async def list(self) -> list[FileRecord]:
        listing = await self.scan()
        return listing.records

    async def _fetch(self, key: str) -> FetchOutcome:
        try:
            result = await self.store.get(key, shared=True)
        except Exception as exc:
            logger.error("event=registry_fetch_failure key=%s error=%s", key, str(exc))
            return FetchOutcome(key=key, error=StoreReadError(f"Failed to load {key}: {exc}"))
        if not result or not result.get("value"):
            return FetchOutcome(key=key)
        try:
            record = FileRecord.from_json(result["value"])
        except ValidationError as exc:
            logger.error("event=registry_decode_failure key=%s error=%s", key, str(exc))
            return FetchOutcome(key=key, error=EncodingError(f"Malformed record under {key}"))
        if record.id != key:
            logger.error("event=registry_decode_failure key=%s record_id=%s", key, record.id)
            return FetchOutcome(key=key, error=EncodingError(f"Record id does not match {key}"))
        return FetchOutcome(key=key, record=record)

    async def get(self, file_id: str) -> Optional[FileRecord]:
        if not file_id.startswith(self.prefix):
            return None
        try:
            result = await self.store.get(file_id, shared=True)
        except Exception as exc:
            logger.error("event=registry_fetch_failure key=%s error=%s", file_id, str(exc))
            raise StoreReadError(f"Failed to load {file_id}") from exc
        if not result or not result.get("value"):
            return None
        try:
            return FileRecord.from_json(result["value"])
        except ValidationError as exc:
            raise EncodingError(f"Malformed record under {file_id}") from exc

    async def _reserve_id(self) -> str:
        for _ in range(_MAX_ID_ATTEMPTS):
            file_id = generate_file_id(self.prefix, self.token_length)
            try:
                existing = await self.store.get(file_id, shared=True)
            except Exception as exc:
                raise StoreWriteError(f"Failed to check id {file_id}: {exc}") from exc
            if not existing:
                return file_id
            logger.warning("event=registry_id_collision file_id=%s", file_id)
        raise StoreWriteError("Unable to allocate a unique file id")

    async def create(
        self,
        name: str,
        size: int,
        media_type: str,
        uploaded_by: str,
        payload: str,
    ) -> FileRecord:
        if not name:
            raise ValueError("File name must not be empty")
        if size < 0:
            raise ValueError("File size must not be negative")

        file_id = await self._reserve_id()
        record = FileRecord(
            id=file_id,
            name=name,
            size=size,
            media_type=media_type or "",
            created_at=self._now().strftime(self.timestamp_format),
            uploaded_by=uploaded_by,
            payload=payload,
        )
        try:
            await self.store.set(file_id, record.to_json(), shared=True)
        except Exception as exc:
            logger.error("event=registry_create_failure file_id=%s error=%s", file_id, str(exc))
            raise StoreWriteError(f"Failed to upload {name}") from exc

        logger.info(
            "event=registry_create file_id=%s name=%s size_bytes=%s uploaded_by=%s",
            file_id,
            name,
            size,
            uploaded_by,
        )
        return record

    async def delete(self, file_id: str) -> None:
        """Remove a record. Deleting an unknown id succeeds."""
        if not file_id.startswith(self.prefix):
            logger.info("event=registry_delete_skipped file_id=%s reason=foreign_key", file_id)
            return
        try:
            await self.store.delete(file_id, shared=True)
        except Exception as exc:
            logger.error("event=registry_delete_failure file_id=%s error=%s", file_id, str(exc))
            raise StoreWriteError(f"Failed to delete {file_id}") from exc
        if self.metrics is not None:
            self.metrics.record_deletions(1)
        logger.info("event=registry_delete file_id=%s", file_id)
