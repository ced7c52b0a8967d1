"""Simulated upload and download around real store operations.

Progress here is decorative. An upload's store write happens only after the
bar has reached 100 and the minimum duration has elapsed, so the bar never
claims a file is stored before it is. A download's data is already in memory
(it came with the listing), so the bar only paces the local save.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import random
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterator, Optional, Protocol

from filehub.codec import decode_data_uri, encode_data_uri
from filehub.config import PROGRESS_MAX_STEP, TICK_INTERVAL_SECONDS, UPLOAD_MIN_SECONDS
from filehub.core.exceptions import EncodingError, FileHubError, SaveError, StoreWriteError
from filehub.core.metrics import MetricsStore
from filehub.models import FileRecord
from filehub.registry import FileRegistry

logger = logging.getLogger("filehub.transfer")

MAX_TICKS = 1000


class TransferState(str, Enum):
    IDLE = "idle"
    ENCODING = "encoding"
    ANIMATING = "animating"
    COMMITTING = "committing"
    SAVING = "saving"
    COMPLETE = "complete"
    FAILED = "failed"


def progress_sequence(
    rng: Optional[random.Random] = None,
    max_step: float = PROGRESS_MAX_STEP,
    max_ticks: int = MAX_TICKS,
) -> Iterator[float]:
    """Yield one percentage per tick, non-decreasing, ending at exactly 100.

    Each tick adds a uniform draw from ``[0, max_step)``. The sequence ends
    at 100 once the running total reaches it, or after ``max_ticks`` ticks.
    """
    rng = rng or random.Random()
    progress = 0.0
    for _ in range(max_ticks - 1):
        progress += rng.random() * max_step
        if progress >= 100:
            break
        yield progress
    yield 100.0


class AsyncioClock:
    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ProgressTicker:
    """Drives :func:`progress_sequence` on a fixed tick interval."""

    def __init__(
        self,
        clock=None,
        interval: float = TICK_INTERVAL_SECONDS,
        max_step: float = PROGRESS_MAX_STEP,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.clock = clock or AsyncioClock()
        self.interval = interval
        self.max_step = max_step
        self.rng = rng or random.Random()

    async def animate(self, on_progress: Callable[[float], None], floor: float = 0.0) -> float:
        """Run the bar to 100.

        With a ``floor``, a bar still short of 100 once ``floor`` seconds have
        passed snaps to 100, and the call never returns before ``floor``.
        """
        started = self.clock.monotonic()
        for value in progress_sequence(self.rng, self.max_step):
            await self.clock.sleep(self.interval)
            if floor and self.clock.monotonic() - started >= floor:
                value = 100.0
            on_progress(value)
            if value >= 100:
                break

        remaining = floor - (self.clock.monotonic() - started)
        if remaining > 0:
            await self.clock.sleep(remaining)
        return 100.0


class SelectedFile(Protocol):
    name: str
    media_type: str

    async def read(self) -> bytes:
        ...


@dataclass
class BytesFile:
    name: str
    content: bytes
    media_type: str = ""

    @property
    def size(self) -> int:
        return len(self.content)

    async def read(self) -> bytes:
        return self.content


@dataclass
class LocalFile:
    path: Path
    media_type: str = ""

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        if not self.media_type:
            self.media_type = mimetypes.guess_type(self.path.name)[0] or ""

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    async def read(self) -> bytes:
        return self.path.read_bytes()


SaveTarget = Callable[[str, bytes, str], Awaitable[None]]


class MemorySaveTarget:
    """Keeps the last saved file in memory."""

    def __init__(self) -> None:
        self.name: Optional[str] = None
        self.content: Optional[bytes] = None
        self.media_type: Optional[str] = None

    async def __call__(self, name: str, content: bytes, media_type: str = "") -> None:
        self.name = name
        self.content = content
        self.media_type = media_type or "application/octet-stream"


class DirectorySaveTarget:
    """Writes downloads into a directory without ever reusing an existing name."""

    def __init__(self, directory) -> None:
        self.directory = Path(directory)

    def _available_path(self, name: str) -> Path:
        # record names are display names, never paths
        safe_name = Path(name.replace("\\", "/")).name
        if safe_name in {"", ".", ".."}:
            safe_name = "download"
        candidate = self.directory / safe_name
        stem, suffix = candidate.stem, candidate.suffix
        counter = 1
        while candidate.exists():
            candidate = self.directory / f"{stem} ({counter}){suffix}"
            counter += 1
        return candidate

    async def __call__(self, name: str, content: bytes, media_type: str = "") -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path = self._available_path(name)
            path.write_bytes(content)
        except OSError as exc:
            raise SaveError(f"Failed to save {name}: {exc}") from exc
        logger.info("event=download_saved name=%s path=%s", name, path)


@dataclass
class Transfer:
    """In-flight state of one upload or download."""

    kind: str
    state: TransferState = TransferState.IDLE
    progress: float = 0.0
    record: Optional[FileRecord] = None
    error: Optional[FileHubError] = None


Listener = Callable[[Transfer], None]


class TransferEngine:
    def __init__(
        self,
        registry: FileRegistry,
        ticker: Optional[ProgressTicker] = None,
        upload_floor: float = UPLOAD_MIN_SECONDS,
        metrics: Optional[MetricsStore] = None,
    ) -> None:
        self.registry = registry
        self.ticker = ticker or ProgressTicker()
        self.upload_floor = upload_floor
        self.metrics = metrics

    @staticmethod
    def _emit(transfer: Transfer, listener: Optional[Listener], **changes) -> None:
        for name, value in changes.items():
            setattr(transfer, name, value)
        if listener is not None:
            listener(transfer)

    async def upload(
        self,
        source: SelectedFile,
        uploaded_by: str,
        listener: Optional[Listener] = None,
    ) -> Transfer:
        """Encode, animate, then commit ``source`` to the catalog.

        Every attempt starts from zero progress. Failures end in ``FAILED``
        with the error attached; nothing is raised to the caller.
        """
        if not source.name:
            raise ValueError("A file must be selected before uploading")
        if not uploaded_by:
            raise ValueError("A user name must be set before uploading")

        transfer = Transfer(kind="upload")
        self._emit(transfer, listener, state=TransferState.ENCODING, progress=0.0)
        try:
            content = await source.read()
            payload = encode_data_uri(content, source.media_type)
        except (OSError, ValueError) as exc:
            logger.error("event=upload_encode_failure name=%s error=%s", source.name, str(exc))
            return self._fail(transfer, listener, EncodingError(f"Failed to read {source.name}: {exc}"))

        self._emit(transfer, listener, state=TransferState.ANIMATING)
        await self.ticker.animate(
            lambda value: self._emit(transfer, listener, progress=value),
            floor=self.upload_floor,
        )

        self._emit(transfer, listener, state=TransferState.COMMITTING, progress=100.0)
        try:
            record = await self.registry.create(
                name=source.name,
                size=len(content),
                media_type=source.media_type,
                uploaded_by=uploaded_by,
                payload=payload,
            )
        except StoreWriteError as exc:
            return self._fail(transfer, listener, exc)

        if self.metrics is not None:
            self.metrics.record_upload(record.size)
        logger.info(
            "event=upload_success file_id=%s size_bytes=%s content_type=%s",
            record.id,
            record.size,
            record.media_type or "application/octet-stream",
        )
        self._emit(transfer, listener, state=TransferState.COMPLETE, record=record)
        return transfer

    async def download(
        self,
        record: FileRecord,
        save: SaveTarget,
        listener: Optional[Listener] = None,
    ) -> Transfer:
        """Animate, then save the already-loaded ``record`` locally."""
        transfer = Transfer(kind="download", record=record)
        self._emit(transfer, listener, state=TransferState.ANIMATING, progress=0.0)
        await self.ticker.animate(lambda value: self._emit(transfer, listener, progress=value))

        self._emit(transfer, listener, state=TransferState.SAVING, progress=100.0)
        try:
            media_type, content = decode_data_uri(record.payload)
            await save(record.name, content, media_type)
        except (EncodingError, SaveError) as exc:
            return self._fail(transfer, listener, exc)
        except OSError as exc:
            return self._fail(transfer, listener, SaveError(f"Failed to save {record.name}: {exc}"))

        if self.metrics is not None:
            self.metrics.record_download()
        logger.info("event=download_success file_id=%s name=%s", record.id, record.name)
        self._emit(transfer, listener, state=TransferState.COMPLETE)
        return transfer

    def _fail(self, transfer: Transfer, listener: Optional[Listener], error: FileHubError) -> Transfer:
        if self.metrics is not None:
            if transfer.kind == "upload":
                self.metrics.record_upload_failure()
            else:
                self.metrics.record_download_failure()
        logger.warning("event=%s_failed error=%s", transfer.kind, str(error))
        self._emit(transfer, listener, state=TransferState.FAILED, error=error)
        return transfer
