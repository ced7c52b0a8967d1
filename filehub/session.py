from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional, Tuple

from filehub.codec import human_size
from filehub.core.exceptions import StoreWriteError
from filehub.models import FileRecord
from filehub.registry import FileRegistry
from filehub.transfer import MemorySaveTarget, SaveTarget, SelectedFile, Transfer, TransferEngine, TransferState

logger = logging.getLogger("filehub.session")

UPLOAD_FAILED_MESSAGE = "Failed to upload file. Please try again."
DOWNLOAD_FAILED_MESSAGE = "Failed to download file. Please try again."
DELETE_FAILED_MESSAGE = "Failed to delete file."

_BUSY_STATES = {
    TransferState.ENCODING,
    TransferState.ANIMATING,
    TransferState.COMMITTING,
    TransferState.SAVING,
}


class Mode(str, Enum):
    CLIENT = "client"  # upload side
    SERVER = "server"  # browse and download side


@dataclass
class SessionState:
    user_name: str = ""
    mode: Mode = Mode.CLIENT
    selected_file: Optional[SelectedFile] = None
    selected_record: Optional[FileRecord] = None
    files: list[FileRecord] = field(default_factory=list)
    loading: bool = False
    upload_state: TransferState = TransferState.IDLE
    upload_progress: float = 0.0
    download_state: TransferState = TransferState.IDLE
    download_progress: float = 0.0
    error: Optional[str] = None
    last_active: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def upload_complete(self) -> bool:
        return self.upload_state is TransferState.COMPLETE

    @property
    def download_complete(self) -> bool:
        return self.download_state is TransferState.COMPLETE

    def snapshot(self) -> dict:
        selected_file = None
        if self.selected_file is not None:
            selected_file = {
                "name": self.selected_file.name,
                "type": self.selected_file.media_type,
                "size": getattr(self.selected_file, "size", None),
            }
        return {
            "userName": self.user_name,
            "mode": self.mode.value,
            "selectedFile": selected_file,
            "selectedRecord": self.selected_record.id if self.selected_record else None,
            "loading": self.loading,
            "upload": {
                "state": self.upload_state.value,
                "progress": round(self.upload_progress),
                "complete": self.upload_complete,
            },
            "download": {
                "state": self.download_state.value,
                "progress": round(self.download_progress),
                "complete": self.download_complete,
            },
            "error": self.error,
            "files": [
                {**record.summary(), "sizeText": human_size(record.size)}
                for record in self.files
            ],
        }


class SessionController:
    """Wires one user's actions to the registry and the transfer engine.

    All UI state lives in :attr:`state`; the registry and the engine keep
    nothing between calls.
    """

    def __init__(
        self,
        registry: FileRegistry,
        engine: TransferEngine,
        state: Optional[SessionState] = None,
        save: Optional[SaveTarget] = None,
    ) -> None:
        self.registry = registry
        self.engine = engine
        self.state = state or SessionState()
        self.save = save or MemorySaveTarget()

    def touch(self) -> None:
        self.state.last_active = datetime.now(timezone.utc)

    def set_user_name(self, name: str) -> None:
        name = (name or "").strip()
        if not name:
            raise ValueError("Name must not be blank")
        self.state.user_name = name
        self.touch()

    def switch_mode(self, mode: Mode) -> None:
        self.state.mode = Mode(mode)
        self.touch()

    @property
    def uploading(self) -> bool:
        return self.state.upload_state in _BUSY_STATES

    @property
    def downloading(self) -> bool:
        return self.state.download_state in _BUSY_STATES

    def select_file(self, selected: SelectedFile) -> bool:
        """Replace the selection; refused while an upload is running."""
        if self.uploading:
            return False
        self.state.selected_file = selected
        self.state.upload_state = TransferState.IDLE
        self.state.upload_progress = 0.0
        self.touch()
        return True

    def select_record(self, record: Optional[FileRecord]) -> bool:
        if self.downloading:
            return False
        self.state.selected_record = record
        self.state.download_state = TransferState.IDLE
        self.state.download_progress = 0.0
        self.touch()
        return True

    def dismiss_error(self) -> None:
        self.state.error = None
        self.touch()

    async def refresh(self) -> list[FileRecord]:
        self.state.loading = True
        try:
            listing = await self.registry.scan()
        finally:
            self.state.loading = False
        if listing.scan_error is not None:
            logger.warning("event=session_refresh_degraded error=%s", str(listing.scan_error))
        self.state.files = sorted(listing.records, key=lambda record: record.id, reverse=True)
        return self.state.files

    def _on_upload(self, transfer: Transfer) -> None:
        self.state.upload_state = transfer.state
        self.state.upload_progress = transfer.progress

    def _on_download(self, transfer: Transfer) -> None:
        self.state.download_state = transfer.state
        self.state.download_progress = transfer.progress

    async def upload(self) -> Optional[Transfer]:
        """Upload the selected file; returns ``None`` when the action is unavailable."""
        self.touch()
        state = self.state
        if state.selected_file is None or not state.user_name:
            return None
        if self.uploading or state.upload_complete:
            return None

        transfer = await self.engine.upload(state.selected_file, state.user_name, listener=self._on_upload)
        if transfer.state is TransferState.FAILED:
            state.error = UPLOAD_FAILED_MESSAGE
            return transfer

        await self.refresh()
        return transfer

    async def download(self) -> Optional[Transfer]:
        self.touch()
        state = self.state
        if state.selected_record is None or self.downloading:
            return None

        transfer = await self.engine.download(state.selected_record, self.save, listener=self._on_download)
        if transfer.state is TransferState.FAILED:
            state.error = DOWNLOAD_FAILED_MESSAGE
        return transfer

    async def delete(self, file_id: str) -> bool:
        self.touch()
        try:
            await self.registry.delete(file_id)
        except StoreWriteError as exc:
            logger.error("event=session_delete_failure file_id=%s error=%s", file_id, str(exc))
            self.state.error = DELETE_FAILED_MESSAGE
            return False

        await self.refresh()
        if self.state.selected_record is not None and self.state.selected_record.id == file_id:
            self.select_record(None)
        return True


class SessionManager:
    """Thread-safe in-memory table of active sessions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[str, SessionController] = {}

    def create(self, controller: SessionController) -> Tuple[str, SessionController]:
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[session_id] = controller
        return session_id, controller

    def get(self, session_id: str) -> Optional[SessionController]:
        with self._lock:
            return self._sessions.get(session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def prune_idle(self, max_idle: timedelta) -> int:
        cutoff = datetime.now(timezone.utc) - max_idle
        with self._lock:
            stale = [sid for sid, c in self._sessions.items() if c.state.last_active < cutoff]
            for sid in stale:
                del self._sessions[sid]
        return len(stale)
