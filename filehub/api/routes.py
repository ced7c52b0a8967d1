from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import APIRouter, BackgroundTasks, File, HTTPException, Response, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from filehub.codec import decode_data_uri, human_size
from filehub.config import (
    MAX_FILE_SIZE,
    PROGRESS_MAX_STEP,
    STORE_BACKEND,
    STORE_OWNER,
    TICK_INTERVAL_SECONDS,
    UPLOAD_MIN_SECONDS,
)
from filehub.core.metrics import metrics
from filehub.models import FileRecord
from filehub.registry import FileRegistry
from filehub.services.stats import storage_totals
from filehub.session import Mode, SessionController, SessionManager
from filehub.store import build_store
from filehub.transfer import BytesFile, MemorySaveTarget, ProgressTicker, TransferEngine

router = APIRouter()

logger = logging.getLogger("filehub")

MAX_FILE_SIZE_MB = MAX_FILE_SIZE / (1024 * 1024)

store = build_store(STORE_BACKEND, owner=STORE_OWNER)
registry = FileRegistry(store, metrics=metrics)
engine = TransferEngine(
    registry,
    ProgressTicker(interval=TICK_INTERVAL_SECONDS, max_step=PROGRESS_MAX_STEP),
    upload_floor=UPLOAD_MIN_SECONDS,
    metrics=metrics,
)
sessions = SessionManager()


class SessionCreate(BaseModel):
    name: str


class ModeChange(BaseModel):
    mode: Mode


def _describe(record: FileRecord) -> dict:
    return {**record.summary(), "sizeText": human_size(record.size)}


def _attachment(name: str, content: bytes, media_type: str) -> Response:
    response = Response(content=content, media_type=media_type)
    response.headers["Content-Disposition"] = f"attachment; filename*=UTF-8''{quote(name)}"
    return response


def _controller(session_id: str) -> SessionController:
    controller = sessions.get(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return controller


@router.get("/api/files")
async def list_files():
    listing = await registry.scan()
    records = sorted(listing.records, key=lambda record: record.id, reverse=True)
    return {
        "files": [_describe(record) for record in records],
        "failed": len(listing.failures),
        "degraded": listing.scan_error is not None,
    }


@router.get("/api/files/{file_id}")
async def file_metadata(file_id: str):
    record = await registry.get(file_id)
    if record is None:
        raise HTTPException(status_code=404, detail="File not found")
    return _describe(record)


@router.get("/api/files/{file_id}/content")
async def file_content(file_id: str):
    record = await registry.get(file_id)
    if record is None:
        raise HTTPException(status_code=404, detail="File not found")
    media_type, content = decode_data_uri(record.payload)

    metrics.record_download()
    logger.info("event=file_served file_id=%s size_bytes=%s", file_id, len(content))
    return _attachment(record.name, content, media_type)


@router.delete("/api/files/{file_id}")
async def delete_file(file_id: str):
    await registry.delete(file_id)
    return {"status": "deleted", "file_id": file_id}


@router.get("/api/summary")
async def summary():
    stats = metrics.snapshot()
    totals = storage_totals(await registry.list())
    payload = {
        **stats,
        "files": totals["total_files"],
        "storage_bytes": totals["total_bytes"],
        "storage_human": human_size(totals["total_bytes"]),
        "uploaders": totals["uploaders"],
        "active_sessions": len(sessions),
    }
    response = JSONResponse(payload)
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    return response


@router.post("/api/sessions", status_code=201)
async def create_session(body: SessionCreate):
    controller = SessionController(registry, engine, save=MemorySaveTarget())
    try:
        controller.set_user_name(body.name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    await controller.refresh()
    session_id, _ = sessions.create(controller)
    logger.info("event=session_created session_id=%s user=%s", session_id, controller.state.user_name)
    return {"session_id": session_id, **controller.state.snapshot()}


@router.get("/api/sessions/{session_id}")
async def session_state(session_id: str):
    controller = _controller(session_id)
    return controller.state.snapshot()


@router.put("/api/sessions/{session_id}/mode")
async def change_mode(session_id: str, body: ModeChange):
    controller = _controller(session_id)
    controller.switch_mode(body.mode)
    if body.mode is Mode.SERVER:
        await controller.refresh()
    return controller.state.snapshot()


@router.post("/api/sessions/{session_id}/upload", status_code=202)
async def start_upload(
    session_id: str,
    file: UploadFile = File(...),
    background_tasks: BackgroundTasks = BackgroundTasks(),
):
    controller = _controller(session_id)
    if not file.filename:
        raise HTTPException(status_code=400, detail="Missing filename")
    data = await file.read()
    if len(data) > MAX_FILE_SIZE:
        logger.warning(
            "event=upload_rejected reason=max_size filename=%s size_bytes=%s limit_bytes=%s",
            file.filename,
            len(data),
            MAX_FILE_SIZE,
        )
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum allowed size is {MAX_FILE_SIZE_MB:.1f} MB.",
        )

    selected = BytesFile(name=file.filename, content=data, media_type=file.content_type or "")
    if not controller.select_file(selected):
        raise HTTPException(status_code=409, detail="An upload is already in progress")
    background_tasks.add_task(controller.upload)
    return controller.state.snapshot()


@router.post("/api/sessions/{session_id}/download/{file_id}", status_code=202)
async def start_download(session_id: str, file_id: str, background_tasks: BackgroundTasks):
    controller = _controller(session_id)
    record = next((r for r in controller.state.files if r.id == file_id), None)
    if record is None:
        await controller.refresh()
        record = next((r for r in controller.state.files if r.id == file_id), None)
    if record is None:
        raise HTTPException(status_code=404, detail="File not found")

    if not controller.select_record(record):
        raise HTTPException(status_code=409, detail="A download is already in progress")
    background_tasks.add_task(controller.download)
    return controller.state.snapshot()


@router.get("/api/sessions/{session_id}/saved")
async def saved_download(session_id: str):
    controller = _controller(session_id)
    saved = controller.save
    if not isinstance(saved, MemorySaveTarget) or saved.content is None:
        raise HTTPException(status_code=404, detail="Nothing downloaded yet")
    return _attachment(saved.name or "download", saved.content, saved.media_type or "application/octet-stream")


@router.delete("/api/sessions/{session_id}/files/{file_id}")
async def session_delete(session_id: str, file_id: str):
    controller = _controller(session_id)
    if not await controller.delete(file_id):
        raise HTTPException(status_code=502, detail=controller.state.error)
    return controller.state.snapshot()


@router.delete("/api/sessions/{session_id}/error")
async def dismiss_error(session_id: str):
    controller = _controller(session_id)
    controller.dismiss_error()
    return controller.state.snapshot()
