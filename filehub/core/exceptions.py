from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class FileHubError(Exception):
    """Base class for every failure the catalog reports to its callers."""

    status_code = 500
    user_message = "Something went wrong. Please try again."


class StoreError(FileHubError):
    """Raised by a store adapter when the underlying backend call fails."""


class StoreReadError(FileHubError):
    status_code = 503
    user_message = "Failed to load files. Please try again."


class StoreWriteError(FileHubError):
    status_code = 502
    user_message = "Failed to save changes. Please try again."


class EncodingError(FileHubError):
    status_code = 422
    user_message = "Failed to read the file. Please try again."


class SaveError(FileHubError):
    status_code = 500
    user_message = "Failed to save the downloaded file."


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(FileHubError)
    async def filehub_error_handler(request: Request, exc: FileHubError):
        detail = str(exc) or exc.user_message
        return JSONResponse({"detail": detail}, status_code=exc.status_code)
