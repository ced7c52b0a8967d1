from __future__ import annotations

import base64
import binascii

from filehub.core.exceptions import EncodingError

DEFAULT_MEDIA_TYPE = "application/octet-stream"


def encode_data_uri(content: bytes, media_type: str = "") -> str:
    """Build ``data:<mediaType>;base64,<payload>`` for the given bytes."""
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{media_type or DEFAULT_MEDIA_TYPE};base64,{encoded}"


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    """Return ``(media_type, content)`` from a base64 data URI."""
    if not uri.startswith("data:"):
        raise EncodingError("Payload is not a data URI")
    header, sep, encoded = uri[len("data:"):].partition(",")
    if not sep or not header.endswith(";base64"):
        raise EncodingError("Payload is not a base64 data URI")
    media_type = header[: -len(";base64")] or DEFAULT_MEDIA_TYPE
    try:
        content = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncodingError(f"Payload is not valid base64: {exc}") from exc
    return media_type, content


def human_size(size_bytes: int) -> str:
    if size_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    size = float(size_bytes)
    index = 0
    while size >= 1024 and index < len(units) - 1:
        size /= 1024
        index += 1
    formatted = f"{round(size, 2):.2f}".rstrip("0").rstrip(".")
    return f"{formatted} {units[index]}"
