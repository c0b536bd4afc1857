"""Storage for images and videos attached to quiz questions."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import re
import time

from peer_quiz.constants.network_constants import UPLOADS_URL_PREFIX

logger = logging.getLogger(__name__)

_MEDIA_KINDS = ("image", "video")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class UploadRejected(ValueError):
    """Upload is empty, too large or not an image or video."""


@dataclass(slots=True)
class StoredMedia:
    path: str
    media_type: str
    original_name: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "type": self.media_type, "original_name": self.original_name}


def media_kind(content_type: str | None) -> str | None:
    """``image`` or ``video`` from a MIME type, otherwise ``None``."""
    category = (content_type or "").split("/", 1)[0].strip().lower()
    return category if category in _MEDIA_KINDS else None


def _format_size(size: int) -> str:
    megabyte = 1024 * 1024
    if size >= megabyte:
        return f"{size // megabyte} MB"
    return f"{size} bytes"


def safe_file_name(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", Path(name).name).strip("._")
    return cleaned or "upload"


class MediaStore:
    """Writes accepted uploads to ``upload_dir`` under a timestamped name."""

    def __init__(self, upload_dir: Path, max_bytes: int) -> None:
        self.upload_dir = Path(upload_dir)
        self.max_bytes = max_bytes
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def store(self, file_name: str, content_type: str | None, data: bytes) -> StoredMedia:
        kind = media_kind(content_type)
        if kind is None:
            raise UploadRejected("Only image and video files are allowed.")
        if not data:
            raise UploadRejected("Uploaded file is empty.")
        if len(data) > self.max_bytes:
            raise UploadRejected(f"File exceeds the upload limit of {_format_size(self.max_bytes)}.")

        stored_name = f"{int(time.time() * 1000)}-{safe_file_name(file_name)}"
        (self.upload_dir / stored_name).write_bytes(data)
        logger.info("Stored %s upload %s (%d bytes)", kind, stored_name, len(data))
        return StoredMedia(
            path=f"{UPLOADS_URL_PREFIX}/{stored_name}",
            media_type=kind,
            original_name=file_name,
        )
