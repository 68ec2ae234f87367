"""Uploaded voice files: validation, storage on disk, and upload history."""

from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, List, Optional

from voice_actions.config import get_upload_dir, get_upload_max_bytes
from voice_actions.models import UploadRecord
from voice_actions.services.transcription import MIME_EXTENSIONS, SUPPORTED_AUDIO_MIME_TYPES
from voice_actions.storage.postgres import PostgresBackedStore, UNSET

logger = logging.getLogger("voice_actions.uploads")

MIME_ALIASES = {
    "audio/x-wav": "audio/wav",
    "audio/wave": "audio/wav",
    "audio/x-m4a": "audio/mp4",
    "audio/m4a": "audio/mp4",
    "audio/x-flac": "audio/flac",
    "audio/opus": "audio/ogg",
}


class UploadRejected(ValueError):
    status_code = 400


class UnsupportedMediaType(UploadRejected):
    status_code = 415


class UploadTooLarge(UploadRejected):
    status_code = 413


def canonical_mime_type(content_type: Optional[str]) -> str:
    """Lower-case, drop parameters such as ``;codecs=opus`` and resolve aliases."""
    base = (content_type or "").split(";", 1)[0].strip().lower()
    return MIME_ALIASES.get(base, base)


def validate_upload(content_type: Optional[str], size_bytes: int, *, max_bytes: Optional[int] = None) -> str:
    """Return the canonical MIME type or raise :class:`UploadRejected`."""
    mime_type = canonical_mime_type(content_type)
    if mime_type.startswith("video/"):
        raise UnsupportedMediaType("Video files are not supported. Upload an audio recording.")
    if mime_type not in SUPPORTED_AUDIO_MIME_TYPES:
        raise UnsupportedMediaType(
            f"Unsupported audio type '{mime_type or 'unknown'}'. "
            f"Supported: {', '.join(SUPPORTED_AUDIO_MIME_TYPES)}"
        )
    limit = get_upload_max_bytes() if max_bytes is None else max_bytes
    if size_bytes > limit:
        raise UploadTooLarge(f"File is too large ({size_bytes} bytes); the limit is {limit} bytes.")
    if size_bytes == 0:
        raise UploadRejected("Uploaded file is empty.")
    return mime_type


class UploadStore(PostgresBackedStore):
    store_name = "upload store"

    def __init__(self, conn: Any = UNSET, upload_dir: Optional[str] = None) -> None:
        super().__init__(conn)
        self.upload_dir = upload_dir or get_upload_dir()
        self._memory: Dict[str, List[UploadRecord]] = {}

    def save(self, user_id: str, filename: Optional[str], mime_type: str, data: bytes) -> UploadRecord:
        upload_id = str(uuid.uuid4())
        user_dir = os.path.join(self.upload_dir, user_id)
        os.makedirs(user_dir, exist_ok=True)
        path = os.path.join(user_dir, f"{upload_id}.{MIME_EXTENSIONS.get(mime_type, 'bin')}")
        with open(path, "wb") as fh:
            fh.write(data)
        record = UploadRecord(
            id=upload_id,
            user_id=user_id,
            filename=os.path.basename(filename or "") or os.path.basename(path),
            mime_type=mime_type,
            size_bytes=len(data),
            path=path,
            source_recording_id=upload_id,
        )
        if self.conn is None:
            with self._lock:
                self._memory.setdefault(user_id, []).append(record)
        else:
            self._execute(
                """
                INSERT INTO voice_uploads (id, user_id, filename, mime_type, size_bytes, path,
                                           source_recording_id, created_at)
                VALUES (%(id)s, %(user_id)s, %(filename)s, %(mime_type)s, %(size_bytes)s, %(path)s,
                        %(source_recording_id)s, %(created_at)s)
                """,
                record.model_dump(),
            )
        logger.info("[uploads.saved] user_id=%s id=%s mime=%s bytes=%s", user_id, upload_id, mime_type, len(data))
        return record

    def list_for_user(self, user_id: str, limit: int = 50) -> List[UploadRecord]:
        if self.conn is None:
            with self._lock:
                records = list(self._memory.get(user_id, []))
            records.sort(key=lambda r: r.created_at, reverse=True)
            return records[:limit]
        rows = self._execute(
            """
            SELECT id, user_id, filename, mime_type, size_bytes, path, source_recording_id, created_at
            FROM voice_uploads
            WHERE user_id = %(user_id)s
            ORDER BY created_at DESC
            LIMIT %(limit)s
            """,
            {"user_id": user_id, "limit": limit},
            fetch="all",
        )
        return [UploadRecord(**row) for row in rows or []]
