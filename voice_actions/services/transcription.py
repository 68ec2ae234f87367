"""Audio loading and speech-to-text collaborator."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from voice_actions.config import get_openai_api_key, get_transcription_model_name, is_langfuse_enabled
from voice_actions.services.errors import AudioLoadError, TranscriptionFailure
from voice_actions.services.languages import normalize_language_code

logger = logging.getLogger("voice_actions.transcription")

MIME_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "m4a",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/flac": "flac",
}
SUPPORTED_AUDIO_MIME_TYPES = tuple(MIME_EXTENSIONS)


@dataclass
class TranscriptionResult:
    text: str
    language: str
    duration_seconds: Optional[float] = None


class Transcriber(Protocol):
    def transcribe(self, audio: bytes, mime_type: str) -> TranscriptionResult: ...


async def load_audio(
    *,
    audio_url: Optional[str] = None,
    audio_base64: Optional[str] = None,
    timeout: float = 30.0,
) -> bytes:
    if audio_base64:
        payload = audio_base64
        # Accept data URLs ("data:audio/webm;base64,....")
        if payload.startswith("data:") and "," in payload:
            payload = payload.split(",", 1)[1]
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AudioLoadError("audio_base64 is not valid base64", cause=exc) from exc
    if audio_url:
        try:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                resp = await client.get(audio_url)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPError as exc:
            raise AudioLoadError(f"failed to fetch audio: {exc}", cause=exc) from exc
    raise AudioLoadError("either audio_url or audio_base64 is required")


class OpenAITranscriber:
    """Whisper-style transcription through the OpenAI audio API."""

    def __init__(self, client: Optional[Any] = None, model: Optional[str] = None) -> None:
        self._client = client
        self.model = model or get_transcription_model_name()

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        api_key = (get_openai_api_key() or "").strip()
        if not api_key:
            raise TranscriptionFailure("OPENAI_API_KEY is required for transcription")
        if is_langfuse_enabled():
            from langfuse.openai import OpenAI  # type: ignore
        else:
            from openai import OpenAI  # type: ignore
        self._client = OpenAI(api_key=api_key)
        return self._client

    def transcribe(self, audio: bytes, mime_type: str) -> TranscriptionResult:
        if not audio:
            raise TranscriptionFailure("empty audio payload")
        client = self._get_client()
        filename = f"voice-note.{MIME_EXTENSIONS.get(mime_type, 'webm')}"
        try:
            resp = client.audio.transcriptions.create(
                model=self.model,
                file=(filename, audio, mime_type),
                response_format="verbose_json",
            )
        except Exception as exc:
            logger.exception("[transcription.error] model=%s mime=%s bytes=%s", self.model, mime_type, len(audio))
            raise TranscriptionFailure(f"transcription failed: {exc}", cause=exc) from exc

        text = (getattr(resp, "text", None) or "").strip()
        if not text:
            raise TranscriptionFailure("transcription returned no text")
        language = normalize_language_code(getattr(resp, "language", None))
        duration = getattr(resp, "duration", None)
        logger.info(
            "[transcription.ok] model=%s language=%s duration=%s chars=%s",
            self.model,
            language,
            duration,
            len(text),
        )
        return TranscriptionResult(
            text=text,
            language=language,
            duration_seconds=float(duration) if duration is not None else None,
        )
