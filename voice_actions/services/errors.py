"""Fatal failures of the voice pipeline."""

from __future__ import annotations

from typing import Optional


class VoicePipelineError(Exception):
    """Base class for pipeline stage failures."""

    stage: str = "pipeline"

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class TranscriptionFailure(VoicePipelineError):
    """No usable text came back from the transcription source. Fatal."""

    stage = "transcription"


class AudioLoadError(TranscriptionFailure):
    """Audio bytes could not be fetched or decoded."""

    stage = "audio"


