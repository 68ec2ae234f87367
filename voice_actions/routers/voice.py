"""
Voice API Endpoints
Accepts voice notes (JSON reference or multipart upload) and runs the processing pipeline.
"""
from typing import List, Optional
import asyncio
import base64
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel

from voice_actions.config import get_pipeline_timeout_seconds, get_upload_max_bytes, is_llm_configured
from voice_actions.dependencies.services import get_pipeline, get_upload_store
from voice_actions.models import UploadRecord
from voice_actions.schemas import ProcessVoiceRequest, ReprocessRequest, ReprocessResponse, VoiceProcessingResult
from voice_actions.services.uploads import UploadRejected, UploadStore, UploadTooLarge, validate_upload
from voice_actions.services.voice_pipeline import VoiceProcessingPipeline

logger = logging.getLogger("voice_actions.voice_api")

router = APIRouter(prefix="/v1/voice", tags=["voice"])


class UploadResponse(BaseModel):
    upload: UploadRecord
    result: VoiceProcessingResult


class UploadListResponse(BaseModel):
    user_id: str
    uploads: List[UploadRecord]


def require_llm() -> None:
    if not is_llm_configured():
        raise HTTPException(status_code=400, detail="LLM is not configured")


async def _run_pipeline(pipeline: VoiceProcessingPipeline, request: ProcessVoiceRequest) -> VoiceProcessingResult:
    timeout = get_pipeline_timeout_seconds()
    try:
        return await asyncio.wait_for(pipeline.process(request), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("[voice.api.timeout] user_id=%s timeout_s=%s", request.user_id, timeout)
        raise HTTPException(status_code=504, detail=f"Voice processing timed out after {timeout:g}s")


@router.post("/process", response_model=VoiceProcessingResult)
async def process_voice(
    body: ProcessVoiceRequest,
    pipeline: VoiceProcessingPipeline = Depends(get_pipeline),
) -> VoiceProcessingResult:
    """Process a voice note referenced by URL or carried inline as base64."""
    require_llm()
    logger.info("[voice.api.process] user_id=%s mime=%s", body.user_id, body.mime_type)
    return await _run_pipeline(pipeline, body)


@router.post("/upload", response_model=UploadResponse)
async def upload_voice(
    file: UploadFile = File(...),
    user_id: str = Form(...),
    skip_save_items: bool = Form(False),
    timezone: Optional[str] = Form(None),
    await_content: bool = Form(False),
    pipeline: VoiceProcessingPipeline = Depends(get_pipeline),
    uploads: UploadStore = Depends(get_upload_store),
) -> UploadResponse:
    """Store an uploaded recording, then process it.

    Video files and unknown audio types are rejected with 415, files over the
    configured size limit with 413.
    """
    max_bytes = get_upload_max_bytes()
    try:
        if file.size is not None and file.size > max_bytes:
            raise UploadTooLarge(f"File is too large ({file.size} bytes); the limit is {max_bytes} bytes.")
        data = await file.read()
        mime_type = validate_upload(file.content_type, len(data), max_bytes=max_bytes)
    except UploadRejected as exc:
        logger.info(
            "[voice.api.upload.rejected] user_id=%s content_type=%s status=%s",
            user_id,
            file.content_type,
            exc.status_code,
        )
        raise HTTPException(status_code=exc.status_code, detail=str(exc))

    require_llm()
    record = await asyncio.to_thread(uploads.save, user_id, file.filename, mime_type, data)
    request = ProcessVoiceRequest(
        user_id=user_id,
        audio_base64=base64.b64encode(data).decode("ascii"),
        mime_type=mime_type,
        source_recording_id=record.source_recording_id,
        skip_save_items=skip_save_items,
        timezone=timezone,
        await_content=await_content,
    )
    result = await _run_pipeline(pipeline, request)
    return UploadResponse(upload=record, result=result)


@router.post("/reprocess", response_model=ReprocessResponse)
async def reprocess_recordings(
    body: ReprocessRequest,
    pipeline: VoiceProcessingPipeline = Depends(get_pipeline),
) -> ReprocessResponse:
    """Re-run extraction over stored transcripts: one recording, or the most recent ones."""
    require_llm()
    logger.info(
        "[voice.api.reprocess] user_id=%s recording_id=%s limit=%s",
        body.user_id,
        body.source_recording_id,
        body.limit,
    )
    timeout = get_pipeline_timeout_seconds()
    try:
        results = await asyncio.wait_for(
            pipeline.reprocess(
                body.user_id,
                source_recording_id=body.source_recording_id,
                limit=body.limit,
                skip_save_items=body.skip_save_items,
                timezone=body.timezone,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.error("[voice.api.timeout] user_id=%s timeout_s=%s", body.user_id, timeout)
        raise HTTPException(status_code=504, detail=f"Voice processing timed out after {timeout:g}s")
    if body.source_recording_id and not results:
        raise HTTPException(status_code=404, detail="Recording not found")
    return ReprocessResponse(user_id=body.user_id, processed=len(results), results=results)


@router.get("/uploads", response_model=UploadListResponse)
def list_uploads(
    user_id: str = Query(..., description="User identifier"),
    limit: int = Query(50, ge=1, le=200),
    uploads: UploadStore = Depends(get_upload_store),
) -> UploadListResponse:
    logger.info("[voice.api.uploads] user_id=%s", user_id)
    return UploadListResponse(user_id=user_id, uploads=uploads.list_for_user(user_id, limit=limit))
