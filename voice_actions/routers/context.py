"""
Context API Endpoints
Onboarding, inspection and teardown of the per-user context document.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from voice_actions.dependencies.services import get_context_assembler
from voice_actions.models import ContentPreferences, UserContextProfile
from voice_actions.schemas import ContextDocumentResponse, OnboardingRequest
from voice_actions.services.context_document import ContextAssembler

logger = logging.getLogger("voice_actions.context_api")

router = APIRouter(prefix="/v1/context", tags=["context"])


class DeleteResponse(BaseModel):
    deleted: bool
    user_id: str


@router.post("/onboarding", response_model=ContextDocumentResponse)
def onboard_user(
    body: OnboardingRequest,
    assembler: ContextAssembler = Depends(get_context_assembler),
) -> ContextDocumentResponse:
    """Save the onboarding profile and create the user's first context document."""
    logger.info("[context.api.onboarding] user_id=%s language=%s", body.user_id, body.language)
    fields = body.model_dump(exclude_none=True)
    fields["content_preferences"] = body.content_preferences or ContentPreferences()
    document = assembler.initialize(UserContextProfile(**fields))
    return ContextDocumentResponse(**document.model_dump())


@router.get("", response_model=ContextDocumentResponse)
def get_context(
    user_id: str = Query(..., description="User identifier"),
    assembler: ContextAssembler = Depends(get_context_assembler),
) -> ContextDocumentResponse:
    document = assembler.documents.get(user_id)
    if document is None:
        raise HTTPException(status_code=404, detail=f"Context document not found for user_id: {user_id}")
    return ContextDocumentResponse(**document.model_dump())


@router.delete("", response_model=DeleteResponse)
def delete_context(
    user_id: str = Query(..., description="User identifier"),
    assembler: ContextAssembler = Depends(get_context_assembler),
) -> DeleteResponse:
    """Account deletion: drops the document, profile, voice history and patterns."""
    logger.info("[context.api.delete] user_id=%s", user_id)
    assembler.teardown(user_id)
    return DeleteResponse(deleted=True, user_id=user_id)
