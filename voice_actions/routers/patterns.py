"""
Pattern API Endpoints
Exposes learned behavioral patterns and advisory suggestions for draft items.
"""
from dataclasses import asdict
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query

from voice_actions.dependencies.services import get_item_repositories, get_pattern_learner, get_pattern_store
from voice_actions.schemas import (
    PatternAnalysisRequest,
    PatternAnalysisResponse,
    PatternListResponse,
    PatternOut,
    PatternSuggestionRequest,
    PatternSuggestionResponse,
)
from voice_actions.services.pattern_learning import PATTERN_TYPES, PatternLearner
from voice_actions.services.pattern_storage import PatternStore
from voice_actions.services.persistence import ItemRepositories

logger = logging.getLogger("voice_actions.patterns_api")

router = APIRouter(prefix="/v1/patterns", tags=["patterns"])


@router.post("/suggestions", response_model=PatternSuggestionResponse)
def suggest(
    body: PatternSuggestionRequest,
    store: PatternStore = Depends(get_pattern_store),
) -> PatternSuggestionResponse:
    """Suggest category, tags, priority, due time and recurrence for a draft title."""
    suggestions = store.suggestions(body.user_id, body.title, category=body.category, tags=body.tags)
    logger.info(
        "[patterns.api.suggestions] user_id=%s category=%s tags=%s",
        body.user_id,
        suggestions.suggested_category,
        len(suggestions.suggested_tags),
    )
    return PatternSuggestionResponse(**asdict(suggestions))


@router.post("/analyze", response_model=PatternAnalysisResponse)
def analyze_patterns(
    body: PatternAnalysisRequest,
    learner: PatternLearner = Depends(get_pattern_learner),
    repositories: ItemRepositories = Depends(get_item_repositories),
) -> PatternAnalysisResponse:
    """Re-learn every pattern from the user's saved tasks and reminders."""
    report = learner.analyze_user(body.user_id, repositories)
    logger.info("[patterns.api.analyze] user_id=%s patterns=%s", body.user_id, report.patterns_updated)
    return PatternAnalysisResponse(**asdict(report))


@router.get("", response_model=PatternListResponse)
def list_patterns(
    user_id: str = Query(..., description="User identifier"),
    pattern_type: Optional[str] = Query(None, description=f"One of: {', '.join(PATTERN_TYPES)}"),
    min_confidence: float = Query(0.0, ge=0.0, le=1.0),
    store: PatternStore = Depends(get_pattern_store),
) -> PatternListResponse:
    patterns = store.list_patterns(user_id, pattern_type, min_confidence=min_confidence)
    return PatternListResponse(
        user_id=user_id,
        patterns=[
            PatternOut(
                id=p.id,
                pattern_type=p.pattern_type,
                pattern_data=p.pattern_data,
                frequency=p.frequency,
                confidence_score=p.confidence_score,
                last_seen_at=p.last_seen_at,
            )
            for p in patterns
        ],
    )
