"""
Content prediction trigger.

Predictions returned by extraction are filtered by confidence, capped, drafted
concurrently, stored and announced through a notification. A failing draft never
prevents the others from being produced.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

from psycopg.types.json import Json

from voice_actions.config import (
    get_content_confidence_threshold,
    get_content_explicit_threshold,
    get_content_max_predictions,
    get_content_model_name,
    get_extraction_timeouts_ms,
)
from voice_actions.models import (
    ContentPrediction,
    GeneratedContent,
    GeneratedContentItem,
    UserContextProfile,
)
from voice_actions.services.languages import get_language_name
from voice_actions.services.llm_client import call_llm_json
from voice_actions.services.notifications import NotificationDispatcher, content_type_label
from voice_actions.storage.postgres import PostgresBackedStore, UNSET, unwrap_json

logger = logging.getLogger("voice_actions.content")

PREVIEW_CHARS = 200
RECENT_DOCUMENTS_KEPT = 10

CONTENT_PROMPT = """You are a professional writer producing a {content_type} for {name}, a {profession}.

Request: {description}
{platform_line}
Use the voice notes below as your only source material. Keep the facts, drop filler,
and adapt structure and tone to the content type and the profession.
Everything you write, tags included, MUST be in {language_name}.

Voice notes:
{voice_context}

Answer with a JSON object: {{"title": str, "content": str, "tags": [str], "previewText": str}}"""


def select_predictions(
    predictions: Sequence[ContentPrediction],
    *,
    threshold: Optional[float] = None,
    limit: Optional[int] = None,
) -> List[ContentPrediction]:
    """Predictions at or above the threshold, most confident first, capped."""
    floor = get_content_confidence_threshold() if threshold is None else threshold
    cap = get_content_max_predictions() if limit is None else limit
    kept = [p for p in predictions if p.confidence >= floor]
    kept.sort(key=lambda p: p.confidence, reverse=True)
    return kept[:cap]


def generation_type_for(confidence: float, explicit_threshold: Optional[float] = None) -> str:
    threshold = get_content_explicit_threshold() if explicit_threshold is None else explicit_threshold
    return "explicit" if confidence >= threshold else "proactive"


JsonCall = Callable[..., Optional[Dict[str, Any]]]


class ContentDrafter:
    def __init__(self, *, llm_call: Optional[JsonCall] = None, model: Optional[str] = None) -> None:
        self._llm_call = llm_call or call_llm_json
        self.model = model or get_content_model_name()

    def draft(
        self,
        prediction: ContentPrediction,
        *,
        profile: UserContextProfile,
        voice_context: str,
        language: str,
    ) -> Dict[str, Any]:
        """Return ``title``, ``content``, ``tags`` and ``preview_text`` for one prediction.

        Raises RuntimeError when the model returns nothing usable.
        """
        prompt = CONTENT_PROMPT.format(
            content_type=prediction.content_type,
            name=profile.preferred_name or "the user",
            profession=profile.profession.name if profile.profession else "professional",
            description=prediction.description,
            platform_line=f"Target platform: {prediction.target_platform}" if prediction.target_platform else "",
            language_name=get_language_name(language),
            voice_context=voice_context,
        )
        payload = {
            "content_type": prediction.content_type,
            "description": prediction.description,
            "suggested_title": prediction.suggested_title,
        }
        result = self._llm_call(
            prompt,
            payload,
            model=self.model,
            timeout_s=max(1, get_extraction_timeouts_ms() // 1000),
        )
        if not result or not str(result.get("content") or "").strip():
            raise RuntimeError(f"empty draft for content_type={prediction.content_type}")
        content = str(result["content"]).strip()
        title = str(result.get("title") or "").strip() or fallback_title(prediction)
        tags = result.get("tags") if isinstance(result.get("tags"), list) else []
        return {
            "title": title,
            "content": content,
            "tags": [str(t) for t in tags],
            "preview_text": content[:PREVIEW_CHARS],
        }


def fallback_title(prediction: ContentPrediction) -> str:
    return prediction.suggested_title or f"{content_type_label(prediction.content_type)} Draft"


class GeneratedContentStore(PostgresBackedStore):
    store_name = "generated content store"

    def __init__(self, conn: Any = UNSET) -> None:
        super().__init__(conn)
        self._memory: Dict[str, Dict[str, GeneratedContent]] = {}

    def save(self, document: GeneratedContent) -> GeneratedContent:
        if self.conn is None:
            with self._lock:
                self._memory.setdefault(document.user_id, {})[document.document_id] = document
            return document
        self._execute(
            """
            INSERT INTO generated_content (id, user_id, title, content_type, content, preview_text, tags,
                                           generation_type, confidence, source_recording_id,
                                           model_used, created_at)
            VALUES (%(document_id)s, %(user_id)s, %(title)s, %(content_type)s, %(content)s,
                    %(preview_text)s, %(tags)s, %(generation_type)s, %(confidence)s,
                    %(source_recording_id)s, %(model_used)s, %(created_at)s)
            """,
            {**document.model_dump(), "tags": Json(document.tags)},
        )
        return document

    def list_for_user(self, user_id: str) -> List[GeneratedContent]:
        if self.conn is None:
            with self._lock:
                documents = list(self._memory.get(user_id, {}).values())
            return sorted(documents, key=lambda d: d.created_at, reverse=True)
        rows = self._execute(
            """
            SELECT id AS document_id, user_id, title, content_type, content, preview_text, tags,
                   generation_type, confidence, source_recording_id, model_used, created_at
            FROM generated_content
            WHERE user_id = %(user_id)s
            ORDER BY created_at DESC
            """,
            {"user_id": user_id},
            fetch="all",
        )
        return [GeneratedContent(**{**row, "tags": unwrap_json(row.get("tags")) or []}) for row in rows or []]

    def delete_user(self, user_id: str) -> None:
        if self.conn is None:
            with self._lock:
                self._memory.pop(user_id, None)
            return
        self._execute("DELETE FROM generated_content WHERE user_id = %(user_id)s", {"user_id": user_id})


class ContentPredictionTrigger:
    def __init__(
        self,
        *,
        drafter: ContentDrafter,
        store: GeneratedContentStore,
        dispatcher: NotificationDispatcher,
        profiles=None,
    ) -> None:
        self.drafter = drafter
        self.store = store
        self.dispatcher = dispatcher
        self.profiles = profiles

    async def run(
        self,
        user_id: str,
        predictions: Sequence[ContentPrediction],
        *,
        profile: UserContextProfile,
        voice_context: str,
        language: str,
        source_recording_id: Optional[str] = None,
    ) -> List[GeneratedContentItem]:
        selected = select_predictions(predictions)
        if not selected:
            logger.info("[content.skip] user_id=%s predictions=%s above_threshold=0", user_id, len(predictions))
            return []

        # each draft is an independent model call; results keep the selection order
        results: List[GeneratedContentItem] = list(
            await asyncio.gather(
                *(
                    asyncio.to_thread(
                        self._generate_one,
                        user_id,
                        prediction,
                        profile=profile,
                        voice_context=voice_context,
                        language=language,
                        source_recording_id=source_recording_id,
                    )
                    for prediction in selected
                )
            )
        )

        ready = [item for item in results if item.status == "ready" and item.document_id]
        await asyncio.to_thread(self._announce, user_id, ready, profile)

        logger.info(
            "[content.done] user_id=%s selected=%s ready=%s failed=%s",
            user_id,
            len(selected),
            len(ready),
            len(results) - len(ready),
        )
        return results

    def _announce(self, user_id: str, ready: List[GeneratedContentItem], profile: UserContextProfile) -> None:
        for item in ready:
            try:
                self.dispatcher.notify_content_ready(user_id, item.document_id, item.title, item.content_type)
            except Exception:
                logger.exception("[content.notify.error] user_id=%s document_id=%s", user_id, item.document_id)

        if ready and self.profiles is not None:
            try:
                recent = profile.recent_documents + [item.title for item in ready]
                self.profiles.update(user_id, recent_documents=recent[-RECENT_DOCUMENTS_KEPT:])
            except Exception:
                logger.exception("[content.profile.error] user_id=%s", user_id)

    def _generate_one(
        self,
        user_id: str,
        prediction: ContentPrediction,
        *,
        profile: UserContextProfile,
        voice_context: str,
        language: str,
        source_recording_id: Optional[str],
    ) -> GeneratedContentItem:
        try:
            draft = self.drafter.draft(prediction, profile=profile, voice_context=voice_context, language=language)
        except Exception:
            logger.exception(
                "[content.draft.error] user_id=%s content_type=%s", user_id, prediction.content_type
            )
            return GeneratedContentItem(
                title=fallback_title(prediction), content_type=prediction.content_type, status="failed"
            )

        document = GeneratedContent(
            document_id=str(uuid.uuid4()),
            user_id=user_id,
            title=draft["title"],
            content_type=prediction.content_type,
            content=draft["content"],
            preview_text=draft["preview_text"],
            tags=draft["tags"],
            generation_type=generation_type_for(prediction.confidence),
            confidence=prediction.confidence,
            source_recording_id=source_recording_id,
            model_used=self.drafter.model,
        )
        try:
            self.store.save(document)
        except Exception:
            logger.exception("[content.save.error] user_id=%s title=%r", user_id, document.title)
            return GeneratedContentItem(
                title=document.title,
                content_type=document.content_type,
                preview_text=document.preview_text,
                status="failed",
            )
        return GeneratedContentItem(
            document_id=document.document_id,
            title=document.title,
            content_type=document.content_type,
            preview_text=document.preview_text,
            status="ready",
        )
