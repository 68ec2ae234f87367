"""
Per-user context document.

The assembler merges the onboarding profile, recent voice history, content
preferences and learned patterns into one templated text blob and overwrites
the stored copy before each extraction. Every placeholder is always rendered,
empty values included, so the prompt sees a stable shape.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from voice_actions.dependencies.redis_client import get_redis_client
from voice_actions.models import ContextDocument, UserContextProfile
from voice_actions.services.languages import get_language_name
from voice_actions.services.pattern_storage import PatternSummary, format_patterns_for_context
from voice_actions.services.voice_history import VoiceHistorySnapshot

logger = logging.getLogger("voice_actions.context")

CONTEXT_TEMPLATE = """<user_context>
name: {name}
language: {language}
last_topic: {last_topic}
mood: {mood}
pending_actions: {pending_actions}
</user_context>

<onboarding_context>
profession: {profession}
critical_artifacts: {critical_artifacts}
social_platforms: {social_platforms}
news_focus: {news_focus}
health_interests: {health_interests}
skincare: {skincare}
health: {health}
</onboarding_context>

<voice_history>
today_topics: {today_topics}
today_recording_count: {today_recording_count}
week_summary: {week_summary}
month_themes: {month_themes}
</voice_history>

<content_generation>
recent_documents: {recent_documents}
preferred_content_types: {preferred_content_types}
generation_preferences: {generation_preferences}
</content_generation>

<task_patterns>
preferred_times: {task_preferred_times}
common_categories: {common_categories}
tag_combinations: {tag_combinations}
completion_habits: {completion_habits}
recurring_items: {recurring_items}
</task_patterns>

<reminder_patterns>
preferred_times: {reminder_preferred_times}
common_tags: {common_tags}
recurring_patterns: {recurring_patterns}
</reminder_patterns>"""


def _join(values: Optional[List[str]]) -> str:
    return ", ".join(v for v in values or [] if v)


def render_context_document(
    profile: UserContextProfile,
    history: VoiceHistorySnapshot,
    patterns: PatternSummary,
    *,
    mood: str = "neutral",
) -> str:
    today_topics = history.today_topics
    return CONTEXT_TEMPLATE.format(
        name=profile.preferred_name or "",
        language=get_language_name(profile.language),
        last_topic=(today_topics[-1] if today_topics else profile.last_topic) or "",
        mood=mood,
        pending_actions=_join(profile.pending_actions),
        profession=profile.profession.name if profile.profession else "",
        critical_artifacts=_join(profile.critical_artifacts),
        social_platforms=_join(profile.social_platforms),
        news_focus=_join(profile.news_focus),
        health_interests=_join(profile.health_interests),
        skincare=profile.skincare_summary or "",
        health=profile.health_summary or "",
        today_topics=_join(today_topics),
        today_recording_count=len(history.today),
        week_summary=history.week_summary,
        month_themes=_join(history.month_themes),
        recent_documents=_join(profile.recent_documents[-5:]),
        preferred_content_types=_join(profile.content_preferences.preferred_content_types),
        generation_preferences=profile.content_preferences.generation_preferences,
        task_preferred_times=_join(patterns.task_preferred_times),
        common_categories=_join(patterns.common_categories),
        tag_combinations=_join(patterns.tag_combinations),
        completion_habits=_join(patterns.completion_habits),
        recurring_items=_join(patterns.recurring_items),
        reminder_preferred_times=_join(patterns.reminder_preferred_times),
        common_tags=_join(patterns.common_tags),
        recurring_patterns=_join(patterns.recurring_patterns),
    )


class ContextDocumentStore:
    """One live context document per user, in Redis with in-memory fallback.

    Documents carry no TTL: they are replaced on every voice event and only
    removed by :meth:`teardown`.
    """

    def __init__(self, redis_client=None) -> None:
        self._redis = redis_client if redis_client is not None else get_redis_client()
        self._lock = threading.Lock()
        self._cache: Dict[str, ContextDocument] = {}

    def _key(self, user_id: str) -> str:
        return f"context:doc:{user_id}"

    def get(self, user_id: str) -> Optional[ContextDocument]:
        if not user_id:
            raise ValueError("user_id is required for context documents")
        if self._redis is not None:
            raw = self._redis.get(self._key(user_id))
            if raw:
                try:
                    return ContextDocument(**json.loads(raw))
                except (ValueError, TypeError):
                    logger.warning("[context.get] unreadable document for user_id=%s", user_id)
        with self._lock:
            return self._cache.get(user_id)

    def _write(self, document: ContextDocument) -> ContextDocument:
        if self._redis is not None:
            self._redis.set(self._key(document.user_id), document.model_dump_json())
        else:
            with self._lock:
                self._cache[document.user_id] = document
        return document

    def init(self, user_id: str, content: str) -> ContextDocument:
        """Create the document at onboarding; an existing one is kept."""
        existing = self.get(user_id)
        if existing is not None:
            return existing
        return self._write(ContextDocument(user_id=user_id, content=content))

    def rewrite(self, user_id: str, content: str) -> ContextDocument:
        return self._write(
            ContextDocument(user_id=user_id, content=content, updated_at=datetime.now(timezone.utc))
        )

    def teardown(self, user_id: str) -> None:
        if self._redis is not None:
            self._redis.delete(self._key(user_id))
        with self._lock:
            self._cache.pop(user_id, None)


class ContextAssembler:
    """Builds and stores the context document; also owns its lifecycle."""

    def __init__(self, *, profiles, history, patterns, documents: ContextDocumentStore) -> None:
        self.profiles = profiles
        self.history = history
        self.patterns = patterns
        self.documents = documents

    def assemble(self, user_id: str, *, now: datetime) -> ContextDocument:
        profile = self.profiles.get_or_default(user_id)
        snapshot = self.history.snapshot(user_id, now)
        summary = format_patterns_for_context(self.patterns.list_patterns(user_id))
        content = render_context_document(profile, snapshot, summary)
        document = self.documents.rewrite(user_id, content)
        logger.info(
            "[context.rewrite] user_id=%s today_topics=%s chars=%s",
            user_id,
            len(snapshot.today_topics),
            len(content),
        )
        return document

    def initialize(self, profile: UserContextProfile, *, now: Optional[datetime] = None) -> ContextDocument:
        """Onboarding: persist the profile and create the first document."""
        saved = self.profiles.save(profile)
        moment = now or datetime.now(timezone.utc)
        snapshot = self.history.snapshot(saved.user_id, moment)
        summary = format_patterns_for_context(self.patterns.list_patterns(saved.user_id))
        return self.documents.init(saved.user_id, render_context_document(saved, snapshot, summary))

    def teardown(self, user_id: str) -> None:
        """Account deletion: remove every per-user artifact the assembler reads."""
        self.documents.teardown(user_id)
        self.profiles.delete(user_id)
        self.history.delete_user(user_id)
        self.patterns.delete_user(user_id)
        logger.info("[context.teardown] user_id=%s", user_id)
