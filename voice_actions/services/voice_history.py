"""Rolling voice-note history: today's topics, week summary, month themes."""

from __future__ import annotations

import logging
import re
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from voice_actions.config import get_today_topics_limit
from voice_actions.models import VoiceTranscript
from voice_actions.storage.postgres import PostgresBackedStore, UNSET

logger = logging.getLogger("voice_actions.voice_history")

NO_RECORDINGS = "No voice recordings found."

_SENTENCE_END = re.compile(r"[.!?]")
_WORD = re.compile(r"[^\W\d_]{4,}", re.UNICODE)

STOPWORDS = {
    # en
    "that", "this", "with", "have", "need", "from", "about", "will", "just", "then", "also",
    "they", "them", "there", "what", "when", "want", "should", "would", "could", "remember",
    "remind", "today", "tomorrow", "call", "make", "going", "really", "some", "been", "into",
    # fr
    "pour", "dans", "avec", "faut", "faire", "demain", "aujourd", "mais", "plus", "cette", "elle",
    "nous", "vous", "sont", "être", "avoir", "aussi", "très", "rappeler",
    # es
    "para", "como", "pero", "tengo", "hacer", "mañana", "esta", "este", "también", "donde",
}


def first_sentence(text: str) -> str:
    stripped = (text or "").strip()
    if not stripped:
        return ""
    return _SENTENCE_END.split(stripped, 1)[0].strip()


def compute_today_topics(transcripts: Sequence[VoiceTranscript], limit: Optional[int] = None) -> List[str]:
    """Leading sentence of each of today's transcripts, oldest first, capped."""
    cap = limit if limit is not None else get_today_topics_limit()
    topics = [first_sentence(t.cleaned_text or t.raw_text) for t in transcripts]
    return [topic for topic in topics if topic][:cap]


def top_keywords(texts: Sequence[str], limit: int = 5) -> List[str]:
    counts: Counter = Counter()
    for text in texts:
        for word in _WORD.findall(text.lower()):
            if word not in STOPWORDS:
                counts[word] += 1
    return [word for word, _ in counts.most_common(limit)]


def summarize_period(transcripts: Sequence[VoiceTranscript], limit: int = 5) -> Tuple[str, List[str]]:
    """Return (summary, key_topics) for a window of transcripts."""
    seen: List[str] = []
    for transcript in transcripts:
        topic = first_sentence(transcript.cleaned_text)
        if topic and topic not in seen:
            seen.append(topic)
    summary = "; ".join(seen[-limit:])
    return summary, top_keywords([t.cleaned_text for t in transcripts])


@dataclass
class VoiceHistorySnapshot:
    today: List[VoiceTranscript] = field(default_factory=list)
    past_two_days: List[VoiceTranscript] = field(default_factory=list)
    past_week: List[VoiceTranscript] = field(default_factory=list)
    past_month: List[VoiceTranscript] = field(default_factory=list)

    @property
    def today_topics(self) -> List[str]:
        return compute_today_topics(self.today)

    @property
    def week_summary(self) -> str:
        return summarize_period(self.past_week)[0]

    @property
    def month_themes(self) -> List[str]:
        return top_keywords([t.cleaned_text for t in self.past_month])


class VoiceHistoryStore(PostgresBackedStore):
    """Cleaned transcripts per user, used for context and content drafting."""

    store_name = "voice history store"

    def __init__(self, conn: Any = UNSET) -> None:
        super().__init__(conn)
        self._memory: Dict[str, List[VoiceTranscript]] = {}

    def record(self, user_id: str, transcript: VoiceTranscript) -> None:
        if self.conn is None:
            with self._lock:
                self._memory.setdefault(user_id, []).append(transcript)
            return
        self._execute(
            """
            INSERT INTO voice_transcripts (id, user_id, raw_text, cleaned_text, language,
                                           duration_seconds, source_recording_id, recorded_at)
            VALUES (%(id)s, %(user_id)s, %(raw_text)s, %(cleaned_text)s, %(language)s,
                    %(duration_seconds)s, %(source_recording_id)s, %(recorded_at)s)
            """,
            {"id": str(uuid.uuid4()), "user_id": user_id, **transcript.model_dump()},
        )

    def list_since(self, user_id: str, since: datetime) -> List[VoiceTranscript]:
        if self.conn is None:
            with self._lock:
                items = [t for t in self._memory.get(user_id, []) if t.recorded_at >= since]
            return sorted(items, key=lambda t: t.recorded_at)
        rows = self._execute(
            """
            SELECT raw_text, cleaned_text, language, duration_seconds, source_recording_id, recorded_at
            FROM voice_transcripts
            WHERE user_id = %(user_id)s AND recorded_at >= %(since)s
            ORDER BY recorded_at
            """,
            {"user_id": user_id, "since": since},
            fetch="all",
        )
        return [VoiceTranscript(**row) for row in rows or []]

    def list_recent(
        self, user_id: str, *, limit: int = 5, source_recording_id: Optional[str] = None
    ) -> List[VoiceTranscript]:
        """Newest transcripts first, optionally only those of one recording."""
        if self.conn is None:
            with self._lock:
                items = [
                    t
                    for t in self._memory.get(user_id, [])
                    if source_recording_id is None or t.source_recording_id == source_recording_id
                ]
            return sorted(items, key=lambda t: t.recorded_at, reverse=True)[:limit]
        rows = self._execute(
            """
            SELECT raw_text, cleaned_text, language, duration_seconds, source_recording_id, recorded_at
            FROM voice_transcripts
            WHERE user_id = %(user_id)s
              AND (%(source_recording_id)s::text IS NULL OR source_recording_id = %(source_recording_id)s)
            ORDER BY recorded_at DESC
            LIMIT %(limit)s
            """,
            {"user_id": user_id, "source_recording_id": source_recording_id, "limit": limit},
            fetch="all",
        )
        return [VoiceTranscript(**row) for row in rows or []]

    def delete_user(self, user_id: str) -> None:
        if self.conn is None:
            with self._lock:
                self._memory.pop(user_id, None)
            return
        self._execute("DELETE FROM voice_transcripts WHERE user_id = %(user_id)s", {"user_id": user_id})

    def snapshot(self, user_id: str, now: datetime) -> VoiceHistorySnapshot:
        """Split the last 30 days around the local midnight of ``now``."""
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month = self.list_since(user_id, midnight - timedelta(days=30))
        return VoiceHistorySnapshot(
            today=[t for t in month if t.recorded_at >= midnight],
            past_two_days=[t for t in month if midnight - timedelta(days=2) <= t.recorded_at < midnight],
            past_week=[t for t in month if midnight - timedelta(days=7) <= t.recorded_at < midnight],
            past_month=month,
        )


def get_full_voice_context(snapshot: VoiceHistorySnapshot, tz) -> str:
    sections: List[str] = []
    if snapshot.today:
        lines = [
            f"[{t.recorded_at.astimezone(tz).strftime('%H:%M')}] {t.cleaned_text}" for t in snapshot.today
        ]
        sections.append(f"## TODAY'S VOICE NOTES ({len(snapshot.today)} recordings)\n" + "\n".join(lines))
    if snapshot.past_two_days:
        summary, _ = summarize_period(snapshot.past_two_days)
        sections.append(f"## PAST 2 DAYS SUMMARY\n{summary}")
    if snapshot.past_week:
        summary, topics = summarize_period(snapshot.past_week)
        block = f"## PAST WEEK SUMMARY\n{summary}"
        if topics:
            block += f"\nKey Topics: {', '.join(topics)}"
        sections.append(block)
    themes = snapshot.month_themes
    if themes:
        sections.append(f"## PAST MONTH THEMES\n{', '.join(themes)}")
    if not sections:
        return NO_RECORDINGS
    return "\n\n---\n\n".join(sections)
