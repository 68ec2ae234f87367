"""
Behavioral pattern storage, suggestions and context summaries.

Rows live in ``user_patterns`` keyed by (user_id, pattern_type, signature).
Every upsert bumps ``frequency`` by one inside a single statement, so
concurrent observations for the same key never lose updates. ``merge`` is the
batch counterpart: it raises a row to a recounted frequency and never lowers it.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from psycopg.types.json import Json

from voice_actions.services.pattern_learning import PatternObservation
from voice_actions.storage.postgres import PostgresBackedStore, UNSET, unwrap_json

logger = logging.getLogger("voice_actions.patterns.store")

SATURATION_FREQUENCY = 10


def pattern_confidence(frequency: int, sparse: bool = False) -> float:
    """Confidence grows linearly with frequency and saturates at 1.0."""
    score = min(max(frequency, 0) / SATURATION_FREQUENCY, 1.0)
    if sparse:
        score *= 0.5
    return round(score, 4)


@dataclass
class BehavioralPattern:
    user_id: str
    pattern_type: str
    pattern_data: Dict[str, Any]
    signature: str
    frequency: int = 1
    confidence_score: float = 0.0
    sparse: bool = False
    first_seen_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_seen_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "pattern_type": self.pattern_type,
            "pattern_data": self.pattern_data,
            "signature": self.signature,
            "frequency": self.frequency,
            "confidence_score": self.confidence_score,
            "sparse": self.sparse,
            "first_seen_at": self.first_seen_at.isoformat(),
            "last_seen_at": self.last_seen_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "BehavioralPattern":
        return cls(
            id=str(row["id"]),
            user_id=row["user_id"],
            pattern_type=row["pattern_type"],
            pattern_data=dict(unwrap_json(row.get("pattern_data")) or {}),
            signature=row["signature"],
            frequency=int(row["frequency"]),
            confidence_score=float(row["confidence_score"]),
            sparse=bool(row.get("sparse")),
            first_seen_at=row["first_seen_at"],
            last_seen_at=row["last_seen_at"],
        )


@dataclass
class PatternSuggestions:
    suggested_category: Optional[str] = None
    suggested_tags: List[str] = field(default_factory=list)
    suggested_priority: Optional[str] = None
    suggested_due_time: Optional[str] = None
    suggested_recurrence: Optional[str] = None
    confidence: Dict[str, float] = field(default_factory=dict)


@dataclass
class PatternSummary:
    task_preferred_times: List[str] = field(default_factory=list)
    common_categories: List[str] = field(default_factory=list)
    tag_combinations: List[str] = field(default_factory=list)
    completion_habits: List[str] = field(default_factory=list)
    recurring_items: List[str] = field(default_factory=list)
    reminder_preferred_times: List[str] = field(default_factory=list)
    common_tags: List[str] = field(default_factory=list)
    recurring_patterns: List[str] = field(default_factory=list)


class PatternStore(PostgresBackedStore):
    """Persist behavioral patterns in PostgreSQL with in-memory fallback."""

    store_name = "pattern store"

    def __init__(self, conn: Any = UNSET) -> None:
        super().__init__(conn)
        self._memory: Dict[Tuple[str, str, str], BehavioralPattern] = {}

    def upsert(
        self,
        user_id: str,
        observation: PatternObservation,
        seen_at: Optional[datetime] = None,
    ) -> BehavioralPattern:
        seen = seen_at or datetime.now(timezone.utc)
        signature = observation.signature
        if self.conn is None:
            key = (user_id, observation.pattern_type, signature)
            with self._lock:
                current = self._memory.get(key)
                if current is None:
                    current = BehavioralPattern(
                        user_id=user_id,
                        pattern_type=observation.pattern_type,
                        pattern_data=dict(observation.pattern_data),
                        signature=signature,
                        frequency=0,
                        sparse=observation.sparse,
                        first_seen_at=seen,
                        last_seen_at=seen,
                    )
                    self._memory[key] = current
                current.frequency += 1
                current.confidence_score = pattern_confidence(current.frequency, current.sparse)
                current.last_seen_at = max(current.last_seen_at, seen)
                return BehavioralPattern(**vars(current))
        row = self._execute(
            """
            INSERT INTO user_patterns (
                id, user_id, pattern_type, signature, pattern_data, frequency,
                confidence_score, sparse, first_seen_at, last_seen_at
            )
            VALUES (
                %(id)s, %(user_id)s, %(pattern_type)s, %(signature)s, %(pattern_data)s, 1,
                %(confidence)s, %(sparse)s, %(seen_at)s, %(seen_at)s
            )
            ON CONFLICT (user_id, pattern_type, signature) DO UPDATE SET
                frequency = user_patterns.frequency + 1,
                confidence_score = LEAST((user_patterns.frequency + 1) / %(saturation)s::float, 1.0)
                    * CASE WHEN user_patterns.sparse THEN 0.5 ELSE 1.0 END,
                last_seen_at = GREATEST(user_patterns.last_seen_at, EXCLUDED.last_seen_at),
                updated_at = NOW()
            RETURNING *
            """,
            {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "pattern_type": observation.pattern_type,
                "signature": signature,
                "pattern_data": Json(observation.pattern_data),
                "confidence": pattern_confidence(1, observation.sparse),
                "sparse": observation.sparse,
                "seen_at": seen,
                "saturation": SATURATION_FREQUENCY,
            },
            fetch="one",
        )
        return BehavioralPattern.from_row(row)

    def merge(
        self,
        user_id: str,
        observation: PatternObservation,
        *,
        frequency: int,
        seen_at: Optional[datetime] = None,
    ) -> BehavioralPattern:
        """Raise the stored frequency to ``frequency``; never lowers it."""
        seen = seen_at or datetime.now(timezone.utc)
        signature = observation.signature
        frequency = max(1, frequency)
        if self.conn is None:
            key = (user_id, observation.pattern_type, signature)
            with self._lock:
                current = self._memory.get(key)
                if current is None:
                    current = BehavioralPattern(
                        user_id=user_id,
                        pattern_type=observation.pattern_type,
                        pattern_data=dict(observation.pattern_data),
                        signature=signature,
                        frequency=0,
                        sparse=observation.sparse,
                        first_seen_at=seen,
                        last_seen_at=seen,
                    )
                    self._memory[key] = current
                current.frequency = max(current.frequency, frequency)
                current.confidence_score = pattern_confidence(current.frequency, current.sparse)
                current.last_seen_at = max(current.last_seen_at, seen)
                return BehavioralPattern(**vars(current))
        row = self._execute(
            """
            INSERT INTO user_patterns (
                id, user_id, pattern_type, signature, pattern_data, frequency,
                confidence_score, sparse, first_seen_at, last_seen_at
            )
            VALUES (
                %(id)s, %(user_id)s, %(pattern_type)s, %(signature)s, %(pattern_data)s, %(frequency)s,
                %(confidence)s, %(sparse)s, %(seen_at)s, %(seen_at)s
            )
            ON CONFLICT (user_id, pattern_type, signature) DO UPDATE SET
                frequency = GREATEST(user_patterns.frequency, EXCLUDED.frequency),
                confidence_score = LEAST(GREATEST(user_patterns.frequency, EXCLUDED.frequency) / %(saturation)s::float, 1.0)
                    * CASE WHEN user_patterns.sparse THEN 0.5 ELSE 1.0 END,
                last_seen_at = GREATEST(user_patterns.last_seen_at, EXCLUDED.last_seen_at),
                updated_at = NOW()
            RETURNING *
            """,
            {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "pattern_type": observation.pattern_type,
                "signature": signature,
                "pattern_data": Json(observation.pattern_data),
                "frequency": frequency,
                "confidence": pattern_confidence(frequency, observation.sparse),
                "sparse": observation.sparse,
                "seen_at": seen,
                "saturation": SATURATION_FREQUENCY,
            },
            fetch="one",
        )
        return BehavioralPattern.from_row(row)

    def list_patterns(
        self,
        user_id: str,
        pattern_type: Optional[str] = None,
        *,
        min_confidence: float = 0.0,
    ) -> List[BehavioralPattern]:
        if self.conn is None:
            with self._lock:
                rows = [
                    BehavioralPattern(**vars(p))
                    for (uid, ptype, _), p in self._memory.items()
                    if uid == user_id and (pattern_type is None or ptype == pattern_type)
                ]
        else:
            raw = self._execute(
                """
                SELECT * FROM user_patterns
                WHERE user_id = %(user_id)s
                  AND (%(pattern_type)s::text IS NULL OR pattern_type = %(pattern_type)s)
                """,
                {"user_id": user_id, "pattern_type": pattern_type},
                fetch="all",
            )
            rows = [BehavioralPattern.from_row(r) for r in raw or []]
        rows = [p for p in rows if p.confidence_score >= min_confidence]
        rows.sort(key=lambda p: (p.confidence_score, p.frequency, p.last_seen_at), reverse=True)
        return rows

    def delete_user(self, user_id: str) -> None:
        if self.conn is None:
            with self._lock:
                for key in [k for k in self._memory if k[0] == user_id]:
                    del self._memory[key]
            return
        self._execute("DELETE FROM user_patterns WHERE user_id = %(user_id)s", {"user_id": user_id})

    def suggestions(
        self,
        user_id: str,
        title: str,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> PatternSuggestions:
        return build_suggestions(self.list_patterns(user_id), title, category=category, tags=tags)


_WORD = re.compile(r"\w+", re.UNICODE)


def _words(text: str) -> set:
    return {w.lower() for w in _WORD.findall(text or "") if len(w) > 2}


def _by_type(patterns: Iterable[BehavioralPattern], pattern_type: str, item: Optional[str] = None) -> List[BehavioralPattern]:
    return [
        p
        for p in patterns
        if p.pattern_type == pattern_type and (item is None or p.pattern_data.get("item") == item)
    ]


def build_suggestions(
    patterns: List[BehavioralPattern],
    title: str,
    *,
    category: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> PatternSuggestions:
    """Advisory suggestions for a draft item; never applied automatically."""
    result = PatternSuggestions()
    title_words = _words(title)
    given_tags = {t.strip().lower() for t in tags or []}
    given_category = (category or "").strip().lower() or None

    tag_patterns = _by_type(patterns, "tags")
    if given_category is None:
        for p in tag_patterns:
            combo_category = p.pattern_data.get("category")
            if combo_category and title_words & set(p.pattern_data.get("tags", [])):
                result.suggested_category = combo_category
                result.confidence["category"] = p.confidence_score
                break
        if result.suggested_category is None:
            categories = _by_type(patterns, "category")
            if categories:
                result.suggested_category = categories[0].pattern_data.get("category")
                result.confidence["category"] = categories[0].confidence_score

    matched: List[str] = []
    for p in tag_patterns:
        combo = p.pattern_data.get("tags", [])
        if title_words & set(combo):
            matched.extend(combo)
    weights: Counter = Counter()
    for p in tag_patterns:
        for tag in p.pattern_data.get("tags", []):
            weights[tag] += p.frequency
    ordered = matched + [tag for tag, _ in weights.most_common(3)]
    seen: set = set()
    for tag in ordered:
        if tag in given_tags or tag in seen:
            continue
        seen.add(tag)
        result.suggested_tags.append(tag)
    result.suggested_tags = result.suggested_tags[:5]
    if result.suggested_tags and tag_patterns:
        result.confidence["tags"] = max(p.confidence_score for p in tag_patterns)

    effective_category = given_category or result.suggested_category
    priorities = _by_type(patterns, "priority", "task")
    scoped = [p for p in priorities if effective_category and p.pattern_data.get("category") == effective_category]
    pick = (scoped or priorities or [None])[0]
    if pick is not None:
        result.suggested_priority = pick.pattern_data.get("priority")
        result.confidence["priority"] = pick.confidence_score

    timings = [p for p in _by_type(patterns, "timing") if p.pattern_data.get("preferred_time")]
    if timings:
        result.suggested_due_time = timings[0].pattern_data["preferred_time"]
        result.confidence["due_time"] = timings[0].confidence_score

    recurring = _by_type(patterns, "recurring")
    for p in recurring:
        if title_words & _words(p.pattern_data.get("title", "")):
            result.suggested_recurrence = p.pattern_data.get("frequency")
            result.confidence["recurrence"] = p.confidence_score
            break
    return result


def _top(counter: Counter, limit: int) -> List[str]:
    return [key for key, _ in counter.most_common(limit)]


def format_patterns_for_context(patterns: List[BehavioralPattern]) -> PatternSummary:
    """Condense stored patterns into the lists rendered in the context document."""
    summary = PatternSummary()

    task_times: Counter = Counter()
    reminder_times: Counter = Counter()
    for p in _by_type(patterns, "timing"):
        label = p.pattern_data.get("preferred_time") or p.pattern_data.get("time_bucket")
        if not label:
            continue
        if p.pattern_data.get("item") == "reminder":
            reminder_times[label] += p.frequency
        else:
            task_times[label] += p.frequency
    summary.task_preferred_times = _top(task_times, 3)
    summary.reminder_preferred_times = _top(reminder_times, 3)

    categories: Counter = Counter()
    for p in _by_type(patterns, "category"):
        categories[p.pattern_data.get("category")] += p.frequency
    summary.common_categories = _top(categories, 5)

    combos: Counter = Counter()
    reminder_tags: Counter = Counter()
    for p in _by_type(patterns, "tags"):
        tags = p.pattern_data.get("tags", [])
        if p.pattern_data.get("item") == "reminder":
            for tag in tags:
                reminder_tags[tag] += p.frequency
        elif len(tags) > 1:
            combos["+".join(tags)] += p.frequency
    summary.tag_combinations = _top(combos, 5)
    summary.common_tags = _top(reminder_tags, 5)

    completion: Dict[str, Counter] = {}
    for p in _by_type(patterns, "completion"):
        completion.setdefault(p.pattern_data.get("category"), Counter())[p.pattern_data.get("completed")] += p.frequency
    for cat, buckets in sorted(completion.items(), key=lambda kv: -sum(kv[1].values())):
        bucket, count = buckets.most_common(1)[0]
        summary.completion_habits.append(f"{cat}: usually {bucket.replace('_', ' ')} ({count}x)")

    frequencies: Counter = Counter()
    for p in _by_type(patterns, "recurring"):
        summary.recurring_items.append(f"{p.pattern_data.get('title')} ({p.pattern_data.get('frequency')})")
        frequencies[p.pattern_data.get("frequency")] += p.frequency
    summary.recurring_patterns = [f"{freq} ({count}x)" for freq, count in frequencies.most_common(5)]
    return summary
