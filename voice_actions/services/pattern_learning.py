"""
Behavioral pattern learner.

Derives pattern observations from saved tasks and reminders and feeds them to
the pattern store. Each observation is keyed by a signature of its
``pattern_data`` so repeated identical habits accumulate frequency on one row.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from voice_actions.models import SavedReminder, SavedTask
from voice_actions.services.time_resolver import WEEKDAYS

logger = logging.getLogger("voice_actions.patterns")

PATTERN_TYPES = ("timing", "category", "priority", "tags", "completion", "recurring")


@dataclass(frozen=True)
class PatternObservation:
    pattern_type: str
    pattern_data: Dict[str, Any] = field(default_factory=dict)
    # No category/tag context behind the observation; confidence is halved
    sparse: bool = False

    @property
    def signature(self) -> str:
        canonical = json.dumps(self.pattern_data, sort_keys=True, ensure_ascii=False)
        return hashlib.sha1(f"{self.pattern_type}:{canonical}".encode("utf-8")).hexdigest()


def time_bucket(hhmm: Optional[str]) -> Optional[str]:
    if not hhmm:
        return None
    try:
        hour = int(hhmm.split(":", 1)[0])
    except ValueError:
        return None
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def _clean_tags(tags: List[str]) -> List[str]:
    return sorted({t.strip().lower() for t in tags if t and t.strip()})


def _clean_category(category: Optional[str]) -> Optional[str]:
    if not category or not category.strip():
        return None
    return category.strip().lower()


def _completion_bucket(created_at: datetime, completed_at: datetime) -> str:
    hours = (completed_at - created_at).total_seconds() / 3600
    if hours < 24:
        return "within_day"
    if hours < 72:
        return "within_3_days"
    if hours < 168:
        return "within_week"
    return "over_week"


def analyze_task(task: SavedTask) -> List[PatternObservation]:
    """Observations for a saved (or just completed) task."""
    category = _clean_category(task.category)
    tags = _clean_tags(task.tags)
    observations: List[PatternObservation] = []

    if task.due_date:
        weekday = None
        try:
            weekday = WEEKDAYS[datetime.fromisoformat(task.due_date).weekday()]
        except ValueError:
            pass
        observations.append(
            PatternObservation(
                "timing",
                {
                    "item": "task",
                    "preferred_time": task.due_time,
                    "time_bucket": time_bucket(task.due_time),
                    "due_weekday": weekday,
                },
                sparse=task.due_time is None,
            )
        )

    if category:
        observations.append(PatternObservation("category", {"item": "task", "category": category}))

    observations.append(
        PatternObservation(
            "priority",
            {"item": "task", "priority": task.priority, "category": category},
            sparse=category is None,
        )
    )

    if tags:
        observations.append(
            PatternObservation("tags", {"item": "task", "tags": tags, "category": category})
        )

    if task.completed_at is not None and category:
        created = task.created_at if task.created_at.tzinfo else task.created_at.replace(tzinfo=timezone.utc)
        completed = task.completed_at if task.completed_at.tzinfo else task.completed_at.replace(tzinfo=timezone.utc)
        observations.append(
            PatternObservation(
                "completion",
                {"item": "task", "category": category, "completed": _completion_bucket(created, completed)},
            )
        )
    return observations


def analyze_reminder(reminder: SavedReminder) -> List[PatternObservation]:
    tags = _clean_tags(reminder.tags)
    observations: List[PatternObservation] = []

    when: Optional[datetime] = None
    if reminder.reminder_time:
        try:
            when = datetime.fromisoformat(reminder.reminder_time)
        except ValueError:
            when = None
    if when is not None:
        hhmm = when.strftime("%H:%M")
        observations.append(
            PatternObservation(
                "timing",
                {"item": "reminder", "preferred_time": hhmm, "time_bucket": time_bucket(hhmm)},
            )
        )

    observations.append(
        PatternObservation(
            "priority",
            {"item": "reminder", "priority": reminder.priority, "type": reminder.type},
            sparse=not tags,
        )
    )

    if tags:
        observations.append(PatternObservation("tags", {"item": "reminder", "tags": tags}))

    if reminder.is_recurring and reminder.recurrence_pattern:
        observations.append(
            PatternObservation(
                "recurring",
                {
                    "item": "reminder",
                    "title": reminder.title.strip().lower(),
                    "frequency": reminder.recurrence_pattern.strip().lower(),
                    "common_time": when.strftime("%H:%M") if when else None,
                    "common_day": WEEKDAYS[when.weekday()] if when else None,
                },
            )
        )
    return observations


@dataclass
class PatternAnalysis:
    user_id: str
    tasks_analyzed: int = 0
    reminders_analyzed: int = 0
    patterns_updated: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)


class PatternLearner:
    """Applies observations to a pattern store; one call per item event."""

    def __init__(self, store) -> None:
        self.store = store

    def learn_from_task(self, user_id: str, task: SavedTask) -> int:
        return self._apply(user_id, analyze_task(task), kind="task", item_id=task.id)

    def learn_from_reminder(self, user_id: str, reminder: SavedReminder) -> int:
        return self._apply(user_id, analyze_reminder(reminder), kind="reminder", item_id=reminder.id)

    def _apply(self, user_id: str, observations: List[PatternObservation], *, kind: str, item_id: str) -> int:
        seen_at = datetime.now(timezone.utc)
        applied: List[str] = []
        for observation in observations:
            try:
                self.store.upsert(user_id, observation, seen_at=seen_at)
            except Exception:
                logger.exception(
                    "[patterns.upsert.error] user_id=%s kind=%s item_id=%s pattern_type=%s",
                    user_id,
                    kind,
                    item_id,
                    observation.pattern_type,
                )
                continue
            applied.append(observation.pattern_type)
        logger.info(
            "[patterns.learn] user_id=%s kind=%s item_id=%s observations=%s failed=%s",
            user_id,
            kind,
            item_id,
            applied,
            len(observations) - len(applied),
        )
        return len(applied)

    def analyze_user(self, user_id: str, repos) -> PatternAnalysis:
        """Re-derive every pattern from the user's saved tasks and reminders.

        Observations are counted across all items and merged into the store so
        that no stored frequency goes down. Running it twice changes nothing.
        """
        tasks = repos.tasks.list_for_user(user_id)
        reminders = repos.reminders.list_for_user(user_id)
        grouped: Dict[str, List[Any]] = {}

        def _collect(observations: List[PatternObservation], seen_at: datetime) -> None:
            for observation in observations:
                entry = grouped.setdefault(observation.signature, [observation, 0, seen_at])
                entry[1] += 1
                entry[2] = max(entry[2], seen_at)

        for task in tasks:
            _collect(analyze_task(task), task.completed_at or task.created_at)
        for reminder in reminders:
            _collect(analyze_reminder(reminder), reminder.created_at)

        report = PatternAnalysis(user_id=user_id, tasks_analyzed=len(tasks), reminders_analyzed=len(reminders))
        for observation, count, seen_at in grouped.values():
            try:
                self.store.merge(user_id, observation, frequency=count, seen_at=seen_at)
            except Exception:
                logger.exception(
                    "[patterns.analyze.error] user_id=%s pattern_type=%s", user_id, observation.pattern_type
                )
                continue
            report.patterns_updated += 1
            report.by_type[observation.pattern_type] = report.by_type.get(observation.pattern_type, 0) + 1

        logger.info(
            "[patterns.analyze] user_id=%s tasks=%s reminders=%s patterns=%s",
            user_id,
            report.tasks_analyzed,
            report.reminders_analyzed,
            report.patterns_updated,
        )
        return report
