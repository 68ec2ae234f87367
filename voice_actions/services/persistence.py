"""Per-kind item stores and the isolated save loop used by the pipeline."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from psycopg.types.json import Json

from voice_actions.models import (
    ExtractedItems,
    GeneralNote,
    HealthNote,
    Reminder,
    SavedHealthNote,
    SavedReminder,
    SavedTask,
    Task,
)
from voice_actions.storage.postgres import PostgresBackedStore, UNSET, unwrap_json

logger = logging.getLogger("voice_actions.persistence")


def _new_id() -> str:
    return str(uuid.uuid4())


class TaskRepository(PostgresBackedStore):
    store_name = "task store"

    def __init__(self, conn: Any = UNSET) -> None:
        super().__init__(conn)
        self._memory: Dict[str, Dict[str, SavedTask]] = {}

    def save(self, user_id: str, task: Task, source_recording_id: Optional[str] = None) -> SavedTask:
        saved = SavedTask(
            **task.model_dump(), id=_new_id(), user_id=user_id, source_recording_id=source_recording_id
        )
        if self.conn is None:
            with self._lock:
                self._memory.setdefault(user_id, {})[saved.id] = saved
            return saved
        self._execute(
            """
            INSERT INTO tasks (id, user_id, title, description, priority, due_date, due_time,
                               category, tags, source_recording_id, created_at)
            VALUES (%(id)s, %(user_id)s, %(title)s, %(description)s, %(priority)s, %(due_date)s,
                    %(due_time)s, %(category)s, %(tags)s, %(source_recording_id)s, %(created_at)s)
            """,
            {**saved.model_dump(exclude={"completed_at"}), "tags": Json(saved.tags)},
        )
        return saved

    def get(self, user_id: str, task_id: str) -> Optional[SavedTask]:
        if self.conn is None:
            with self._lock:
                return self._memory.get(user_id, {}).get(task_id)
        row = self._execute(
            "SELECT * FROM tasks WHERE user_id = %(user_id)s AND id = %(id)s",
            {"user_id": user_id, "id": task_id},
            fetch="one",
        )
        return self._from_row(row) if row else None

    def mark_completed(self, user_id: str, task_id: str, completed_at: Optional[datetime] = None) -> Optional[SavedTask]:
        when = completed_at or datetime.now(timezone.utc)
        if self.conn is None:
            with self._lock:
                current = self._memory.get(user_id, {}).get(task_id)
                if current is None:
                    return None
                updated = current.model_copy(update={"completed_at": when})
                self._memory[user_id][task_id] = updated
                return updated
        row = self._execute(
            """
            UPDATE tasks SET completed_at = %(completed_at)s
            WHERE user_id = %(user_id)s AND id = %(id)s
            RETURNING *
            """,
            {"user_id": user_id, "id": task_id, "completed_at": when},
            fetch="one",
        )
        return self._from_row(row) if row else None

    def list_for_user(self, user_id: str) -> List[SavedTask]:
        if self.conn is None:
            with self._lock:
                return sorted(self._memory.get(user_id, {}).values(), key=lambda t: t.created_at)
        rows = self._execute(
            "SELECT * FROM tasks WHERE user_id = %(user_id)s ORDER BY created_at",
            {"user_id": user_id},
            fetch="all",
        )
        return [self._from_row(row) for row in rows or []]

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> SavedTask:
        data = dict(row)
        data["id"] = str(data["id"])
        data["tags"] = list(unwrap_json(data.get("tags")) or [])
        if data.get("due_date") is not None:
            data["due_date"] = str(data["due_date"])
        return SavedTask(**data)


class ReminderRepository(PostgresBackedStore):
    store_name = "reminder store"

    def __init__(self, conn: Any = UNSET) -> None:
        super().__init__(conn)
        self._memory: Dict[str, List[SavedReminder]] = {}

    def save(self, user_id: str, reminder: Reminder, source_recording_id: Optional[str] = None) -> SavedReminder:
        saved = SavedReminder(
            **reminder.model_dump(), id=_new_id(), user_id=user_id, source_recording_id=source_recording_id
        )
        if self.conn is None:
            with self._lock:
                self._memory.setdefault(user_id, []).append(saved)
            return saved
        self._execute(
            """
            INSERT INTO reminders (id, user_id, title, description, reminder_time, is_recurring,
                                   recurrence_pattern, tags, priority, type, source_recording_id, created_at)
            VALUES (%(id)s, %(user_id)s, %(title)s, %(description)s, %(reminder_time)s, %(is_recurring)s,
                    %(recurrence_pattern)s, %(tags)s, %(priority)s, %(type)s, %(source_recording_id)s,
                    %(created_at)s)
            """,
            {**saved.model_dump(), "tags": Json(saved.tags)},
        )
        return saved

    def list_for_user(self, user_id: str) -> List[SavedReminder]:
        if self.conn is None:
            with self._lock:
                return list(self._memory.get(user_id, []))
        rows = self._execute(
            "SELECT * FROM reminders WHERE user_id = %(user_id)s ORDER BY created_at",
            {"user_id": user_id},
            fetch="all",
        )
        result = []
        for row in rows or []:
            data = dict(row)
            data["id"] = str(data["id"])
            data["tags"] = list(unwrap_json(data.get("tags")) or [])
            if isinstance(data.get("reminder_time"), datetime):
                data["reminder_time"] = data["reminder_time"].isoformat()
            result.append(SavedReminder(**data))
        return result


class HealthNoteRepository(PostgresBackedStore):
    store_name = "health note store"

    def __init__(self, conn: Any = UNSET) -> None:
        super().__init__(conn)
        self._memory: Dict[str, List[SavedHealthNote]] = {}

    def save(self, user_id: str, note: HealthNote, source_recording_id: Optional[str] = None) -> SavedHealthNote:
        saved = SavedHealthNote(
            **note.model_dump(), id=_new_id(), user_id=user_id, source="voice", source_recording_id=source_recording_id
        )
        if self.conn is None:
            with self._lock:
                self._memory.setdefault(user_id, []).append(saved)
            return saved
        self._execute(
            """
            INSERT INTO health_notes (id, user_id, content, category, tags, source, source_recording_id, created_at)
            VALUES (%(id)s, %(user_id)s, %(content)s, %(category)s, %(tags)s, %(source)s,
                    %(source_recording_id)s, %(created_at)s)
            """,
            {**saved.model_dump(), "tags": Json(saved.tags)},
        )
        return saved

    def list_for_user(self, user_id: str) -> List[SavedHealthNote]:
        if self.conn is None:
            with self._lock:
                return list(self._memory.get(user_id, []))
        rows = self._execute(
            "SELECT * FROM health_notes WHERE user_id = %(user_id)s ORDER BY created_at",
            {"user_id": user_id},
            fetch="all",
        )
        return [
            SavedHealthNote(**{**row, "id": str(row["id"]), "tags": list(unwrap_json(row.get("tags")) or [])})
            for row in rows or []
        ]


@dataclass
class ItemRepositories:
    tasks: Any = field(default_factory=TaskRepository)
    reminders: Any = field(default_factory=ReminderRepository)
    health_notes: Any = field(default_factory=HealthNoteRepository)


@dataclass
class PersistenceReport:
    tasks: List[SavedTask] = field(default_factory=list)
    reminders: List[SavedReminder] = field(default_factory=list)
    health_notes: List[SavedHealthNote] = field(default_factory=list)
    general_notes: List[GeneralNote] = field(default_factory=list)
    failed: Dict[str, int] = field(default_factory=lambda: {"tasks": 0, "reminders": 0, "health_notes": 0})

    @property
    def saved_count(self) -> int:
        return len(self.tasks) + len(self.reminders) + len(self.health_notes)

    @property
    def failed_count(self) -> int:
        return sum(self.failed.values())

    @property
    def total_failure(self) -> bool:
        """True when items were attempted and none of them could be saved."""
        return self.failed_count > 0 and self.saved_count == 0


def persist_items(
    repos: ItemRepositories,
    user_id: str,
    items: ExtractedItems,
    source_recording_id: Optional[str] = None,
) -> PersistenceReport:
    """Save every item independently; failures are logged and skipped."""
    report = PersistenceReport(general_notes=list(items.general_notes))

    for task in items.tasks:
        try:
            report.tasks.append(repos.tasks.save(user_id, task, source_recording_id))
        except Exception:
            report.failed["tasks"] += 1
            logger.exception("[persist.task.error] user_id=%s title=%r", user_id, task.title)

    for reminder in items.reminders:
        try:
            report.reminders.append(repos.reminders.save(user_id, reminder, source_recording_id))
        except Exception:
            report.failed["reminders"] += 1
            logger.exception("[persist.reminder.error] user_id=%s title=%r", user_id, reminder.title)

    for note in items.health_notes:
        try:
            report.health_notes.append(repos.health_notes.save(user_id, note, source_recording_id))
        except Exception:
            report.failed["health_notes"] += 1
            logger.exception("[persist.health_note.error] user_id=%s category=%s", user_id, note.category)

    logger.info(
        "[persist.done] user_id=%s tasks=%s reminders=%s health_notes=%s failed=%s",
        user_id,
        len(report.tasks),
        len(report.reminders),
        len(report.health_notes),
        report.failed,
    )
    return report
