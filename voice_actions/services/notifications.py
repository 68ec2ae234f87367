"""In-app notifications for drafted content."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from psycopg.types.json import Json

from voice_actions.models import Notification
from voice_actions.storage.postgres import PostgresBackedStore, UNSET, unwrap_json

logger = logging.getLogger("voice_actions.notifications")

CONTENT_READY_TITLE = "New Content Ready"
AI_GENERATED = "ai_generated"


def content_type_label(content_type: str) -> str:
    """``linkedin_post`` -> ``Linkedin Post``."""
    return " ".join(word[:1].upper() + word[1:] for word in content_type.replace("_", " ").split())


def document_deep_link(document_id: str) -> str:
    return f"/dashboard/pro?doc={document_id}"


class NotificationStore(PostgresBackedStore):
    store_name = "notification store"

    def __init__(self, conn: Any = UNSET) -> None:
        super().__init__(conn)
        self._memory: Dict[str, List[Notification]] = {}

    def create(self, notification: Notification) -> Notification:
        if self.conn is None:
            with self._lock:
                self._memory.setdefault(notification.user_id, []).append(notification)
            return notification
        self._execute(
            """
            INSERT INTO notifications (id, user_id, title, message, type, related_document_id,
                                       deep_link, is_read, metadata, created_at)
            VALUES (%(id)s, %(user_id)s, %(title)s, %(message)s, %(type)s, %(related_document_id)s,
                    %(deep_link)s, %(read)s, %(metadata)s, %(created_at)s)
            """,
            {**notification.model_dump(), "metadata": Json(notification.metadata)},
        )
        return notification

    def list_for_user(self, user_id: str, *, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        if self.conn is None:
            with self._lock:
                items = list(self._memory.get(user_id, []))
            if unread_only:
                items = [n for n in items if not n.read]
            items.sort(key=lambda n: n.created_at, reverse=True)
            return items[:limit]
        rows = self._execute(
            """
            SELECT id, user_id, title, message, type, related_document_id, deep_link,
                   is_read AS read, metadata, created_at
            FROM notifications
            WHERE user_id = %(user_id)s AND (NOT %(unread_only)s OR is_read = FALSE)
            ORDER BY created_at DESC
            LIMIT %(limit)s
            """,
            {"user_id": user_id, "unread_only": unread_only, "limit": limit},
            fetch="all",
        )
        return [
            Notification(**{**row, "metadata": unwrap_json(row.get("metadata")) or {}}) for row in rows or []
        ]

    def mark_read(self, user_id: str, notification_id: str) -> bool:
        if self.conn is None:
            with self._lock:
                for index, item in enumerate(self._memory.get(user_id, [])):
                    if item.id == notification_id:
                        self._memory[user_id][index] = item.model_copy(update={"read": True})
                        return True
            return False
        row = self._execute(
            """
            UPDATE notifications SET is_read = TRUE, read_at = %(read_at)s
            WHERE id = %(id)s AND user_id = %(user_id)s
            RETURNING id
            """,
            {"id": notification_id, "user_id": user_id, "read_at": datetime.now(timezone.utc)},
            fetch="one",
        )
        return row is not None

    def delete_user(self, user_id: str) -> None:
        if self.conn is None:
            with self._lock:
                self._memory.pop(user_id, None)
            return
        self._execute("DELETE FROM notifications WHERE user_id = %(user_id)s", {"user_id": user_id})


class NotificationDispatcher:
    def __init__(self, store: NotificationStore) -> None:
        self.store = store

    def notify_content_ready(
        self,
        user_id: str,
        document_id: str,
        title: str,
        content_type: str,
        *,
        generation_type: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=CONTENT_READY_TITLE,
            message=f'I drafted a {content_type_label(content_type)}: "{title}"',
            type=AI_GENERATED,
            related_document_id=document_id,
            deep_link=document_deep_link(document_id),
            metadata={"content_type": content_type, "generation_type": generation_type},
        )
        saved = self.store.create(notification)
        logger.info(
            "[notifications.content_ready] user_id=%s document_id=%s type=%s",
            user_id,
            document_id,
            content_type,
        )
        return saved
