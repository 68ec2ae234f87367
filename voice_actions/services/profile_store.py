"""User context profile storage (onboarding data plus derived summaries)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from psycopg.types.json import Json

from voice_actions.models import UserContextProfile
from voice_actions.storage.postgres import PostgresBackedStore, UNSET, unwrap_json

logger = logging.getLogger("voice_actions.profile_store")


class ProfileStore(PostgresBackedStore):
    store_name = "profile store"

    def __init__(self, conn: Any = UNSET) -> None:
        super().__init__(conn)
        self._memory: Dict[str, UserContextProfile] = {}

    def get(self, user_id: str) -> Optional[UserContextProfile]:
        if self.conn is None:
            with self._lock:
                profile = self._memory.get(user_id)
                return profile.model_copy(deep=True) if profile else None
        row = self._execute(
            "SELECT profile FROM user_profiles WHERE user_id = %(user_id)s",
            {"user_id": user_id},
            fetch="one",
        )
        if not row:
            return None
        return UserContextProfile(**unwrap_json(row["profile"]))

    def get_or_default(self, user_id: str) -> UserContextProfile:
        return self.get(user_id) or UserContextProfile(user_id=user_id)

    def save(self, profile: UserContextProfile) -> UserContextProfile:
        profile = profile.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        if self.conn is None:
            with self._lock:
                self._memory[profile.user_id] = profile.model_copy(deep=True)
            return profile
        self._execute(
            """
            INSERT INTO user_profiles (user_id, profile, updated_at)
            VALUES (%(user_id)s, %(profile)s, %(updated_at)s)
            ON CONFLICT (user_id) DO UPDATE SET
                profile = EXCLUDED.profile,
                updated_at = EXCLUDED.updated_at
            """,
            {
                "user_id": profile.user_id,
                "profile": Json(profile.model_dump(mode="json")),
                "updated_at": profile.updated_at,
            },
        )
        return profile

    def update(self, user_id: str, **fields: Any) -> UserContextProfile:
        """Merge ``fields`` into the stored profile; unknown keys are ignored."""
        profile = self.get_or_default(user_id)
        known = {k: v for k, v in fields.items() if k in UserContextProfile.model_fields and k != "user_id"}
        dropped = set(fields) - set(known)
        if dropped:
            logger.debug("[profile.update] user_id=%s ignored_fields=%s", user_id, sorted(dropped))
        return self.save(UserContextProfile(**{**profile.model_dump(), **known}))

    def delete(self, user_id: str) -> None:
        if self.conn is None:
            with self._lock:
                self._memory.pop(user_id, None)
            return
        self._execute("DELETE FROM user_profiles WHERE user_id = %(user_id)s", {"user_id": user_id})
