#!/usr/bin/env python3
"""
Create the PostgreSQL tables used by the voice pipeline.
Run this against the configured TIMESCALE_DSN.

Creates: tasks, reminders, health_notes, user_patterns, voice_transcripts,
user_profiles, generated_content, notifications, voice_uploads
"""
import os

from psycopg import connect

STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        priority TEXT NOT NULL DEFAULT 'medium',
        due_date DATE,
        due_time TEXT,
        category TEXT,
        tags JSONB NOT NULL DEFAULT '[]'::jsonb,
        source_recording_id TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        completed_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks (user_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS reminders (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        reminder_time TIMESTAMPTZ,
        is_recurring BOOLEAN NOT NULL DEFAULT FALSE,
        recurrence_pattern TEXT,
        tags JSONB NOT NULL DEFAULT '[]'::jsonb,
        priority TEXT NOT NULL DEFAULT 'medium',
        type TEXT NOT NULL DEFAULT 'reminder',
        source_recording_id TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_reminders_user ON reminders (user_id, reminder_time)",
    """
    CREATE TABLE IF NOT EXISTS health_notes (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        content TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'other',
        tags JSONB NOT NULL DEFAULT '[]'::jsonb,
        source TEXT NOT NULL DEFAULT 'voice',
        source_recording_id TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_patterns (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        pattern_type TEXT NOT NULL,
        signature TEXT NOT NULL,
        pattern_data JSONB NOT NULL DEFAULT '{}'::jsonb,
        frequency INTEGER NOT NULL DEFAULT 1,
        confidence_score DOUBLE PRECISION NOT NULL DEFAULT 0,
        sparse BOOLEAN NOT NULL DEFAULT FALSE,
        first_seen_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        last_seen_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (user_id, pattern_type, signature)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS voice_transcripts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        raw_text TEXT NOT NULL,
        cleaned_text TEXT NOT NULL,
        language TEXT NOT NULL DEFAULT 'en',
        duration_seconds DOUBLE PRECISION,
        source_recording_id TEXT,
        recorded_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_voice_transcripts_user ON voice_transcripts (user_id, recorded_at)",
    """
    CREATE TABLE IF NOT EXISTS user_profiles (
        user_id TEXT PRIMARY KEY,
        profile JSONB NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS generated_content (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        content_type TEXT NOT NULL,
        content TEXT NOT NULL,
        preview_text TEXT NOT NULL DEFAULT '',
        tags JSONB NOT NULL DEFAULT '[]'::jsonb,
        generation_type TEXT NOT NULL,
        confidence DOUBLE PRECISION NOT NULL,
        source_recording_id TEXT,
        model_used TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'ai_generated',
        related_document_id TEXT,
        deep_link TEXT,
        is_read BOOLEAN NOT NULL DEFAULT FALSE,
        read_at TIMESTAMPTZ,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id, created_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS voice_uploads (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        filename TEXT NOT NULL,
        mime_type TEXT NOT NULL,
        size_bytes BIGINT NOT NULL,
        path TEXT NOT NULL,
        source_recording_id TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
]


def main() -> None:
    dsn = os.getenv("TIMESCALE_DSN")
    if not dsn:
        raise SystemExit("TIMESCALE_DSN is not set")
    with connect(dsn) as conn:
        with conn.cursor() as cur:
            for statement in STATEMENTS:
                cur.execute(statement)
        conn.commit()
    print(f"✅ Applied {len(STATEMENTS)} statements")


if __name__ == "__main__":
    main()
