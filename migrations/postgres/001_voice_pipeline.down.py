#!/usr/bin/env python3
"""
Drop the voice pipeline tables. Destroys all stored items, patterns and history.
"""
import os

from psycopg import connect

TABLES = [
    "voice_uploads",
    "notifications",
    "generated_content",
    "user_profiles",
    "voice_transcripts",
    "user_patterns",
    "health_notes",
    "reminders",
    "tasks",
]


def main() -> None:
    dsn = os.getenv("TIMESCALE_DSN")
    if not dsn:
        raise SystemExit("TIMESCALE_DSN is not set")
    with connect(dsn) as conn:
        with conn.cursor() as cur:
            for table in TABLES:
                cur.execute(f"DROP TABLE IF EXISTS {table}")
        conn.commit()
    print(f"✅ Dropped {len(TABLES)} tables")


if __name__ == "__main__":
    main()
