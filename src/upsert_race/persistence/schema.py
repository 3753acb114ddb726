"""
DDL for the event table.

The table is created idempotently; there are no migrations.
"""

from __future__ import annotations

from typing import Any

EVENT_TABLE = "event"

EVENT_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS event (
    id UUID PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    version BIGINT NOT NULL DEFAULT 0
)
"""


def create_event_table(conn: Any) -> None:
    """Create the event table if it does not exist."""
    with conn.cursor() as cur:
        cur.execute(EVENT_TABLE_SCHEMA)
    conn.commit()


def reset_event_table(conn: Any) -> None:
    """Remove every row from the event table."""
    with conn.cursor() as cur:
        cur.execute("TRUNCATE TABLE event")
    conn.commit()


def drop_event_table(conn: Any) -> None:
    with conn.cursor() as cur:
        cur.execute("DROP TABLE IF EXISTS event")
    conn.commit()
