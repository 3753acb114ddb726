"""PostgreSQL sessions, schema and queries for the event table."""

from upsert_race.persistence.connection import SessionFactory
from upsert_race.persistence.queries import (
    UPSERT_EVENT_SQL,
    fetch_event,
    fetch_events,
    server_metadata,
    upsert_event,
    upsert_params,
)
from upsert_race.persistence.schema import (
    EVENT_TABLE_SCHEMA,
    create_event_table,
    drop_event_table,
    reset_event_table,
)

__all__ = [
    "EVENT_TABLE_SCHEMA",
    "SessionFactory",
    "UPSERT_EVENT_SQL",
    "create_event_table",
    "drop_event_table",
    "fetch_event",
    "fetch_events",
    "reset_event_table",
    "server_metadata",
    "upsert_event",
    "upsert_params",
]
