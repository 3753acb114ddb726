"""SQL statements and query helpers for the event table."""

from __future__ import annotations

import uuid
from typing import Any

from psycopg.rows import class_row

from upsert_race.errors import InvalidConfigurationError
from upsert_race.models import NAME_MAX_LENGTH, VERSION_MAX, VERSION_MIN, EventRow

# Conditional upsert. The WHERE clause on the update branch drops any write
# whose version is not strictly greater than the stored one.
UPSERT_EVENT_SQL = """
INSERT INTO event (id, name, version) VALUES (%s, %s, %s)
ON CONFLICT (id) DO UPDATE
   SET name = %s, version = %s
 WHERE event.version < %s
"""

SELECT_EVENTS_SQL = "SELECT id, name, version FROM event"

SELECT_EVENT_SQL = "SELECT id, name, version FROM event WHERE id = %s"


def upsert_params(event_id: Any, name: Any, version: Any) -> tuple[uuid.UUID, str, int, str, int, int]:
    """
    Validate and bind the six positional parameters of UPSERT_EVENT_SQL.

    The name fills the insert and update slots; the version fills the insert,
    update and guard slots.

    Args:
        event_id: Row key, a UUID or its string form
        name: Payload, at most 255 characters
        version: Signed 64-bit version

    Returns:
        Parameters in statement order

    Raises:
        InvalidConfigurationError: If any value cannot be bound to its column
    """
    if isinstance(event_id, str):
        try:
            event_id = uuid.UUID(event_id)
        except ValueError as e:
            raise InvalidConfigurationError(f"Invalid event id {event_id!r}", cause=e) from e
    if not isinstance(event_id, uuid.UUID):
        raise InvalidConfigurationError(f"Event id must be a UUID, got {type(event_id).__name__}")

    if not isinstance(name, str):
        raise InvalidConfigurationError(f"Event name must be a string, got {type(name).__name__}")
    if len(name) > NAME_MAX_LENGTH:
        raise InvalidConfigurationError(f"Event name is {len(name)} characters, limit is {NAME_MAX_LENGTH}")

    # bool is an int subclass but not a version
    if isinstance(version, bool) or not isinstance(version, int):
        raise InvalidConfigurationError(f"Version must be an integer, got {type(version).__name__}")
    if not VERSION_MIN <= version <= VERSION_MAX:
        raise InvalidConfigurationError(f"Version {version} does not fit in a signed 64-bit column")

    return (event_id, name, version, name, version, version)


def upsert_event(conn: Any, event_id: Any, name: str, version: int) -> int:
    """
    Run the conditional upsert inside the caller's transaction.

    The caller commits or rolls back.

    Returns:
        Number of rows inserted or updated (0 when the write was stale)
    """
    params = upsert_params(event_id, name, version)
    with conn.cursor() as cur:
        cur.execute(UPSERT_EVENT_SQL, params)
        return int(cur.rowcount)


def fetch_events(conn: Any) -> list[EventRow]:
    """Read every row of the event table."""
    with conn.cursor(row_factory=class_row(EventRow)) as cur:
        cur.execute(SELECT_EVENTS_SQL)
        return list(cur.fetchall())


def fetch_event(conn: Any, event_id: uuid.UUID) -> EventRow | None:
    with conn.cursor(row_factory=class_row(EventRow)) as cur:
        cur.execute(SELECT_EVENT_SQL, (event_id,))
        row: EventRow | None = cur.fetchone()
        return row


def server_metadata(conn: Any) -> dict[str, Any]:
    """
    Describe the server a session is connected to.

    Useful before a race: every writer holds its own connection, so
    ``max_connections`` bounds how many writers can run at once.

    Returns:
        Dict with server_version, max_connections and
        default_transaction_isolation
    """
    metadata: dict[str, Any] = {}
    with conn.cursor() as cur:
        cur.execute("SHOW server_version")
        metadata["server_version"] = cur.fetchone()[0]
        cur.execute("SHOW max_connections")
        metadata["max_connections"] = int(cur.fetchone()[0])
        cur.execute("SHOW default_transaction_isolation")
        metadata["default_transaction_isolation"] = cur.fetchone()[0]
    return metadata
