"""CLI command implementations for upsert-race."""

from __future__ import annotations

import json
import random
import sys
import uuid
from typing import Any

from upsert_race.config import RaceConfig, parse_db_url
from upsert_race.errors import UpsertRaceError
from upsert_race.logging import bind_context, clear_context, get_logger
from upsert_race.orchestrator import RaceOrchestrator
from upsert_race.persistence.connection import SessionFactory
from upsert_race.persistence.queries import server_metadata
from upsert_race.persistence.schema import create_event_table, reset_event_table
from upsert_race.verification import EventRowVerifier

logger = get_logger(__name__)


def session_factory_for(config: RaceConfig) -> SessionFactory:
    database_url = config.validate()
    return SessionFactory(
        database_url,
        user=config.user,
        password=config.password,
        connect_timeout=config.connect_timeout,
    )


def _target(config: RaceConfig) -> dict[str, Any]:
    """Host and database of the configured URL, without credentials."""
    if config.database_url is None:
        return {}
    try:
        params = parse_db_url(config.database_url)
    except UpsertRaceError:
        # key=value conninfo strings are passed through to psycopg unparsed
        return {}
    return {"host": params["host"], "port": params["port"], "dbname": params["dbname"]}


def _print(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def init_schema(config: RaceConfig, reset: bool = False) -> int:
    """Create the event table, optionally emptying it."""
    factory = session_factory_for(config)
    with factory.session() as conn:
        create_event_table(conn)
        if reset:
            reset_event_table(conn)
    logger.info("schema_ready", reset=reset, **_target(config))
    return 0


def info(config: RaceConfig) -> int:
    """Print metadata about the configured server."""
    factory = session_factory_for(config)
    with factory.session(autocommit=True) as conn:
        metadata = server_metadata(conn)
    metadata.update(_target(config))
    if metadata["max_connections"] < config.writers:
        logger.warning(
            "max_connections_below_writers",
            max_connections=metadata["max_connections"],
            writers=config.writers,
        )
    _print(metadata)
    return 0


def run(
    config: RaceConfig,
    event_id: uuid.UUID | None = None,
    verify: bool = True,
    keep_rows: bool = False,
) -> int:
    """
    Run one race on an empty event table and check the converged row.

    With ``keep_rows`` the table is left as it is. Other rows then make the
    one-row check meaningless, so verification is skipped.

    Returns:
        Process exit code: 0 on success, 1 if the post-condition failed
    """
    factory = session_factory_for(config)
    event_id = event_id or uuid.uuid4()
    if keep_rows:
        verify = False
    else:
        with factory.session() as conn:
            create_event_table(conn)
            reset_event_table(conn)
    orchestrator = RaceOrchestrator(
        factory,
        config.isolation_level,
        start_delay=config.start_delay,
        use_barrier=config.use_barrier,
        order=config.order,
        rng=random.Random(config.seed),
    )

    bind_context(event_id=str(event_id), isolation_level=config.isolation_level.name)
    try:
        report = orchestrator.run(event_id, config.name, config.writers)
        summary = report.summary()

        if verify:
            expected = report.highest_committed_version
            if expected is None:
                logger.error("no_writer_committed", writers=config.writers)
                summary["verified"] = False
                _print(summary)
                return 1
            result = EventRowVerifier(factory, event_id, config.name, expected).verify()
            summary["verified"] = result.is_ok
            summary["verification"] = result.message
            if not result.is_ok:
                summary["verification_details"] = result.details
                _print(summary)
                return 1

        _print(summary)
        return 0
    finally:
        clear_context()


def fail(error: UpsertRaceError) -> int:
    """Report a surfaced error and return the exit code."""
    logger.error("command_failed", error=str(error), error_code=error.error_code.value)
    print(f"Error: {error}", file=sys.stderr)
    return 2
