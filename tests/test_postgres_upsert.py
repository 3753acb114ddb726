"""
PostgreSQL race tests.

NB: Docker needs to be running; without it these tests are skipped.

These tests verify against a real server that:
1. Stale writes are dropped (sequential monotonic ascent)
2. N concurrent writers converge on one row at the highest committed version
3. The result holds at every isolation level and submission order
"""

import random
import uuid

import pytest
from psycopg import IsolationLevel

from upsert_race.models import EventRow, SubmissionOrder
from upsert_race.orchestrator import RaceOrchestrator
from upsert_race.persistence.connection import SessionFactory
from upsert_race.persistence.queries import fetch_events, server_metadata, upsert_event
from upsert_race.upserter import Upserter
from upsert_race.verification import EventRowVerifier

pytestmark = pytest.mark.postgres

NAME = "First event"
WRITERS = 100


def _read_all(factory: SessionFactory) -> list[EventRow]:
    with factory.session(autocommit=True) as conn:
        return fetch_events(conn)


def test_container_metadata(event_table: SessionFactory) -> None:
    with event_table.session(autocommit=True) as conn:
        metadata = server_metadata(conn)

    assert metadata["max_connections"] > WRITERS
    assert metadata["server_version"]


def test_sequential_monotonic_ascent(event_table: SessionFactory) -> None:
    event_id = uuid.uuid4()

    with event_table.session() as conn:
        assert upsert_event(conn, event_id, NAME, 1) == 1
        conn.commit()
        assert fetch_events(conn) == [EventRow(event_id, NAME, 1)]

        assert upsert_event(conn, event_id, NAME, 2) == 1
        conn.commit()
        assert fetch_events(conn) == [EventRow(event_id, NAME, 2)]

        # Stale write dropped
        assert upsert_event(conn, event_id, NAME, 1) == 0
        conn.commit()
        assert fetch_events(conn) == [EventRow(event_id, NAME, 2)]


def test_single_writer_cold_start(event_table: SessionFactory) -> None:
    event_id = uuid.uuid4()
    conn = event_table.open(IsolationLevel.READ_COMMITTED)

    with Upserter(conn, event_id, NAME, 5) as upserter:
        assert upserter.perform() is True

    assert upserter.rows_affected == 1
    assert conn.closed
    assert _read_all(event_table) == [EventRow(event_id, NAME, 5)]


def test_collision_with_higher_stored_version(event_table: SessionFactory) -> None:
    event_id = uuid.uuid4()
    with event_table.session() as conn:
        upsert_event(conn, event_id, NAME, 10)
        conn.commit()

    with Upserter(event_table.open(IsolationLevel.READ_COMMITTED), event_id, NAME, 3) as upserter:
        upserter.perform()

    # No SQL error even though nothing changed
    assert upserter.success is True
    assert upserter.rows_affected == 0
    assert _read_all(event_table) == [EventRow(event_id, NAME, 10)]


def test_newer_version_replaces_name(event_table: SessionFactory) -> None:
    event_id = uuid.uuid4()
    with event_table.session() as conn:
        upsert_event(conn, event_id, "Draft", 1)
        conn.commit()

    with Upserter(event_table.open(), event_id, NAME, 2) as upserter:
        upserter.perform()

    assert _read_all(event_table) == [EventRow(event_id, NAME, 2)]


def test_concurrent_race_read_uncommitted(event_table: SessionFactory) -> None:
    event_id = uuid.uuid4()
    orchestrator = RaceOrchestrator(event_table, IsolationLevel.READ_UNCOMMITTED)

    report = orchestrator.run(event_id, NAME, WRITERS)

    assert len(report.outcomes) == WRITERS
    assert report.highest_committed_version == WRITERS
    EventRowVerifier(event_table, event_id, NAME, WRITERS).check()


def test_concurrent_race_read_committed_all_writers_commit(event_table: SessionFactory) -> None:
    event_id = uuid.uuid4()

    report = RaceOrchestrator(event_table, IsolationLevel.READ_COMMITTED).run(event_id, NAME, WRITERS)

    # At READ COMMITTED the conflicting update re-checks the latest row, so
    # nobody is aborted.
    assert report.failed == []
    EventRowVerifier(event_table, event_id, NAME, WRITERS).check()


@pytest.mark.parametrize("isolation_level", [IsolationLevel.REPEATABLE_READ, IsolationLevel.SERIALIZABLE])
def test_concurrent_race_snapshot_isolation(event_table: SessionFactory, isolation_level: IsolationLevel) -> None:
    """Writers may be aborted, but the row still holds the highest committed version."""
    event_id = uuid.uuid4()

    report = RaceOrchestrator(event_table, isolation_level).run(event_id, NAME, WRITERS)

    assert report.succeeded, "at least one writer must commit"
    assert all(o.serialization_failure for o in report.failed)
    expected = report.highest_committed_version
    assert expected is not None
    EventRowVerifier(event_table, event_id, NAME, expected).check()
    if any(o.version == WRITERS and o.success for o in report.outcomes):
        assert expected == WRITERS


def test_descending_submission(event_table: SessionFactory) -> None:
    event_id = uuid.uuid4()
    orchestrator = RaceOrchestrator(
        event_table,
        IsolationLevel.READ_UNCOMMITTED,
        order=SubmissionOrder.DESCENDING,
    )

    orchestrator.run(event_id, NAME, WRITERS)

    EventRowVerifier(event_table, event_id, NAME, WRITERS).check()


def test_barrier_release(event_table: SessionFactory) -> None:
    event_id = uuid.uuid4()
    orchestrator = RaceOrchestrator(
        event_table,
        IsolationLevel.READ_COMMITTED,
        use_barrier=True,
        rng=random.Random(1234),
    )

    report = orchestrator.run(event_id, NAME, 50)

    assert len(report.succeeded) == 50
    EventRowVerifier(event_table, event_id, NAME, 50).check()


def test_repeated_races_on_same_key_never_regress(event_table: SessionFactory) -> None:
    """A second, smaller race on the same key leaves the higher version in place."""
    event_id = uuid.uuid4()
    orchestrator = RaceOrchestrator(event_table, IsolationLevel.READ_COMMITTED, start_delay=0.05)

    orchestrator.run(event_id, NAME, 30)
    second = orchestrator.run(event_id, NAME, 10)

    assert all(o.rows_affected == 0 for o in second.succeeded)
    EventRowVerifier(event_table, event_id, NAME, 30).check()
