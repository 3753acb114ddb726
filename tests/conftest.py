"""Shared pytest fixtures: in-memory sessions and a PostgreSQL container."""

from collections.abc import Generator
from typing import Any

import pytest

from tests.fakes import FakeDatabase, FakeSessionFactory
from upsert_race.persistence.connection import SessionFactory
from upsert_race.persistence.schema import create_event_table, reset_event_table

DB_USER = "db-user"
PASSWORD = "aBcDeFg54321"
DB_NAME = "sampleDB"


# =============================================================================
# In-memory sessions
# =============================================================================


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_factory(fake_db: FakeDatabase) -> FakeSessionFactory:
    return FakeSessionFactory(fake_db)


# =============================================================================
# PostgreSQL Container (Session-Scoped)
# =============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """Start PostgreSQL once per test session, or skip if Docker is unavailable."""
    from testcontainers.postgres import PostgresContainer  # type: ignore[import-untyped]

    # Every writer holds its own connection, so leave headroom above 100.
    try:
        container = PostgresContainer(
            "postgres:16",
            username=DB_USER,
            password=PASSWORD,
            dbname=DB_NAME,
        ).with_command("postgres -c max_connections=250")
        container.start()
    except Exception as e:
        pytest.skip(f"PostgreSQL container unavailable: {e}")
    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session")
def postgres_url(postgres_container: Any) -> str:
    """Get a psycopg3 connection URL for the container."""
    url = postgres_container.get_connection_url()
    # testcontainers returns SQLAlchemy style URLs
    if "+psycopg2" in url:
        url = url.replace("+psycopg2", "")
    return str(url)


@pytest.fixture
def session_factory(postgres_url: str) -> SessionFactory:
    return SessionFactory(postgres_url, user=DB_USER, password=PASSWORD, connect_timeout=10)


@pytest.fixture
def event_table(session_factory: SessionFactory) -> SessionFactory:
    """Empty event table; yields the factory that can reach it."""
    with session_factory.session() as conn:
        create_event_table(conn)
        reset_event_table(conn)
    return session_factory
