"""
Session factory for PostgreSQL connections.

Every writer in a race needs a session of its own, so sessions are plain
psycopg connections opened on demand rather than borrowed from a shared
pool. The caller owns each session it opens and must close it.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg import IsolationLevel

from upsert_race.errors import SessionError
from upsert_race.logging import get_logger

logger = get_logger(__name__)


class SessionFactory:
    """
    Opens independent database sessions bound to a URL and credentials.

    Usage:
        factory = SessionFactory("postgresql://localhost/sampleDB", "db-user", "secret")
        conn = factory.open(IsolationLevel.SERIALIZABLE)
        try:
            ...
        finally:
            conn.close()
    """

    def __init__(
        self,
        url: str,
        user: str | None = None,
        password: str | None = None,
        connect_timeout: int | None = None,
    ) -> None:
        """
        Initialize the factory.

        Args:
            url: PostgreSQL connection string (URL or key=value conninfo)
            user: Role name, overriding any user in the URL
            password: Password, overriding any password in the URL
            connect_timeout: Seconds to wait while establishing a connection
        """
        self.url = url
        self.user = user
        self.password = password
        self.connect_timeout = connect_timeout

    def _connect_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if self.user is not None:
            kwargs["user"] = self.user
        if self.password is not None:
            kwargs["password"] = self.password
        if self.connect_timeout is not None:
            kwargs["connect_timeout"] = self.connect_timeout
        return kwargs

    def open(
        self,
        isolation_level: IsolationLevel | None = None,
        autocommit: bool = False,
    ) -> psycopg.Connection[Any]:
        """
        Open a new session.

        Args:
            isolation_level: Isolation level for every transaction on the session.
                None keeps the server default.
            autocommit: Whether statements commit on their own

        Returns:
            A connected session, owned by the caller

        Raises:
            SessionError: If the connection cannot be established or configured
        """
        try:
            conn = psycopg.connect(self.url, autocommit=autocommit, **self._connect_kwargs())
        except psycopg.Error as e:
            raise SessionError("Failed to open database session", cause=e) from e

        if isolation_level is not None:
            try:
                conn.isolation_level = isolation_level
            except psycopg.Error as e:
                conn.close()
                raise SessionError(f"Failed to set isolation level {isolation_level.name}", cause=e) from e

        logger.debug(
            "session_opened",
            autocommit=autocommit,
            isolation_level=isolation_level.name if isolation_level is not None else None,
        )
        return conn

    @contextmanager
    def session(
        self,
        isolation_level: IsolationLevel | None = None,
        autocommit: bool = False,
    ) -> Iterator[psycopg.Connection[Any]]:
        """Open a session for the duration of a ``with`` block."""
        conn = self.open(isolation_level, autocommit=autocommit)
        try:
            yield conn
        finally:
            conn.close()
