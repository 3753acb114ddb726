"""
Single-use writer that installs one version of one event.

An Upserter owns the session it is given. It runs the conditional upsert
exactly once, commits or rolls back, and records whether the write
committed. Driver errors never escape ``perform()`` or ``close()``; the
outcome is read from ``success``.

PostgreSQL isolation levels:
https://www.postgresql.org/docs/current/transaction-iso.html
"""

from __future__ import annotations

import uuid
from types import TracebackType
from typing import Any

import psycopg

from upsert_race.errors import InvalidConfigurationError, is_serialization_failure, truncate_error
from upsert_race.logging import writer_logger
from upsert_race.models import UpsertOutcome, UpserterState
from upsert_race.persistence.queries import UPSERT_EVENT_SQL, upsert_params


class Upserter:
    """
    One-shot command object for a versioned upsert.

    The session's isolation level and autocommit mode are chosen by the
    caller before construction and are left untouched.

    Usage:
        conn = factory.open(IsolationLevel.READ_COMMITTED)
        with Upserter(conn, event_id, "First event", 7) as upserter:
            upserter.perform()
        assert upserter.success
    """

    def __init__(self, session: Any, event_id: uuid.UUID | str, name: str, version: int) -> None:
        """
        Bind parameters and prepare the statement.

        Args:
            session: psycopg connection, exclusively owned from now on
            event_id: Key of the row to write
            name: Payload stored with the version
            version: Version to install if it is newer than the stored one

        Raises:
            InvalidConfigurationError: If the parameters cannot be bound or the
                statement cannot be prepared on the session
        """
        self._params = upsert_params(event_id, name, version)
        self.session = session
        self.event_id: uuid.UUID = self._params[0]
        self.name = name
        self.version = version

        try:
            self._cursor = session.cursor()
        except psycopg.Error as e:
            raise InvalidConfigurationError("Failed to prepare upsert statement", cause=e) from e

        self.success = False
        self.rows_affected: int | None = None
        self.error: psycopg.Error | None = None
        self._state = UpserterState.PREPARED
        self._log = writer_logger(self.event_id, version)

    @property
    def state(self) -> UpserterState:
        return self._state

    @property
    def outcome(self) -> UpsertOutcome:
        """Snapshot of this writer's result."""
        return UpsertOutcome(
            version=self.version,
            success=self.success,
            rows_affected=self.rows_affected,
            error=truncate_error(str(self.error)) if self.error is not None else None,
            serialization_failure=self.error is not None and is_serialization_failure(self.error),
        )

    def perform(self) -> bool:
        """
        Execute the upsert and commit.

        On a driver error the transaction is rolled back and ``success``
        stays False. A writer performs at most once; later calls return the
        recorded result without touching the database.

        Returns:
            The recorded success flag
        """
        if self._state is not UpserterState.PREPARED:
            self._log.warning("upsert_already_performed", state=self._state.value)
            return self.success

        try:
            self._cursor.execute(UPSERT_EVENT_SQL, self._params, prepare=True)
            self.rows_affected = self._cursor.rowcount
            self.session.commit()
        except psycopg.Error as e:
            self.error = e
            self._state = UpserterState.ROLLED_BACK
            self._log.warning(
                "upsert_failed",
                error=truncate_error(str(e)),
                sqlstate=getattr(e, "sqlstate", None),
                serialization_failure=is_serialization_failure(e),
            )
            self._rollback()
        else:
            self.success = True
            self._state = UpserterState.COMMITTED
            self._log.debug("upsert_committed", rows_affected=self.rows_affected)
        finally:
            try:
                self._cursor.close()
            except psycopg.Error as e:
                # Not a failed upsert: the transaction is already settled.
                self._log.warning("statement_close_failed", error=str(e))

        return self.success

    def _rollback(self) -> None:
        try:
            self.session.rollback()
        except psycopg.Error as e:
            self._log.error("rollback_failed", error=truncate_error(str(e)))

    def close(self) -> None:
        """Release the session. Never changes ``success``."""
        if self._state is UpserterState.CLOSED:
            return
        if self._state is UpserterState.PREPARED:
            # Closed without performing; drop the unused statement handle.
            try:
                self._cursor.close()
            except psycopg.Error as e:
                self._log.warning("statement_close_failed", error=str(e))
        try:
            self.session.close()
        except psycopg.Error as e:
            self._log.warning("session_close_failed", error=str(e))
        self._state = UpserterState.CLOSED

    def __enter__(self) -> Upserter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"Upserter(event_id={self.event_id}, version={self.version}, "
            f"state={self._state.value}, success={self.success})"
        )
