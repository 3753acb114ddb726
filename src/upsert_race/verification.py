"""
Post-condition checks for a finished race.

This module provides:
- VerifyResult: Result of a verification check
- EventRowVerifier: Reads the event table on a fresh session and checks the
  converged row
- assert_verified: Turns a failed result into a VerificationError

Verification runs strictly after every writer has released its session.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from upsert_race.errors import VerificationError
from upsert_race.logging import get_logger
from upsert_race.models import EventRow
from upsert_race.persistence.connection import SessionFactory
from upsert_race.persistence.queries import fetch_events

logger = get_logger(__name__)


class VerifyStatus(Enum):
    """Status of a verification check."""

    OK = "OK"
    FAILED = "FAILED"


@dataclass
class VerifyResult:
    """
    Result of a verification check.

    Attributes:
        status: The verification status
        message: Human-readable description of the result
        details: Expected and observed values
        rows: Rows read from the event table
        timestamp: When the verification was performed
    """

    status: VerifyStatus
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    rows: list[EventRow] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def ok(cls, message: str = "Verification passed", rows: list[EventRow] | None = None) -> VerifyResult:
        return cls(status=VerifyStatus.OK, message=message, rows=rows or [])

    @classmethod
    def failed(
        cls,
        message: str,
        details: dict[str, Any] | None = None,
        rows: list[EventRow] | None = None,
    ) -> VerifyResult:
        return cls(status=VerifyStatus.FAILED, message=message, details=details or {}, rows=rows or [])

    @property
    def is_ok(self) -> bool:
        return self.status == VerifyStatus.OK


def assert_verified(result: VerifyResult) -> None:
    """
    Raise if a verification result failed.

    Raises:
        VerificationError: Carrying the result's message and details
    """
    if not result.is_ok:
        raise VerificationError(result.message, details=result.details)


def check_rows(
    rows: list[EventRow],
    event_id: uuid.UUID,
    name: str,
    expected_version: int,
) -> VerifyResult:
    """
    Check that ``rows`` is exactly the converged row for a race.

    Args:
        rows: Every row of the event table
        event_id: Key the writers targeted
        name: Payload the writers agreed on
        expected_version: Highest version that should have won

    Returns:
        OK if there is exactly one row and it matches on id, version and name
    """
    if len(rows) != 1:
        return VerifyResult.failed(
            f"Expected exactly one event row, found {len(rows)}",
            details={"row_count": len(rows)},
            rows=rows,
        )

    row = rows[0]
    expected = EventRow(id=event_id, name=name, version=expected_version)
    mismatched = [attr for attr in ("id", "version", "name") if getattr(row, attr) != getattr(expected, attr)]
    if mismatched:
        return VerifyResult.failed(
            f"Event row does not match on {', '.join(mismatched)}",
            details={
                "expected": {"id": str(expected.id), "name": expected.name, "version": expected.version},
                "actual": {"id": str(row.id), "name": row.name, "version": row.version},
            },
            rows=rows,
        )

    return VerifyResult.ok(f"Event {event_id} converged to version {expected_version}", rows=rows)


class EventRowVerifier:
    """
    Verifies the event table after a race.

    Usage:
        verifier = EventRowVerifier(factory, event_id, "First event", expected_version=100)
        row = verifier.check()  # raises VerificationError on mismatch
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        event_id: uuid.UUID,
        name: str,
        expected_version: int,
    ) -> None:
        self.session_factory = session_factory
        self.event_id = event_id
        self.name = name
        self.expected_version = expected_version

    def verify(self) -> VerifyResult:
        """Read the table on a fresh session and compare it to the expectation."""
        with self.session_factory.session() as conn:
            rows = fetch_events(conn)
            # Read-only, but end the transaction before the session closes.
            conn.rollback()

        result = check_rows(rows, self.event_id, self.name, self.expected_version)
        if not result.is_ok:
            logger.error("verification_failed", message=result.message, **result.details)
        return result

    def check(self) -> EventRow:
        """
        Verify, raising on mismatch.

        Returns:
            The single converged row

        Raises:
            VerificationError: If the post-condition does not hold
        """
        result = self.verify()
        assert_verified(result)
        return result.rows[0]
