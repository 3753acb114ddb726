"""Value types shared by the writers, the orchestrator and the verifier."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum

# Column bounds of the event table.
NAME_MAX_LENGTH = 255
VERSION_MIN = -(2**63)
VERSION_MAX = 2**63 - 1


@dataclass(frozen=True)
class EventRow:
    """One row of the ``event`` table."""

    id: uuid.UUID
    name: str
    version: int = 0


class UpserterState(Enum):
    """Lifecycle of a single writer. Transitions are one-way."""

    PREPARED = "PREPARED"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"
    CLOSED = "CLOSED"


class SubmissionOrder(Enum):
    """Order in which writers are handed to the worker pool."""

    SHUFFLED = "shuffled"
    ASCENDING = "ascending"
    DESCENDING = "descending"

    @classmethod
    def parse(cls, value: str | SubmissionOrder) -> SubmissionOrder:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(o.value for o in cls)
            raise ValueError(f"Unknown submission order {value!r} (expected one of: {choices})") from None


@dataclass(frozen=True)
class UpsertOutcome:
    """Result of one writer after it has performed.

    Attributes:
        version: Version the writer submitted
        success: True if the statement executed and the transaction committed
        rows_affected: Row count reported by the statement (0 for a stale write)
        error: Driver error message if the writer failed
        serialization_failure: True if the database aborted the writer to keep
            transactions serializable
    """

    version: int
    success: bool
    rows_affected: int | None = None
    error: str | None = None
    serialization_failure: bool = False
