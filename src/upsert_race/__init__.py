"""
upsert-race - concurrent, monotonic versioned upserts on PostgreSQL.

Many writers race to install versions of the same event row. A single
conditional upsert (INSERT ... ON CONFLICT DO UPDATE ... WHERE the stored
version is older) keeps the row monotonic without any retry loop, so after
the race the row holds the highest committed version and its payload at
every isolation level.

This package provides:
- Upserter: one-shot writer owning one session
- RaceOrchestrator: races N writers on one key from a thread pool
- EventRowVerifier: checks the converged row afterwards
- SessionFactory: opens independent psycopg sessions
"""

__version__ = "0.1.0"

from psycopg import IsolationLevel

from upsert_race.config import RaceConfig, load_config, parse_isolation_level
from upsert_race.errors import (
    ErrorCode,
    InvalidConfigurationError,
    SessionError,
    UpsertRaceBaseException,
    UpsertRaceError,
    VerificationError,
    is_serialization_failure,
)
from upsert_race.models import EventRow, SubmissionOrder, UpsertOutcome, UpserterState
from upsert_race.orchestrator import BarrierGate, DelayGate, RaceOrchestrator, RaceReport, StartGate
from upsert_race.persistence import SessionFactory
from upsert_race.upserter import Upserter
from upsert_race.verification import EventRowVerifier, VerifyResult, VerifyStatus, assert_verified

__all__ = [
    # Core
    "Upserter",
    "RaceOrchestrator",
    "RaceReport",
    "EventRowVerifier",
    "SessionFactory",
    # Start gates
    "StartGate",
    "DelayGate",
    "BarrierGate",
    # Models
    "EventRow",
    "IsolationLevel",
    "SubmissionOrder",
    "UpsertOutcome",
    "UpserterState",
    # Verification
    "VerifyResult",
    "VerifyStatus",
    "assert_verified",
    # Configuration
    "RaceConfig",
    "load_config",
    "parse_isolation_level",
    # Errors
    "ErrorCode",
    "InvalidConfigurationError",
    "SessionError",
    "UpsertRaceBaseException",
    "UpsertRaceError",
    "VerificationError",
    "is_serialization_failure",
]
