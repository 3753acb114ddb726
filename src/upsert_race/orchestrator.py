"""
Race orchestration.

Runs N writers against the same key at the same time:

1. Open one session per writer (autocommit off, chosen isolation level)
2. Build writers with versions 1..N
3. Order them (shuffled by default, to defeat ordering accidents)
4. Dispatch them to a pool of N threads
5. Hold every worker at a start gate so the pool is saturated first
6. Perform, then close, each writer
7. Wait for all workers before returning

Writers that fail do not fail the race; their outcomes are reported.
"""

from __future__ import annotations

import random
import threading
import time
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import psycopg
from psycopg import IsolationLevel

from upsert_race.errors import InvalidConfigurationError, truncate_error
from upsert_race.logging import get_logger
from upsert_race.models import SubmissionOrder, UpsertOutcome
from upsert_race.persistence.connection import SessionFactory
from upsert_race.persistence.queries import upsert_params
from upsert_race.upserter import Upserter

logger = get_logger(__name__)

DEFAULT_START_DELAY = 0.2


class StartGate(ABC):
    """Holds workers back until the pool is saturated."""

    @abstractmethod
    def wait(self) -> None:
        """Block the calling worker until it may run."""

    @abstractmethod
    def release(self) -> None:
        """Let every waiting and future worker through at once."""


class DelayGate(StartGate):
    """Fixed sleep before each writer runs.

    A scheduling tool, not a correctness mechanism: without it early writers
    may finish before later ones are dispatched.
    """

    def __init__(self, delay: float = DEFAULT_START_DELAY) -> None:
        self.delay = delay
        self._interrupted = threading.Event()

    def release(self) -> None:
        """Wake every sleeping worker early."""
        self._interrupted.set()

    def wait(self) -> None:
        if self._interrupted.wait(self.delay):
            logger.info("start_delay_interrupted", delay=self.delay)


class BarrierGate(StartGate):
    """Releases all writers together once every one of them is waiting."""

    def __init__(self, parties: int, timeout: float | None = 30.0) -> None:
        self._barrier = threading.Barrier(parties)
        self.timeout = timeout

    def release(self) -> None:
        self._barrier.abort()

    def wait(self) -> None:
        try:
            self._barrier.wait(self.timeout)
        except threading.BrokenBarrierError:
            logger.warning("start_barrier_broken", parties=self._barrier.parties)


@dataclass
class RaceReport:
    """
    Outcome of one race.

    Attributes:
        event_id: Key every writer targeted
        name: Payload every writer submitted
        writers: Number of writers
        isolation_level: Isolation level of every writer session
        outcomes: Per-writer outcomes, in submission order
        elapsed: Wall-clock seconds from dispatch to the last worker finishing
    """

    event_id: uuid.UUID
    name: str
    writers: int
    isolation_level: IsolationLevel
    outcomes: list[UpsertOutcome] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def succeeded(self) -> list[UpsertOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[UpsertOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def highest_committed_version(self) -> int | None:
        """Version the row must converge to, or None if nothing committed."""
        committed = [o.version for o in self.outcomes if o.success]
        return max(committed) if committed else None

    def summary(self) -> dict[str, Any]:
        return {
            "event_id": str(self.event_id),
            "name": self.name,
            "writers": self.writers,
            "isolation_level": self.isolation_level.name,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "serialization_failures": sum(1 for o in self.outcomes if o.serialization_failure),
            "highest_committed_version": self.highest_committed_version,
            "elapsed_seconds": round(self.elapsed, 3),
        }


class RaceOrchestrator:
    """
    Races N writers on one key.

    Usage:
        orchestrator = RaceOrchestrator(factory, IsolationLevel.SERIALIZABLE)
        report = orchestrator.run(uuid.uuid4(), "First event", writers=100)
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
        *,
        start_delay: float = DEFAULT_START_DELAY,
        use_barrier: bool = False,
        barrier_timeout: float | None = 30.0,
        order: SubmissionOrder = SubmissionOrder.SHUFFLED,
        rng: random.Random | None = None,
    ) -> None:
        """
        Args:
            session_factory: Opens one session per writer
            isolation_level: Isolation level for every writer session
            start_delay: Seconds each worker sleeps before writing
            use_barrier: Release workers with a barrier instead of a delay
            barrier_timeout: Seconds a worker waits at the barrier
            order: Order in which writers are submitted to the pool
            rng: Random source used to shuffle writers
        """
        if start_delay < 0:
            raise InvalidConfigurationError(f"Start delay must not be negative, got {start_delay}")
        self.session_factory = session_factory
        self.isolation_level = isolation_level
        self.start_delay = start_delay
        self.use_barrier = use_barrier
        self.barrier_timeout = barrier_timeout
        self.order = order
        self._rng = rng or random.Random()

    def run(self, event_id: uuid.UUID | str, name: str, writers: int) -> RaceReport:
        """
        Race ``writers`` writers with versions 1..writers on ``event_id``.

        Returns:
            Report with one outcome per writer

        Raises:
            InvalidConfigurationError: If the race parameters cannot be bound
            SessionError: If a writer session cannot be opened
        """
        if isinstance(writers, bool) or not isinstance(writers, int) or writers < 1:
            raise InvalidConfigurationError(f"A race needs at least one writer, got {writers!r}")
        event_id = upsert_params(event_id, name, writers)[0]

        sessions = self._open_sessions(writers)
        upserters = self._build_upserters(sessions, event_id, name)
        self._arrange(upserters)
        gate = self._make_gate(writers)

        logger.info(
            "race_started",
            event_id=str(event_id),
            writers=writers,
            isolation_level=self.isolation_level.name,
            order=self.order.value,
            gate=type(gate).__name__,
        )

        started = time.monotonic()
        with ThreadPoolExecutor(max_workers=writers, thread_name_prefix="upserter") as executor:
            futures = self._dispatch(executor, upserters, gate)
        elapsed = time.monotonic() - started

        report = RaceReport(
            event_id=event_id,
            name=name,
            writers=writers,
            isolation_level=self.isolation_level,
            outcomes=[self._collect(future, upserter) for future, upserter in zip(futures, upserters)],
            elapsed=elapsed,
        )
        logger.info("race_finished", **report.summary())
        return report

    def _open_sessions(self, count: int) -> list[Any]:
        sessions: list[Any] = []
        try:
            for _ in range(count):
                sessions.append(self.session_factory.open(self.isolation_level, autocommit=False))
        except Exception:
            _close_sessions(sessions)
            raise
        return sessions

    def _build_upserters(self, sessions: list[Any], event_id: uuid.UUID, name: str) -> list[Upserter]:
        upserters: list[Upserter] = []
        try:
            for version, session in enumerate(sessions, start=1):
                upserters.append(Upserter(session, event_id, name, version))
        except Exception:
            _close_sessions(sessions)
            raise
        return upserters

    def _arrange(self, upserters: list[Upserter]) -> None:
        if self.order is SubmissionOrder.SHUFFLED:
            self._rng.shuffle(upserters)
        elif self.order is SubmissionOrder.DESCENDING:
            upserters.sort(key=lambda u: u.version, reverse=True)
        else:
            upserters.sort(key=lambda u: u.version)

    def _make_gate(self, writers: int) -> StartGate:
        if self.use_barrier:
            return BarrierGate(writers, self.barrier_timeout)
        return DelayGate(self.start_delay)

    def _dispatch(
        self,
        executor: ThreadPoolExecutor,
        upserters: list[Upserter],
        gate: StartGate,
    ) -> list[Future[UpsertOutcome]]:
        """Submit every writer; on failure, free the submitted ones and close the rest."""
        futures: list[Future[UpsertOutcome]] = []
        try:
            for upserter in upserters:
                futures.append(executor.submit(self._run_writer, upserter, gate))
        except Exception:
            # Submitted writers must not sit at the gate waiting for the others
            gate.release()
            for upserter in upserters[len(futures) :]:
                upserter.close()
            raise
        return futures

    @staticmethod
    def _run_writer(upserter: Upserter, gate: StartGate) -> UpsertOutcome:
        try:
            gate.wait()
            upserter.perform()
        finally:
            upserter.close()
        return upserter.outcome

    @staticmethod
    def _collect(future: Future[UpsertOutcome], upserter: Upserter) -> UpsertOutcome:
        try:
            return future.result()
        except Exception as e:
            logger.exception("writer_crashed", version=upserter.version)
            return UpsertOutcome(version=upserter.version, success=False, error=truncate_error(str(e)))


def _close_sessions(sessions: list[Any]) -> None:
    for session in sessions:
        try:
            session.close()
        except psycopg.Error as e:
            logger.warning("session_close_failed", error=str(e))
