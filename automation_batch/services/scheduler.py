"""
AutomationScheduler -- In-process polling scheduler.

Contract:
    Each ``tick()`` opens one session and, in order: fires due recurring
    jobs, runs PENDING bulk operations whose ``scheduled_for`` has arrived,
    revives due delayed actions, and purges expired records.  The tick owns
    its session and commits after every unit of work: each fired job, then
    each later phase.  A failing unit is rolled back and logged alone.

Architecture: automation_batch/services.  Services are built per tick by
    the ``platform_factory`` supplied by AutomationPlatform.

Invariants enforced:
    - All timestamps from the injected Clock.
    - A fired job is committed before the next job runs; neither a failing
      job nor a failing later phase can undo it, so a slot never refires.
    - Graceful shutdown: the stop signal is checked between jobs.
    - Committing between jobs releases the SKIP LOCKED row locks of the
      remaining due jobs; the per-slot idempotency key keeps a concurrent
      scheduler from running the same slot twice.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from sqlalchemy.orm import Session

from automation_kernel.domain.clock import Clock, SystemClock
from automation_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from automation_batch.orchestrator import AutomationPlatform

logger = get_logger("batch.scheduler")


@dataclass(frozen=True)
class TickResult:
    jobs_fired: int = 0
    jobs_failed: int = 0
    operations_run: int = 0
    delayed_actions: int = 0
    purged: dict[str, int] = field(default_factory=dict)
    failed_phases: tuple[str, ...] = ()


class AutomationScheduler:
    """In-process polling scheduler for recurring jobs and durable timers.

    Contract:
        - ``tick()`` processes everything due now (public for testing).
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election); concurrent
          schedulers are tolerated through SKIP LOCKED reads and
          idempotency keys.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        platform_factory: Callable[[Session], AutomationPlatform],
        clock: Clock | None = None,
        tick_interval_seconds: int = 60,
        purge_expired: bool = True,
    ):
        self._session_factory = session_factory
        self._platform_factory = platform_factory
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._purge_expired = purge_expired
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> TickResult:
        session = self._session_factory()
        try:
            result = self._run_due(session)
            session.commit()
            return result
        except Exception:
            session.rollback()
            logger.exception("scheduler_tick_failed")
            return TickResult()
        finally:
            session.close()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="automation-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait up to ``timeout`` seconds for the thread."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _run_due(self, session: Session) -> TickResult:
        platform = self._platform_factory(session)
        now = self._clock.now_utc()

        fired = failed = 0
        for job in platform.recurring_jobs.due_jobs(now):
            if self._stop_event.is_set():
                break
            try:
                platform.recurring_jobs.execute_recurring_job(job.job_id)
                session.commit()
                fired += 1
            except Exception:
                session.rollback()
                failed += 1
                logger.exception(
                    "recurring_job_fire_failed",
                    extra={"job_id": str(job.job_id), "job_name": job.name},
                )

        failed_phases: list[str] = []

        def phase(name: str, work: Callable[[], Any], default: Any) -> Any:
            try:
                outcome = work()
                session.commit()
                return outcome
            except Exception:
                session.rollback()
                failed_phases.append(name)
                logger.exception("scheduler_phase_failed", extra={"phase": name})
                return default

        operations = phase(
            "bulk_operations", lambda: platform.bulk_operations.run_due_operations(now), [],
        )
        delayed = phase("delayed_actions", platform.delayed_actions.run_due, [])

        purged: dict[str, int] = {}
        if self._purge_expired:
            def purge() -> dict[str, int]:
                counts = platform.engine.recorder.purge_expired(now)
                counts["bulk_operations"] = platform.bulk_operations.purge_expired(now)
                return counts

            purged = phase("purge", purge, {})

        result = TickResult(
            jobs_fired=fired,
            jobs_failed=failed,
            operations_run=len(operations),
            delayed_actions=len(delayed),
            purged=purged,
            failed_phases=tuple(failed_phases),
        )
        logger.info(
            "scheduler_tick_completed",
            extra={
                "jobs_fired": fired,
                "jobs_failed": failed,
                "operations_run": result.operations_run,
                "delayed_actions": result.delayed_actions,
                "failed_phases": list(failed_phases),
            },
        )
        return result
