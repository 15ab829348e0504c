"""
Batch tasks: delegation expiry.

Contract:
    ``ExpirySweepJob`` runs one ExpirySweeper pass in its own session and
    commits.  The helpers register it as a unique periodic task, trigger
    an immediate run, and query or cancel the registration.

Architecture:
    approval_batch/tasks.  Imports the kernel's ExpirySweeper; the kernel
    knows nothing about scheduling.

Invariants enforced:
    - One registration per name; re-registering keeps the existing one.
    - Overlapping runs are safe: expiry is a conditional write, so a
      second concurrent sweep counts nothing.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Callable

from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.dtos import SweepResult
from approval_kernel.domain.ports import TaskScheduler
from approval_kernel.logging_config import get_logger
from approval_kernel.services.expiry_sweeper import ExpirySweeper

logger = get_logger("batch.delegation_tasks")

WORK_NAME = "delegation_expiry_check"
IMMEDIATE_SUFFIX = "_immediate"


class ExpirySweepJob:
    """Callable job: open a session, sweep, commit, close."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        sweeper_factory: Callable[[Session], ExpirySweeper] | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._sweeper_factory = sweeper_factory or (
            lambda session: ExpirySweeper(session, self._clock)
        )
        self.last_result: SweepResult | None = None

    def __call__(self) -> SweepResult:
        return self.run()

    def run(self) -> SweepResult:
        session = self._session_factory()
        try:
            result = self._sweeper_factory(session).sweep()
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("expiry_sweep_job_failed")
            raise
        finally:
            session.close()

        self.last_result = result
        logger.info(
            "expiry_sweep_job_completed",
            extra={
                "sweep_id": result.sweep_id,
                "projects_checked": result.projects_checked,
                "total_deactivated": result.total_deactivated,
                "fatal": result.fatal,
            },
        )
        return result


def register_expiry_sweep(
    scheduler: TaskScheduler,
    job: Callable[[], object],
    interval: timedelta = timedelta(hours=6),
    jitter: timedelta = timedelta(hours=1),
    name: str = WORK_NAME,
    run_on_startup: bool = True,
) -> None:
    """Register the periodic sweep; optionally queue one immediate run."""
    scheduler.schedule_every(name, interval, jitter, job)
    if run_on_startup:
        scheduler.schedule_once(name + IMMEDIATE_SUFFIX, job)


def run_expiry_sweep_now(
    scheduler: TaskScheduler,
    job: Callable[[], object],
    name: str = WORK_NAME,
) -> None:
    """Queue a one-time sweep for the next scheduler tick."""
    scheduler.schedule_once(name + IMMEDIATE_SUFFIX, job)


def is_expiry_sweep_scheduled(scheduler: TaskScheduler, name: str = WORK_NAME) -> bool:
    return scheduler.is_scheduled(name)


def cancel_expiry_sweep(scheduler: TaskScheduler, name: str = WORK_NAME) -> bool:
    cancelled = scheduler.cancel(name)
    scheduler.cancel(name + IMMEDIATE_SUFFIX)
    return cancelled
