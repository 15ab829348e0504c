"""
approval_batch.domain.types -- frozen scheduling records.  ZERO I/O.

Invariants enforced:
    - All records are frozen; the scheduler replaces a record on every run.
    - A periodic task has ``interval`` set; a one-time task has it None.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class TaskKind(str, Enum):
    PERIODIC = "periodic"
    ONCE = "once"


class TaskRunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ScheduledTask:
    """Scheduling state of one named task."""

    name: str
    kind: TaskKind
    next_run_at: datetime
    interval: timedelta | None = None
    jitter: timedelta = timedelta(0)
    last_run_at: datetime | None = None
    last_run_status: TaskRunStatus | None = None
    run_count: int = 0


@dataclass(frozen=True)
class TaskRunResult:
    name: str
    status: TaskRunStatus
    started_at: datetime
    error: str | None = None
