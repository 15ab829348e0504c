"""
Pure schedule evaluation functions.

Contract:
    ``should_fire(task, as_of)`` and ``compute_next_run(...)`` are PURE --
    no I/O, no clock reads.  The scheduler supplies the current time and
    the jitter offset.

Architecture: approval_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from approval_batch.domain.types import ScheduledTask, TaskKind


def should_fire(task: ScheduledTask, as_of: datetime) -> bool:
    """Fire when ``as_of`` has reached ``next_run_at``.

    A one-time task fires only if it has never run.
    """
    if task.kind == TaskKind.ONCE and task.run_count > 0:
        return False
    return as_of >= task.next_run_at


def compute_next_run(
    base_time: datetime,
    interval: timedelta,
    jitter: timedelta = timedelta(0),
    offset_fraction: float = 0.0,
) -> datetime:
    """Next run time for a periodic task.

    The run may happen anywhere in the final ``jitter`` window of the
    interval: ``base + interval - jitter + jitter * offset_fraction``.

    Raises:
        ValueError: If interval is not positive, jitter is outside
            [0, interval], or offset_fraction is outside [0, 1].
    """
    if interval <= timedelta(0):
        raise ValueError(f"Interval must be positive: {interval}")
    if jitter < timedelta(0) or jitter > interval:
        raise ValueError(f"Jitter must be within [0, {interval}]: {jitter}")
    if not 0.0 <= offset_fraction <= 1.0:
        raise ValueError(f"Offset fraction must be within [0, 1]: {offset_fraction}")
    return base_time + interval - jitter + jitter * offset_fraction
