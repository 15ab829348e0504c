"""
InProcessScheduler -- in-process polling scheduler for named tasks.

Contract:
    Implements the kernel's ``TaskScheduler`` port.  ``tick()`` evaluates
    every registered task with the pure ``should_fire()`` and runs the due
    ones; ``start()`` / ``stop()`` drive ``tick()`` from a background
    thread.

Architecture: approval_batch/services.  Uses approval_batch.domain.schedule
    for pure evaluation.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Unique names: ``schedule_every`` keeps an existing registration
      under the same name.
    - A failing callback is logged and the periodic task stays scheduled.
    - Graceful shutdown: the stop signal is checked between tasks.

Non-goals:
    - NOT a distributed scheduler; overlapping runs across processes are
      expected to be safe at the task level.
"""

from __future__ import annotations

import random
import threading
from dataclasses import replace
from datetime import timedelta
from typing import Callable

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger

from approval_batch.domain.schedule import compute_next_run, should_fire
from approval_batch.domain.types import (
    ScheduledTask,
    TaskKind,
    TaskRunResult,
    TaskRunStatus,
)

logger = get_logger("batch.scheduler")


class InProcessScheduler:
    """Named periodic and one-time tasks, polled by ``tick()``."""

    def __init__(
        self,
        clock: Clock | None = None,
        tick_interval_seconds: float = 60,
        rng: random.Random | None = None,
    ):
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._tasks: dict[str, ScheduledTask] = {}
        self._callbacks: dict[str, Callable[[], object]] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # TaskScheduler
    # -------------------------------------------------------------------------

    def schedule_every(
        self,
        name: str,
        interval: timedelta,
        jitter: timedelta,
        callback: Callable[[], object],
    ) -> None:
        now = self._clock.now()
        first_run = compute_next_run(now, interval, jitter, self._rng.random())
        with self._lock:
            if name in self._tasks:
                logger.info("task_already_scheduled", extra={"task_name": name})
                return
            self._tasks[name] = ScheduledTask(
                name=name,
                kind=TaskKind.PERIODIC,
                next_run_at=first_run,
                interval=interval,
                jitter=jitter,
            )
            self._callbacks[name] = callback
        logger.info(
            "task_scheduled",
            extra={
                "task_name": name,
                "interval_seconds": interval.total_seconds(),
                "jitter_seconds": jitter.total_seconds(),
                "next_run_at": first_run,
            },
        )

    def schedule_once(self, name: str, callback: Callable[[], object]) -> None:
        """Queue a one-time task for the next tick.  Replaces a pending one."""
        with self._lock:
            self._tasks[name] = ScheduledTask(
                name=name, kind=TaskKind.ONCE, next_run_at=self._clock.now(),
            )
            self._callbacks[name] = callback
        logger.info("task_enqueued_once", extra={"task_name": name})

    def cancel(self, name: str) -> bool:
        with self._lock:
            removed = self._tasks.pop(name, None)
            self._callbacks.pop(name, None)
        if removed is not None:
            logger.info("task_cancelled", extra={"task_name": name})
        return removed is not None

    def is_scheduled(self, name: str) -> bool:
        with self._lock:
            return name in self._tasks

    def get(self, name: str) -> ScheduledTask | None:
        with self._lock:
            return self._tasks.get(name)

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def tick(self) -> list[TaskRunResult]:
        """Run every due task once (public for testing)."""
        now = self._clock.now()
        with self._lock:
            due = [
                (task, self._callbacks[task.name])
                for task in self._tasks.values()
                if should_fire(task, now)
            ]

        results = []
        for task, callback in due:
            if self._stop_event.is_set():
                break
            results.append(self._run(task, callback))
        return results

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="approval-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
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

    def _run(self, task: ScheduledTask, callback: Callable[[], object]) -> TaskRunResult:
        started = self._clock.now()
        error = None
        try:
            callback()
            status = TaskRunStatus.SUCCEEDED
        except Exception as exc:
            status = TaskRunStatus.FAILED
            error = str(exc)
            logger.exception("task_run_failed", extra={"task_name": task.name})

        with self._lock:
            current = self._tasks.get(task.name)
            if current is not None and current.next_run_at == task.next_run_at:
                if task.kind == TaskKind.ONCE:
                    del self._tasks[task.name]
                    self._callbacks.pop(task.name, None)
                else:
                    self._tasks[task.name] = replace(
                        current,
                        last_run_at=started,
                        last_run_status=status,
                        run_count=current.run_count + 1,
                        next_run_at=compute_next_run(
                            started, current.interval, current.jitter,
                            self._rng.random(),
                        ),
                    )

        logger.info(
            "task_run_completed",
            extra={"task_name": task.name, "status": status.value},
        )
        return TaskRunResult(
            name=task.name, status=status, started_at=started, error=error,
        )
