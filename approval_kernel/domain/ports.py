"""
Collaborator ports (``approval_kernel.domain.ports``).

The engine depends on these capability protocols, never on a concrete
push provider or scheduler product.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import Protocol, runtime_checkable


@runtime_checkable
class PushTransport(Protocol):
    """Device push delivery.  Delivery guarantees belong to the transport."""

    def send_push(
        self,
        token: str,
        title: str,
        body: str,
        data: Mapping[str, str],
    ) -> bool:
        """Deliver one push.  Returns False (or raises) on failure."""
        ...

    def get_current_device_token(self) -> str | None:
        ...


@runtime_checkable
class TaskScheduler(Protocol):
    """Periodic task scheduler with at-least-once callback invocation."""

    def schedule_every(
        self,
        name: str,
        interval: timedelta,
        jitter: timedelta,
        callback: Callable[[], object],
    ) -> None:
        ...

    def schedule_once(self, name: str, callback: Callable[[], object]) -> None:
        ...

    def cancel(self, name: str) -> bool:
        ...

    def is_scheduled(self, name: str) -> bool:
        ...
