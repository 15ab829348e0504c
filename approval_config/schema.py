"""
Configuration schema (``approval_config.schema``).

Frozen dataclasses for the engine's runtime settings.  Each section
validates itself on construction; an invalid value raises ``ValueError``
naming the offending key.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta


@dataclass(frozen=True)
class SweepConfig:
    """Periodic expiry sweep scheduling."""

    interval_hours: float = 6
    flex_hours: float = 1
    job_name: str = "delegation_expiry_check"
    run_on_startup: bool = True

    def __post_init__(self) -> None:
        for key in ("interval_hours", "flex_hours"):
            value = getattr(self, key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"sweep.{key} must be a number, got {value!r}")
        if self.interval_hours <= 0:
            raise ValueError(
                f"sweep.interval_hours must be positive, got {self.interval_hours!r}"
            )
        if not 0 <= self.flex_hours <= self.interval_hours:
            raise ValueError(
                "sweep.flex_hours must be between 0 and sweep.interval_hours, "
                f"got {self.flex_hours!r}"
            )
        if not self.job_name or not self.job_name.strip():
            raise ValueError("sweep.job_name must be non-empty")

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.interval_hours)

    @property
    def flex(self) -> timedelta:
        return timedelta(hours=self.flex_hours)


@dataclass(frozen=True)
class BudgetConfig:
    currency_symbol: str = "₹"


@dataclass(frozen=True)
class NotificationConfig:
    role_fallback_enabled: bool = True
    push_enabled: bool = True


@dataclass(frozen=True)
class EngineConfig:
    """Effective settings.  ``checksum`` identifies the merged source."""

    sweep: SweepConfig = field(default_factory=SweepConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    system_actor: str = "System"
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.system_actor or not self.system_actor.strip():
            raise ValueError("system_actor must be non-empty")
