"""
approval_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains settings.
    Packaged defaults live in ``defaults.yaml``; an explicit file overrides
    them key by key.

Architecture position:
    Configuration.  Imports nothing from ``approval_kernel``; the batch
    job and the service facade pass the values they need into kernel
    constructors.

Failure modes:
    - ``FileNotFoundError`` -- the override file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful call emits an ``approval_config_loaded`` log entry
    carrying the SHA-256 checksum of the effective settings.
"""

from __future__ import annotations

import logging
from pathlib import Path

from approval_config.loader import load_config
from approval_config.schema import (
    BudgetConfig,
    EngineConfig,
    NotificationConfig,
    SweepConfig,
)

_logger = logging.getLogger("approval_kernel.config")

__all__ = [
    "BudgetConfig",
    "EngineConfig",
    "NotificationConfig",
    "SweepConfig",
    "get_active_config",
]


def get_active_config(config_path: Path | str | None = None) -> EngineConfig:
    """Load, merge and validate the effective configuration.

    Args:
        config_path: Optional YAML file overriding the packaged defaults.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        ValueError: If validation fails.
    """
    config = load_config(Path(config_path) if config_path is not None else None)
    _logger.info(
        "approval_config_loaded",
        extra={
            "checksum": config.checksum,
            "source": str(config_path) if config_path is not None else "defaults",
            "sweep_interval_hours": config.sweep.interval_hours,
            "sweep_job_name": config.sweep.job_name,
        },
    )
    return config
