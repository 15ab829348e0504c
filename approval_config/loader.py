"""
Configuration loader (``approval_config.loader``).

Reads YAML with ``yaml.safe_load``, overlays an optional override file on
the packaged defaults key by key, and parses the merged mapping into
``approval_config.schema`` dataclasses.  Internal to the package; callers
use ``approval_config.get_active_config()``.

Failure modes:
    - Missing override file  -> ``FileNotFoundError`` propagates.
    - Malformed YAML  -> ``yaml.YAMLError`` propagates.
    - Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    BudgetConfig,
    EngineConfig,
    NotificationConfig,
    SweepConfig,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_SECTIONS = {
    "sweep": SweepConfig,
    "budget": BudgetConfig,
    "notifications": NotificationConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file.  An empty file yields an empty dict."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")
    return data


def merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursive key-by-key overlay.  Neither argument is modified."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> EngineConfig:
    unknown = set(data) - set(_SECTIONS) - {"system_actor"}
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

    sections = {}
    for name, section_type in _SECTIONS.items():
        values = data.get(name) or {}
        if not isinstance(values, dict):
            raise ValueError(f"Configuration section {name!r} must be a mapping")
        try:
            sections[name] = section_type(**values)
        except TypeError as exc:
            raise ValueError(f"Invalid keys in section {name!r}: {exc}") from exc

    return EngineConfig(
        sweep=sections["sweep"],
        budget=sections["budget"],
        notifications=sections["notifications"],
        system_actor=str(data.get("system_actor", "System")),
        checksum=compute_checksum(data),
    )


def load_config(config_path: Path | None = None) -> EngineConfig:
    data = load_yaml_file(DEFAULTS_PATH)
    if config_path is not None:
        data = merge(data, load_yaml_file(Path(config_path)))
    return parse_config(data)
