#!/usr/bin/env python3
"""
Run one delegation expiry sweep now and print the aggregate counts.

Usage:
    python scripts/run_expiry_sweep.py --database-url postgresql://... \\
        [--config path/to/override.yaml] [--create-tables] [--log-level INFO]

Exit status is 0 when the sweep completed (per-project failures are
reported but do not fail the run), 1 when projects could not be
enumerated.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_config import get_active_config
from approval_kernel.db.engine import (
    create_tables,
    init_engine_from_url,
    session_scope,
)
from approval_kernel.db.immutability import register_immutability_listeners
from approval_kernel.logging_config import configure_logging
from approval_services import ApprovalWorkflow


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--database-url", required=True, help="SQLAlchemy database URL")
    parser.add_argument("--config", type=Path, default=None, help="YAML override file")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before sweeping",
    )
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(level=getattr(logging, args.log_level.upper(), logging.INFO))
    config = get_active_config(args.config)

    init_engine_from_url(args.database_url)
    register_immutability_listeners()
    if args.create_tables:
        create_tables()

    with session_scope() as session:
        result = ApprovalWorkflow(session, config=config).run_expiry_sweep_now()

    print(f"sweep_id:          {result.sweep_id}")
    print(f"projects_checked:  {result.projects_checked}")
    print(f"total_deactivated: {result.total_deactivated}")
    print(f"failures:          {len(result.failures)}")
    for failure in result.failures:
        print(f"  {failure.project_id} {failure.delegation_id or '-'} "
              f"{failure.error_code}: {failure.message}")
    if result.fatal:
        print(f"FATAL: {result.error}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
