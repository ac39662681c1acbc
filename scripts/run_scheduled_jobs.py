#!/usr/bin/env python3
"""
Run the scheduled procurement jobs: the metrics batch and the alert scan.

Meant to be invoked by an external scheduler (cron, systemd timer).  The
metrics batch refreshes each material's average daily consumption and cached
stock; the scan raises material, rupture and supplier alerts (deduplicated).

Usage:
    python3 scripts/run_scheduled_jobs.py [--db-url URL] [--job metrics|scan|all]

Examples:
    # Both jobs against $DATABASE_URL
    python3 scripts/run_scheduled_jobs.py

    # Only the scan, with a custom policy file
    python3 scripts/run_scheduled_jobs.py --job scan --policy /etc/supply/policy.yaml
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

DEFAULT_DB_URL = "sqlite:///supply.db"


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the metrics batch and/or the alert scan.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("DATABASE_URL", DEFAULT_DB_URL),
        help="Database URL (default: $DATABASE_URL or sqlite:///supply.db).",
    )
    parser.add_argument(
        "--job",
        choices=("metrics", "scan", "all"),
        default="all",
        help="Which job to run (default: all, metrics first).",
    )
    parser.add_argument(
        "--policy",
        type=Path,
        default=None,
        help="Policy YAML file (default: packaged defaults.yaml).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before running.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Log level (default: INFO).",
    )
    return parser.parse_args(argv)


def _load_policy(args: argparse.Namespace):
    """Configure logging first so the policy checksum record is emitted."""
    from supply_config import get_active_policy
    from supply_kernel.logging_config import configure_logging

    configure_logging(level=args.log_level.upper())
    try:
        return get_active_policy(args.policy)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: Failed to load policy: {e}", file=sys.stderr)
        return None


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from supply_kernel.db.engine import init_engine_from_url, session_scope
    from supply_kernel.db.immutability import register_immutability_listeners
    from supply_kernel.domain.clock import SystemClock
    from supply_modules._orm_registry import create_all_tables, import_all_orm_models
    from supply_modules.alerts.service import AlertEngine
    from supply_modules.stock.ledger import StockLedgerEngine

    policy = _load_policy(args)
    if policy is None:
        return 1

    try:
        init_engine_from_url(args.db_url)
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1

    import_all_orm_models()
    register_immutability_listeners()
    if args.create_tables:
        create_all_tables()

    clock = SystemClock()
    try:
        if args.job in ("metrics", "all"):
            with session_scope() as session:
                result = StockLedgerEngine(session, clock, policy).recompute_metrics()
            print(f"Metrics: {result.updated} materials over {result.window_days} days")

        if args.job in ("scan", "all"):
            with session_scope() as session:
                scan = AlertEngine(session, clock, policy, auto_commit=False).scan()
            print(
                f"Scan: {scan.materials_scanned} materials, {scan.suppliers_scanned} suppliers, "
                f"{scan.new_alerts} new alert(s) of {scan.total_raised} raised"
            )
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
