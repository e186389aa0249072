#!/usr/bin/env python3
"""
Close every OPEN billing cycle of a month.

Usage:
    python scripts/close_billing_cycles.py [--month YYYY-MM] [--plans PATH]

With no --month the previous calendar month is closed, which is what the
monthly scheduler runs on day 1.  Each cycle is closed in its own
transaction: a failing cycle is reported and the rest still close.

Environment:
    DATABASE_URL  database to use (default: sqlite:///split_kernel.db)

Exit status is 1 if any cycle failed to close.
"""

import argparse
import os
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

from split_config.loader import load_billing_settings
from split_kernel.db.engine import create_tables, init_engine_from_url, session_scope
from split_kernel.domain.dtos import validate_billing_month
from split_kernel.exceptions import CycleAlreadyClosedError, SplitKernelError
from split_kernel.logging_config import get_logger
from split_kernel.selectors.billing_selector import BillingSelector
from split_kernel.services.billing_cycle_service import (
    SYSTEM_ACTOR_ID,
    BillingCycleService,
)

DEFAULT_DATABASE_URL = "sqlite:///split_kernel.db"

logger = get_logger("scripts.close_billing_cycles")


def previous_month(today: date) -> str:
    if today.month == 1:
        return f"{today.year - 1}-12"
    return f"{today.year}-{today.month - 1:02d}"


def close_month(billing_month: str, plans_path: Path | None, actor_id: UUID) -> int:
    """Close the month's open cycles; returns the number of failures."""
    settings = load_billing_settings(plans_path)

    with session_scope() as session:
        cycles = BillingSelector(session).list_open_cycles(billing_month)
    print(f"{len(cycles)} open cycle(s) for {billing_month}")

    failures = 0
    for cycle in cycles:
        try:
            with session_scope() as session:
                closed = BillingCycleService(session, settings).close_cycle(
                    cycle.id, actor_id
                )
        except CycleAlreadyClosedError:
            print(f"  {cycle.scope.key}: already closed, skipped")
            continue
        except SplitKernelError as exc:
            failures += 1
            logger.error("billing_cycle_close_failed", extra={
                "cycle_id": str(cycle.id),
                "error_code": exc.code,
            })
            print(f"  {cycle.scope.key}: FAILED [{exc.code}] {exc}")
            continue

        totals = ", ".join(
            f"{charge.charge_type.value}={charge.gross_value}" for charge in closed.charges
        ) or "no charges"
        print(f"  {cycle.scope.key}: closed ({totals})")
        for warning in closed.warnings:
            print(f"    WARNING: {warning}")
    return failures


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0].strip())
    parser.add_argument("--month", help="billing month YYYY-MM (default: previous month)")
    parser.add_argument("--plans", type=Path, help="plan catalog YAML (default: bundled)")
    parser.add_argument(
        "--actor-id",
        type=UUID,
        default=SYSTEM_ACTOR_ID,
        help="actor recorded in the audit trail",
    )
    args = parser.parse_args(argv)

    billing_month = validate_billing_month(args.month or previous_month(date.today()))
    init_engine_from_url(os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL))
    create_tables()
    failures = close_month(billing_month, args.plans, args.actor_id)
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
