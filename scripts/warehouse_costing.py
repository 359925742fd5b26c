#!/usr/bin/env python3
"""
Operator CLI for the warehouse costing core.

Usage:
    python3 scripts/warehouse_costing.py [--database-url URL] [--config PATH] COMMAND ...

Commands:
    init-db                         Create the costing tables.
    register-fee YYYY-MM AMOUNT     Declare a month's warehouse fee (PENDING).
    distribute YYYY-MM              Distribute a PENDING fee across lots on hand.
    summary [--product-id UUID]     Inventory overview, or one product's rollup.
    fees                            List declared fees, newest month first.

Examples:
    python3 scripts/warehouse_costing.py init-db
    python3 scripts/warehouse_costing.py register-fee 2024-03 500000 --memo "March rent"
    python3 scripts/warehouse_costing.py distribute 2024-03

The database URL defaults to $COSTING_DATABASE_URL.  Output is JSON on
stdout; errors are JSON on stderr with a non-zero exit status.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DATABASE_URL_ENV = "COSTING_DATABASE_URL"


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a decimal amount: {value!r}") from None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="warehouse_costing",
        description="Warehouse costing: lots, monthly fees and inventory value.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get(DATABASE_URL_ENV),
        help=f"Database URL (default: ${DATABASE_URL_ENV}).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Costing config YAML (default: $COSTING_CONFIG_PATH or the bundled set).",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the costing tables.")

    register = commands.add_parser("register-fee", help="Declare a month's warehouse fee.")
    register.add_argument("year_month", help="Fee month, YYYY-MM.")
    register.add_argument("amount", type=_decimal, help="Total fee in the base currency.")
    register.add_argument("--memo", default=None)

    distribute = commands.add_parser("distribute", help="Distribute a PENDING fee.")
    distribute.add_argument("year_month", help="Fee month, YYYY-MM.")

    summary = commands.add_parser("summary", help="Inventory value rollup.")
    summary.add_argument("--product-id", type=UUID, default=None)

    commands.add_parser("fees", help="List warehouse fees.")
    return parser


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _emit(payload, stream=None) -> None:
    print(json.dumps(payload, default=_json_default, indent=2), file=stream or sys.stdout)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if not args.database_url:
        print(f"ERROR: no database URL; pass --database-url or set {DATABASE_URL_ENV}", file=sys.stderr)
        return 2

    # Lazy imports so we fail fast on args first
    from costing_config import get_active_config
    from costing_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from costing_kernel.domain.clock import SystemClock
    from costing_kernel.exceptions import CostingKernelError
    from costing_kernel.selectors.inventory_selector import InventorySelector
    from costing_services.warehouse_fee_service import WarehouseFeeService

    try:
        config = get_active_config(args.config)
    except (OSError, ValueError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    init_engine_from_url(args.database_url)

    if args.command == "init-db":
        create_tables()
        _emit({"status": "ok", "command": "init-db"})
        return 0

    clock = SystemClock()
    try:
        with session_scope() as session:
            fees = WarehouseFeeService(session, clock=clock, config=config)

            if args.command == "register-fee":
                payload = asdict(fees.register_fee(args.year_month, args.amount, memo=args.memo))
            elif args.command == "distribute":
                result = fees.distribute(args.year_month)
                payload = asdict(result)
                payload["total_distributed"] = result.total_distributed
            elif args.command == "summary":
                selector = InventorySelector(session)
                if args.product_id is not None:
                    payload = asdict(selector.product_summary(args.product_id))
                else:
                    payload = [asdict(row) for row in selector.inventory_overview()]
            else:
                payload = [asdict(fee) for fee in fees.list_fees()]
    except CostingKernelError as e:
        _emit({"error": e.code, "message": str(e)}, stream=sys.stderr)
        return 1

    _emit(payload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
