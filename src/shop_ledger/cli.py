"""Command-line entry point.

Usage:
    # Profit and loss for this month
    python -m shop_ledger.cli report profit_and_loss --range "This Month"

    # Expense mix for a custom window
    python -m shop_ledger.cli report expense_by_category --from 2024-01-01 --to 2024-03-31

    # Log table changes as they arrive
    python -m shop_ledger.cli watch
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from decimal import Decimal
from typing import Any

import structlog

from shop_ledger.cache import ReadCache
from shop_ledger.config import configure_logging
from shop_ledger.models import Actor, Table
from shop_ledger.realtime import CacheInvalidator, ChangeFeed
from shop_ledger.reports import DateRange, RangeKind, ReportKind
from shop_ledger.service import LedgerService
from shop_ledger.store.rest import RestLedgerStore

logger = structlog.get_logger(__name__)

CLI_ACTOR = Actor(id="", name="shop-ledger cli")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shop-ledger",
        description="Shop ledger reports and change feed",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    report = sub.add_parser("report", help="Print a financial report")
    report.add_argument(
        "kind",
        choices=[k.value for k in ReportKind],
        help="Report to compute",
    )
    report.add_argument(
        "--range",
        dest="range_kind",
        choices=[k.value for k in RangeKind],
        default=RangeKind.ALL_TIME.value,
        help="Date range (default: All Time)",
    )
    report.add_argument("--from", dest="date_from", type=date.fromisoformat, default=None)
    report.add_argument("--to", dest="date_to", type=date.fromisoformat, default=None)

    watch = sub.add_parser("watch", help="Log ledger table changes")
    watch.add_argument(
        "--table",
        dest="tables",
        action="append",
        choices=[t.value for t in Table],
        help="Table to watch (repeatable, default: all)",
    )
    return parser


def resolve_range(args: argparse.Namespace) -> DateRange:
    """Explicit --from/--to imply a custom range."""
    if args.date_from or args.date_to:
        return DateRange.custom(args.date_from, args.date_to)
    return DateRange.parse(args.range_kind)


async def run_report(args: argparse.Namespace) -> list[dict[str, Any]]:
    date_range = resolve_range(args)
    async with RestLedgerStore() as store:
        service = LedgerService.from_settings(CLI_ACTOR, store=store)
        rows = await service.aggregate(ReportKind(args.kind), date_range)
    logger.info("report_computed", kind=args.kind, range=date_range.label(), rows=len(rows))
    return rows


async def run_watch(args: argparse.Namespace) -> None:
    cache = ReadCache()
    feed = ChangeFeed(tables=args.tables)
    feed.add_event_hook(CacheInvalidator(cache))
    try:
        await feed.run()
    finally:
        await feed.stop()


async def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "report":
        if args.range_kind == RangeKind.CUSTOM.value and not (args.date_from or args.date_to):
            parser.error("--range Custom needs --from and/or --to")
        if args.date_from and args.date_to and args.date_from > args.date_to:
            parser.error("--from must not be after --to")

    try:
        if args.command == "report":
            rows = await run_report(args)
            print(json.dumps(rows, indent=2, default=_json_default))
        else:
            await run_watch(args)
    except KeyboardInterrupt:
        logger.info("cli_interrupted")
    except Exception as e:
        logger.exception("cli_error", error=str(e))
        sys.exit(1)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
