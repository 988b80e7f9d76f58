"""Command-line interface for the leverage keeper."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .amounts import parse_stable
from .config import load_config
from .errors import KeeperError
from .logging_setup import configure_logging
from .services import Keeper


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="leverage-keeper",
        description="Keeper for leveraged yield positions",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Run price, health and harvest schedules until stopped")
    sub.add_parser("check", help="Single health check cycle")
    sub.add_parser("harvest", help="Single harvest cycle")
    sub.add_parser("report", help="Print a position report")

    price_parser = sub.add_parser("price", help="Show the current price and series stats")
    price_parser.add_argument(
        "--days",
        type=int,
        default=7,
        help="Number of recent samples to list (default: 7)",
    )

    settle_parser = sub.add_parser("settle", help="Apply a settlement to a position")
    settle_parser.add_argument("position_id", type=int, help="Ledger position id")
    settle_parser.add_argument(
        "amount", help="Gross settlement amount in stable units, e.g. 120000.50"
    )

    return parser


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command; returns the process exit code."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    keeper = Keeper(config)

    if args.command == "run":
        await keeper.run_forever()
        return 0

    await keeper.prepare()

    if args.command == "check":
        report = await keeper.health_monitor.run_cycle()
        print(f"Checked {report.processed} positions: {report.acted} acted, {report.failed} failed")
        return 1 if report.failed else 0

    if args.command == "harvest":
        report = await keeper.harvest_keeper.run_cycle()
        print(
            f"Harvested {report.acted} of {report.processed} positions "
            f"({report.skipped} skipped, {report.failed} failed)"
        )
        return 1 if report.failed else 0

    if args.command == "settle":
        try:
            gross = parse_stable(args.amount)
        except ValueError as e:
            print(f"Invalid amount: {e}", file=sys.stderr)
            return 2
        try:
            position = await keeper.settle(args.position_id, gross)
        except KeeperError as e:
            print(f"Settlement failed: {e}", file=sys.stderr)
            return 1
        record = position.settlement
        print(
            f"Position {position.position_id} settled: "
            f"${record.senior_repayment.format()} principal, "
            f"${record.interest_repayment.format()} interest, "
            f"${record.residual_to_owner.format()} to owner"
        )
        return 0

    if args.command == "report":
        print(keeper.build_report())
        return 0

    if args.command == "price":
        stats = keeper.price_cache.stats()
        print(f"Current: ${keeper.price_cache.current_price().format()}")
        print(
            f"Min ${stats.min:,.2f} · Max ${stats.max:,.2f} · "
            f"Avg ${stats.avg:,.2f} · Change {stats.change_percent:+.2f}%"
        )
        for sample in keeper.price_cache.chart(args.days):
            print(f"  {sample.date}  ${sample.price.format()}")
        return 0

    build_parser().print_help()
    return 1


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)
