"""Command-line interface for the liquidation engine."""
from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace

from .config import load_config
from .logging_setup import configure_logging
from .services import LiquidationEngine


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="liquidation-engine",
        description="Off-chain liquidation engine for isolated-collateral banks",
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

    sub.add_parser("scan", help="One evaluation pass; nothing is submitted")
    sub.add_parser("sweep", help="Withdraw liquidator balances to the owner")
    sub.add_parser("report", help="Send the settlement report")

    run_parser = sub.add_parser("run", help="Continuous liquidation loop")
    run_parser.add_argument(
        "interval",
        nargs="?",
        type=float,
        default=None,
        help="Polling interval in seconds (overrides config)",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Evaluate and plan but never submit transactions",
    )

    return parser


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)

    if getattr(args, "dry_run", False):
        config = replace(config, engine=replace(config.engine, dry_run=True))

    engine = LiquidationEngine(config)

    if args.command == "scan":
        await engine.scan()
    elif args.command == "run":
        await engine.run_continuous(args.interval)
    elif args.command == "sweep":
        await engine.sweep()
    elif args.command == "report":
        print(await engine.report())
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        pass
    except (FileNotFoundError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(2)
