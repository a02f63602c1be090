import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .cancellation import CancellationToken
from .config import parse_config
from .errors import MempoolDumpsterError
from .sync import list_days, list_months, sync
from .types import DEFAULT_CATEGORIES, Category
from .utils.logging_setup import get_current_log_file, setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mempool-dumpster",
        description="Download mempool dumpster datasets and store them as parquet",
    )
    parser.add_argument(
        "-d",
        "--datadir",
        type=Path,
        default=Path(os.environ.get("MEMPOOL_DATADIR", "./data")),
        help="Directory to store data (env: MEMPOOL_DATADIR)",
    )
    parser.add_argument(
        "-o", "--overwrite", action="store_true", help="Overwrite existing files"
    )
    parser.add_argument(
        "-i", "--ignore-errors", action="store_true", help="Skip errors and continue"
    )
    parser.add_argument("-c", "--config", type=Path, default=None, help="YAML config file")
    parser.add_argument(
        "-j", "--jobs", type=int, default=None, help="Number of files processed in parallel"
    )
    parser.add_argument(
        "--log-level", default=os.environ.get("LOGLEVEL", "INFO"), help="Console log level"
    )
    parser.add_argument("--log-dir", type=Path, default=None, help="Also write logs here")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-months", help="List available months")

    list_days_parser = subparsers.add_parser("list-days", help="List available days in a month")
    list_days_parser.add_argument("month")

    get_parser = subparsers.add_parser("get", help="Download data")
    get_parser.add_argument("day_or_month")
    get_parser.add_argument(
        "--sourcelog", action="store_true", help="Download sourcelog files (on by default)"
    )
    get_parser.add_argument(
        "--transaction-data",
        action="store_true",
        help="Download transaction data files (on by default)",
    )
    get_parser.add_argument(
        "--transactions",
        action="store_true",
        help="Download transaction files (off by default)",
    )

    return parser


def selected_categories(args: argparse.Namespace) -> List[Category]:
    flags = [
        (args.sourcelog, Category.SOURCELOG),
        (args.transaction_data, Category.TRANSACTION_DATA),
        (args.transactions, Category.TRANSACTIONS),
    ]
    chosen = [category for enabled, category in flags if enabled]
    return chosen or list(DEFAULT_CATEGORIES)


def install_interrupt_handler(token: CancellationToken) -> None:
    """First Ctrl-C cancels gracefully, a second one interrupts right away"""
    loop = asyncio.get_running_loop()

    def on_interrupt():
        logger.warning("Interrupted, finishing in-flight files. Press Ctrl-C again to abort")
        token.cancel()
        loop.remove_signal_handler(signal.SIGINT)

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except (NotImplementedError, RuntimeError):
        # not available on Windows event loops
        pass


async def run(args: argparse.Namespace) -> int:
    config = parse_config(args.config)
    if args.jobs is not None:
        config.max_concurrency = max(1, args.jobs)

    if args.command == "list-months":
        for month in await list_months(config):
            print(month)
        return 0

    if args.command == "list-days":
        for day in await list_days(args.month, config):
            print(day)
        return 0

    if not args.datadir.is_dir():
        logger.error(f"datadir does not exist: {args.datadir}")
        return 1

    token = CancellationToken()
    install_interrupt_handler(token)

    report = await sync(
        categories=selected_categories(args),
        date_keys=[args.day_or_month],
        datadir=args.datadir,
        force=args.overwrite,
        config=config,
        cancel_token=token,
    )

    for outcome in report.failed:
        logger.error(f"Error: {outcome.category.value} {outcome.day}: {outcome.reason}")

    logger.info(report.summary())

    if report.failed and not args.ignore_errors:
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_dir=args.log_dir)
    log_file = get_current_log_file()
    if log_file is not None:
        logger.info(f"Writing logs to {log_file}")

    try:
        return asyncio.run(run(args))
    except MempoolDumpsterError as e:
        logger.error(f"Fatal error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
