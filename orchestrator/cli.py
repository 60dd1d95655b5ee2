"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the trading core.

- argparse subcommands for the operational tasks
- Logging setup (text or JSON lines)
- Configuration from environment (.env supported)

============================================================
USAGE
============================================================
python -m orchestrator.cli init-db
python -m orchestrator.cli sync --account ACCOUNT_ID --force
python -m orchestrator.cli monitor --once
python -m orchestrator.cli liquidate ACCOUNT_ID --reason "manual halt"
python -m orchestrator.cli clear-stop ACCOUNT_ID --by ops@desk
python -m orchestrator.cli run

============================================================
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError, TradingException
from storage import Database, DatabaseConfig

from .bootstrap import TradingCore, build_core


# ============================================================
# LOGGING SETUP
# ============================================================

class JsonLineFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Set up process logging.

    Args:
        level: Log level name
        log_format: json or text

    Returns:
        The orchestrator logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = JsonLineFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="trading-core",
        description="Multi-exchange execution and risk core",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  init-db     - Create missing database tables
  sync        - Reconcile exchange balances into holdings
  monitor     - Run stop-loss and account-limit monitoring
  liquidate   - Emergency-liquidate an account
  clear-stop  - Clear an account's emergency stop
  run         - Reconciliation and risk monitor loops together
        """,
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="text",
        help="Logging format (default: text)",
    )

    parser.add_argument(
        "--env-file",
        type=str,
        metavar="PATH",
        help="Load environment variables from this file",
    )

    # --------------------------------------------------------
    # Commands
    # --------------------------------------------------------
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create missing database tables")

    sync = commands.add_parser("sync", help="Reconcile exchange balances")
    sync.add_argument("--user", dest="user_id", help="Only this user's connections")
    sync.add_argument("--account", dest="account_id", help="Only this account's connections")
    sync.add_argument("--connection", dest="connection_id", help="Only this connection")
    sync.add_argument("--force", action="store_true", help="Ignore the per-connection cooldown")
    sync.add_argument("--loop", action="store_true", help="Keep syncing on the configured interval")

    monitor = commands.add_parser("monitor", help="Run the risk monitor")
    monitor.add_argument("--once", action="store_true", help="Run a single pass and exit")

    liquidate = commands.add_parser("liquidate", help="Emergency-liquidate an account")
    liquidate.add_argument("account_id")
    liquidate.add_argument("--reason", required=True, help="Recorded with the emergency stop")

    clear_stop = commands.add_parser("clear-stop", help="Clear an account's emergency stop")
    clear_stop.add_argument("account_id")
    clear_stop.add_argument("--by", dest="cleared_by", required=True, help="Operator clearing the stop")

    commands.add_parser("run", help="Run reconciliation and risk monitor loops")

    return parser


# ============================================================
# COMMANDS
# ============================================================

async def _init_db(args: argparse.Namespace) -> int:
    database = Database(DatabaseConfig.from_env(args.env_file))
    try:
        await database.create_all()
    finally:
        await database.dispose()
    return 0


async def _sync(core: TradingCore, args: argparse.Namespace) -> int:
    if args.loop:
        await _run_until_signal(core, [core.reconciler.run_forever()])
        return 0

    result = await core.reconciler.run(
        user_id=args.user_id,
        account_id=args.account_id,
        connection_id=args.connection_id,
        force_sync=args.force,
    )
    print(
        f"Reconciliation {result.run_id}: {result.synced} synced, "
        f"{result.skipped} skipped, {result.failed} failed"
    )
    for connection in result.connections:
        if connection.error:
            print(f"  {connection.exchange_id} {connection.connection_id}: {connection.error}")
    return 0 if result.success else 1


async def _monitor(core: TradingCore, args: argparse.Namespace) -> int:
    if not args.once:
        await _run_until_signal(core, [core.monitor.run_forever()])
        return 0

    result = await core.monitor.run_once()
    print(
        f"Risk pass: {result.accounts_checked} accounts, "
        f"{len(result.stop_losses)} stop losses, {len(result.alerts)} alerts"
    )
    return 0 if not result.errors else 1


async def _liquidate(core: TradingCore, args: argparse.Namespace) -> int:
    report = await core.risk_engine.emergency_liquidate(args.account_id, args.reason)
    print(
        f"Liquidation of {report.account_id}: {len(report.positions_closed)} closed, "
        f"{len(report.failures)} failed"
    )
    for position_id, error in report.failures.items():
        print(f"  {position_id}: {error}")
    return 0 if report.success else 1


async def _clear_stop(core: TradingCore, args: argparse.Namespace) -> int:
    cleared = await core.risk_engine.clear_emergency_stop(args.account_id, args.cleared_by)
    print(f"Emergency stop {'cleared' if cleared else 'was not set'} for {args.account_id}")
    return 0


async def _run(core: TradingCore, args: argparse.Namespace) -> int:
    await core.database.create_all()
    await _run_until_signal(core, [core.reconciler.run_forever(), core.monitor.run_forever()])
    return 0


async def _run_until_signal(core: TradingCore, loops: list) -> None:
    """Run loops until SIGINT / SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda: (core.reconciler.stop(), core.monitor.stop()))
        except NotImplementedError:
            # Windows event loops
            pass
    await asyncio.gather(*loops)


COMMANDS = {
    "sync": _sync,
    "monitor": _monitor,
    "liquidate": _liquidate,
    "clear-stop": _clear_stop,
    "run": _run,
}


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    logger = logging.getLogger(__name__)

    if args.command == "init-db":
        return await _init_db(args)

    try:
        core = build_core()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        return 2

    try:
        return await COMMANDS[args.command](core, args)
    except TradingException as e:
        logger.error(f"{args.command} failed: {e.message}")
        return 1
    finally:
        await core.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level, args.log_format)

    if args.env_file:
        load_dotenv(args.env_file)

    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
