#!/usr/bin/env python3
"""
InternHub operations CLI

Usage:
    python -m internhub.cli <command> [options]

Commands:
    db          Database operations (init)
    period      Period management (list, activate, sync-progress)
    allocation  Lecturer allocation (auto-assign, recount)

Environment:
    DATABASE_URL    SQLAlchemy async connection string
    LOG_LEVEL       DEBUG|INFO|WARNING|ERROR
"""
import sys
import argparse
import logging
from typing import Optional

from internhub import __version__
from internhub.cli.allocation_commands import AllocationCommand
from internhub.cli.db_commands import DbCommand
from internhub.cli.period_commands import PeriodCommand


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="internhub",
        description="InternHub operations CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s db init
  %(prog)s period activate --id 3
  %(prog)s period sync-progress --id 3 --date 2025-12-01
  %(prog)s allocation auto-assign --period 3
  %(prog)s allocation recount --period 3 --fix
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run the command and roll back instead of committing"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Database commands
    db_parser = subparsers.add_parser("db", help="Database operations")
    db_subparsers = db_parser.add_subparsers(dest="db_action")
    db_subparsers.add_parser("init", help="Create missing tables")

    # Period commands
    period_parser = subparsers.add_parser("period", help="Period management")
    period_subparsers = period_parser.add_subparsers(dest="period_action")

    period_subparsers.add_parser("list", help="List periods")

    activate_parser = period_subparsers.add_parser("activate", help="Make a period the active one")
    activate_parser.add_argument("--id", "-i", type=int, required=True, help="Period ID")

    sync_parser = period_subparsers.add_parser("sync-progress", help="Advance registrations by calendar")
    sync_parser.add_argument("--id", "-i", type=int, required=True, help="Period ID")
    sync_parser.add_argument("--date", help="Reference date YYYY-MM-DD (default: today)")

    # Allocation commands
    allocation_parser = subparsers.add_parser("allocation", help="Lecturer allocation")
    allocation_subparsers = allocation_parser.add_subparsers(dest="allocation_action")

    auto_parser = allocation_subparsers.add_parser("auto-assign", help="Assign lecturers to unassigned students")
    auto_parser.add_argument("--period", "-p", type=int, required=True, help="Period ID")

    recount_parser = allocation_subparsers.add_parser("recount", help="Check assigned_count against registrations")
    recount_parser.add_argument("--period", "-p", type=int, required=True, help="Period ID")
    recount_parser.add_argument("--fix", action="store_true", help="Overwrite drifting counters")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 1

    setup_logging(parsed.log_level)

    command_map = {
        "db": DbCommand,
        "period": PeriodCommand,
        "allocation": AllocationCommand,
    }

    if parsed.command in command_map:
        handler = command_map[parsed.command](dry_run=parsed.dry_run)
        return handler.execute(parsed)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
