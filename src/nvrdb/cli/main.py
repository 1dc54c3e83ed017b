"""CLI entry point for nvrdb."""

import argparse
import sys
from pathlib import Path
from typing import NoReturn

from loguru import logger

from .. import __version__
from ..core.config import Config
from ..core.types import JournalMode
from . import commands


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="nvrdb",
        description="Create and upgrade the NVR recording database",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--db-dir",
        type=Path,
        help="Directory holding the SQLite database (default: $NVRDB_DB_DIR)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="TOML configuration file (default: $NVRDB_CONFIG)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log debug messages"
    )

    subparsers = parser.add_subparsers(dest="command", required=False)

    subparsers.add_parser("init", help="Create a new database at the current version")

    upgrade_parser = subparsers.add_parser(
        "upgrade", help="Upgrade the database to the current version"
    )
    upgrade_parser.add_argument(
        "--sample-file-dir",
        type=Path,
        help="Directory holding sample files (needed when upgrading from version 1)",
    )
    upgrade_parser.add_argument(
        "--preset-journal",
        choices=[mode.value for mode in JournalMode],
        help="Journal mode to use while upgrading (default: delete)",
    )
    upgrade_parser.add_argument(
        "--no-vacuum",
        action="store_true",
        help="Skip vacuuming the database after upgrading",
    )

    subparsers.add_parser("status", help="Show the schema version log")

    return parser


def configure_logging(level: str) -> None:
    """Send log messages at or above level to stderr."""
    logger.remove()
    logger.add(sys.stderr, level=level, format="{time:HH:mm:ss} {level: <7} {message}")


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = Config.from_env_or_file(args.config)
        if args.db_dir is not None:
            config.db_dir = args.db_dir
        configure_logging("DEBUG" if args.verbose else config.log_level)

        if args.command == "init":
            commands.handle_init(args, config)
        elif args.command == "upgrade":
            commands.handle_upgrade(args, config)
        elif args.command == "status":
            commands.handle_status(args, config)
        else:
            parser.print_help()

        sys.exit(0)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
