"""Status command for nvrdb CLI."""

from datetime import datetime, timezone

from ...core.config import Config
from ...core.exceptions import DatabaseError
from ...store.database import Database
from ...store.schema import EXPECTED_VERSION, get_version_log


def handle_status(args, config: Config) -> None:
    """Handle status command.

    Args:
        args: Parsed command arguments.
        config: Application configuration.
    """
    if not config.db_path.exists():
        raise DatabaseError(f"No database at {config.db_path}")

    with Database(config.db_path) as db:
        log = get_version_log(db.connection)
    _print_status(log)


def _print_status(log) -> None:
    """Print the version log.

    Args:
        log: List of VersionRecord objects, oldest first.
    """
    current = log[-1].id if log else None
    print("nvrdb Schema Status")
    print("=" * 50)
    print(f"Current version: {current}")
    print(f"Expected version: {EXPECTED_VERSION}")
    print()

    for record in log:
        when = datetime.fromtimestamp(record.unix_time, tz=timezone.utc)
        print(f"  {record.id:>3}  {when:%Y-%m-%d %H:%M:%S}Z  {record.notes or ''}")

    if current is not None and current < EXPECTED_VERSION:
        print()
        print("Run `nvrdb upgrade` to bring the database up to date.")
