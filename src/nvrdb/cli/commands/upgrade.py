"""Upgrade command for nvrdb CLI."""

from dataclasses import replace

from ...core.config import Config, UpgradeConfig
from ...core.exceptions import DatabaseError
from ...store.database import Database
from ...store.upgrade import run


def build_upgrade_config(args, base: UpgradeConfig) -> UpgradeConfig:
    """Overlay command-line flags on the configured upgrade settings."""
    changes = {}
    if args.sample_file_dir is not None:
        changes["sample_file_dir"] = args.sample_file_dir
    if args.preset_journal is not None:
        changes["preset_journal"] = args.preset_journal
    if args.no_vacuum:
        changes["no_vacuum"] = True
    return replace(base, **changes)


def handle_upgrade(args, config: Config) -> None:
    """Handle upgrade command.

    Args:
        args: Parsed command arguments.
        config: Application configuration.
    """
    if not config.db_path.exists():
        raise DatabaseError(f"No database at {config.db_path}; run `nvrdb init` first")

    upgrade_config = build_upgrade_config(args, config.upgrade)
    with Database(config.db_path) as db:
        status = run(upgrade_config, db.connection)
    print(f"Database at version {status.version} ({status.applied} step(s) applied)")
