"""Init command for nvrdb CLI."""

from ...core.config import Config
from ...core.exceptions import DatabaseError
from ...core.types import JournalMode
from ...store.database import Database
from ...store.schema import EXPECTED_VERSION, init_schema
from ...store.upgrade import force_durability, set_journal_mode


def handle_init(args, config: Config) -> None:
    """Handle init command.

    Args:
        args: Parsed command arguments.
        config: Application configuration.
    """
    if config.db_path.exists():
        raise DatabaseError(f"Database already exists at {config.db_path}")

    with Database(config.db_path) as db:
        conn = db.connection
        force_durability(conn)
        # page_size only applies before the first table is created.
        conn.execute(f"pragma page_size = {config.upgrade.page_size:d}")
        init_schema(conn)
        set_journal_mode(conn, JournalMode.WAL)
    print(f"Created {config.db_path} at version {EXPECTED_VERSION}")
