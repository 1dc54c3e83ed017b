"""Durability, journal mode and compaction pragmas used around an upgrade.

Pragma statements cannot take bound parameters, so every value placed into
one here is either a JournalMode member or an integer checked by this module.
"""

import sqlite3

from loguru import logger

from ...core.exceptions import CompactionError, DatabaseError, PragmaMismatchError
from ...core.types import JournalMode

# pragma name -> value forced for the whole migration window
DURABILITY_PRAGMAS: tuple[tuple[str, int], ...] = (
    # Foreign keys are immediate, so steps must order their writes carefully.
    ("foreign_keys", 1),
    # Only has an effect on macOS builds.
    ("fullfsync", 1),
    # FULL
    ("synchronous", 2),
)

_INT_PRAGMAS = frozenset(name for name, _ in DURABILITY_PRAGMAS) | {"page_size"}


def _report_mismatch(error: PragmaMismatchError, strict: bool) -> None:
    if strict:
        raise error
    logger.warning(f"...{error}; continuing with the granted value.")


def _set_int_pragma(conn: sqlite3.Connection, name: str, value: int) -> int:
    if name not in _INT_PRAGMAS or not isinstance(value, int):
        raise ValueError(f"Refusing to set pragma {name!r} = {value!r}")
    try:
        conn.execute(f"pragma {name} = {value:d}")
    except sqlite3.OperationalError as e:
        # Refusals (e.g. synchronous inside a transaction) vary by SQLite
        # build. Callers compare the value read back below.
        logger.warning(f"...SQLite refused pragma {name} = {value}: {e}")
    try:
        return conn.execute(f"pragma {name}").fetchone()[0]
    except sqlite3.Error as e:
        raise DatabaseError(f"Failed to read pragma {name}: {e}") from e


def get_journal_mode(conn: sqlite3.Connection) -> str:
    """Return the journal mode currently in effect."""
    try:
        return str(conn.execute("pragma journal_mode").fetchone()[0]).lower()
    except sqlite3.Error as e:
        raise DatabaseError(f"Failed to read journal_mode: {e}") from e


def set_journal_mode(
    conn: sqlite3.Connection,
    requested: JournalMode | str,
    strict: bool = False,
) -> str:
    """Switch the journal mode and report what SQLite actually granted.

    SQLite may answer with a different mode than requested, e.g. ``memory``
    for in-memory databases or when WAL is unsupported.

    Args:
        conn: Connection outside any transaction.
        requested: Journal mode to request.
        strict: Raise PragmaMismatchError instead of logging a warning.

    Returns:
        The journal mode now in effect.

    Raises:
        ConfigError: If requested is not a known journal mode.
        PragmaMismatchError: If strict and the mode was not granted.
    """
    mode = JournalMode.parse(requested)
    try:
        actual = conn.execute(f"pragma journal_mode = {mode.value}").fetchone()[0]
    except sqlite3.Error as e:
        raise DatabaseError(f"Failed to set journal_mode {mode.value}: {e}") from e
    actual = str(actual).lower()
    logger.info(f"...database now in journal_mode {actual} (requested {mode.value}).")
    if actual != mode.value:
        _report_mismatch(PragmaMismatchError("journal_mode", mode.value, actual), strict)
    return actual


def force_durability(conn: sqlite3.Connection, strict: bool = False) -> dict[str, int]:
    """Enable the most conservative durability settings.

    Applied regardless of how the caller configured the connection, since a
    migration is rare and rewrites schema.

    Returns:
        Mapping of pragma name to the value SQLite reports afterwards.
    """
    granted = {}
    for name, value in DURABILITY_PRAGMAS:
        actual = _set_int_pragma(conn, name, value)
        granted[name] = actual
        if actual != value:
            _report_mismatch(PragmaMismatchError(name, value, actual), strict)
    logger.debug(f"Durability pragmas in effect: {granted}")
    return granted


def compact(conn: sqlite3.Connection, page_size: int, strict: bool = False) -> None:
    """Rebuild the database file at the given page size.

    Must run outside any transaction; vacuum cannot be rolled back, and it
    cannot change the page size of a database in WAL mode.

    Raises:
        CompactionError: If the vacuum fails.
        PragmaMismatchError: If strict and the page size did not take effect.
    """
    if conn.in_transaction:
        raise CompactionError("Cannot vacuum inside a transaction")
    try:
        _set_int_pragma(conn, "page_size", page_size)
        conn.execute("vacuum")
        actual = conn.execute("pragma page_size").fetchone()[0]
    except (sqlite3.Error, DatabaseError) as e:
        raise CompactionError(f"Vacuum failed: {e}") from e
    if actual != page_size:
        _report_mismatch(PragmaMismatchError("page_size", page_size, actual), strict)
