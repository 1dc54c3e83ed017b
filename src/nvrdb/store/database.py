"""SQLite connection and transaction handling for nvrdb."""

import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

from loguru import logger

from ..core.exceptions import DatabaseError

# Statements only the owner of a transaction may issue.
_TRANSACTION_CONTROL = frozenset(
    {"begin", "commit", "end", "rollback", "savepoint", "release"}
)

_LEADING_NOISE = re.compile(r"(?:\s+|--[^\n]*(?:\n|$)|/\*.*?(?:\*/|$))*", re.DOTALL)
_WORD = re.compile(r"[A-Za-z_]+")


def _leading_keyword(sql: str) -> str:
    """Return the first keyword of a statement, skipping whitespace and comments."""
    match = _WORD.match(sql, _LEADING_NOISE.match(sql).end())
    return match.group(0).lower() if match else ""


def split_statements(script: str) -> list[str]:
    """Split a SQL script into complete statements.

    Semicolons inside string literals and trigger bodies are kept together
    because each candidate is checked with ``sqlite3.complete_statement``.

    Args:
        script: SQL script with one or more statements.

    Returns:
        List of statements, without empty ones.
    """
    statements = []
    pending = ""
    for piece in script.split(";"):
        pending += piece + ";"
        if sqlite3.complete_statement(pending):
            statement = pending.strip()
            if statement.rstrip(";").strip():
                statements.append(statement)
            pending = ""
    return statements


class Transaction:
    """Handle to an open transaction.

    Upgrade steps make all their changes through this object. It has no
    commit or rollback; whoever opened the transaction decides its outcome.
    """

    def __init__(self, connection: sqlite3.Connection):
        self._connection = connection
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def _check_open(self, sql: str) -> sqlite3.Connection:
        if not self._open:
            raise DatabaseError("Transaction is closed")
        if _leading_keyword(sql) in _TRANSACTION_CONTROL:
            raise DatabaseError(f"Transaction control is not allowed here: {sql.strip()!r}")
        return self._connection

    def execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        """Execute one statement inside the transaction."""
        return self._check_open(sql).execute(sql, tuple(params))

    def executemany(self, sql: str, seq_of_params: Iterable[Iterable[Any]]) -> sqlite3.Cursor:
        """Execute one statement for each parameter set."""
        return self._check_open(sql).executemany(sql, seq_of_params)

    def executescript(self, sql: str) -> None:
        """Execute several statements without leaving the transaction.

        ``sqlite3.Connection.executescript`` commits any pending transaction
        first, so statements are run one by one instead.
        """
        for statement in split_statements(sql):
            self._check_open(statement).execute(statement)

    def close(self) -> None:
        self._open = False


@contextmanager
def transaction(connection: sqlite3.Connection) -> Iterator[Transaction]:
    """Run a block inside one explicit transaction.

    Commits when the block exits normally. Rolls back and re-raises when the
    block or the commit itself raises. The connection must be in autocommit
    mode (``isolation_level=None``) and not already inside a transaction.

    Yields:
        A Transaction handle for the block.

    Raises:
        DatabaseError: If a transaction is already open.
    """
    if connection.in_transaction:
        raise DatabaseError("Connection is already inside a transaction")

    connection.execute("BEGIN")
    tx = Transaction(connection)
    try:
        yield tx
    except BaseException:
        tx.close()
        # Some errors (e.g. SQLITE_FULL) already roll back on their own.
        if connection.in_transaction:
            connection.execute("ROLLBACK")
        raise
    else:
        tx.close()
        try:
            connection.execute("COMMIT")
        except BaseException:
            # A failed COMMIT (deferred constraint, SQLITE_BUSY) leaves the
            # transaction open.
            if connection.in_transaction:
                connection.execute("ROLLBACK")
            raise


class Database:
    """SQLite database connection manager."""

    def __init__(self, path: Path):
        """Initialize database with path.

        Args:
            path: Path to the SQLite database file.
        """
        self.path = path
        self._connection: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """The open connection.

        Raises:
            DatabaseError: If not connected.
        """
        if not self._connection:
            raise DatabaseError("Database not connected")
        return self._connection

    def connect(self) -> None:
        """Open the database file in explicit-transaction mode."""
        if self._connection:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(str(self.path), isolation_level=None)
            self._connection.row_factory = sqlite3.Row
        except (OSError, sqlite3.Error) as e:
            raise DatabaseError(f"Failed to connect to database: {e}") from e
        logger.debug(f"Opened database {self.path}")

    def close(self) -> None:
        """Close database connection."""
        if self._connection:
            try:
                self._connection.close()
            except sqlite3.Error as e:
                raise DatabaseError(f"Failed to close database: {e}") from e
            finally:
                self._connection = None

    def __enter__(self) -> "Database":
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Context manager for database transactions.

        Yields:
            A Transaction handle.

        Raises:
            DatabaseError: If not connected or the transaction fails.
        """
        try:
            with transaction(self.connection) as tx:
                yield tx
        except sqlite3.Error as e:
            raise DatabaseError(f"Transaction failed: {e}") from e

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a SQL query.

        Args:
            sql: SQL statement to execute.
            params: Parameters for the SQL statement.

        Returns:
            A cursor with the query results.

        Raises:
            DatabaseError: If connection is not available or query fails.
        """
        try:
            return self.connection.execute(sql, params)
        except sqlite3.Error as e:
            raise DatabaseError(f"Query execution failed: {e}") from e
