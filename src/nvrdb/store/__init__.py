"""SQLite storage layer for nvrdb."""

from .compare import get_diffs
from .database import Database, Transaction, transaction
from .schema import (
    EXPECTED_VERSION,
    get_schema,
    get_version,
    get_version_log,
    init_schema,
)

__all__ = [
    "Database",
    "Transaction",
    "transaction",
    "EXPECTED_VERSION",
    "get_schema",
    "get_version",
    "get_version_log",
    "init_schema",
    "get_diffs",
]
