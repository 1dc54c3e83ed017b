"""Core types for nvrdb."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import Enum

from .exceptions import ConfigError


class JournalMode(str, Enum):
    """SQLite journal modes accepted by ``pragma journal_mode``.

    This is the complete set of values nvrdb will place into a pragma
    statement; anything else is rejected before reaching SQLite.
    """

    DELETE = "delete"
    TRUNCATE = "truncate"
    PERSIST = "persist"
    MEMORY = "memory"
    WAL = "wal"
    OFF = "off"

    @classmethod
    def parse(cls, value: "str | JournalMode") -> "JournalMode":
        """Parse a journal mode name.

        Args:
            value: Mode name (case-insensitive) or an existing JournalMode.

        Returns:
            The matching JournalMode.

        Raises:
            ConfigError: If the value is not a known journal mode.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ConfigError(
                f"Unknown journal mode {value!r} (expected one of: {choices})"
            ) from None


class UpgradeState(str, Enum):
    """States of a single upgrade run."""

    VALIDATING = "validating"
    MIGRATING = "migrating"
    COMPACTING = "compacting"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UpgradeState.DONE, UpgradeState.FAILED)


@dataclass
class UpgradeStatus:
    """Where an upgrade run is, or where it stopped.

    Attributes:
        state: Current state of the run.
        version: Schema version the database is committed at, if known.
        cause: Exception that moved the run to FAILED.
        applied: Number of steps committed during this run.
    """

    state: UpgradeState = UpgradeState.VALIDATING
    version: int | None = None
    cause: BaseException | None = None
    applied: int = 0

    def __str__(self) -> str:
        if self.state is UpgradeState.MIGRATING:
            return f"migrating({self.version})"
        if self.state is UpgradeState.FAILED:
            return f"failed({self.version}, {self.cause})"
        return self.state.value


@dataclass
class VersionRecord:
    """One row of the schema version log."""

    id: int
    unix_time: int
    notes: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row | tuple) -> "VersionRecord":
        """Create from database row."""
        return cls(id=row[0], unix_time=row[1], notes=row[2])
