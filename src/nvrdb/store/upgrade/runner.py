"""Schema upgrade orchestration.

Validates the recorded version, then applies each pending step in its own
transaction, appending to the version log in that same transaction. The
version log is the only record of progress: after a failure the database sits
at the last committed version and a later run picks up from there.
"""

from __future__ import annotations

import sqlite3
from typing import Callable

from loguru import logger

from ... import __version__
from ...core.config import UpgradeConfig
from ...core.exceptions import (
    CompactionError,
    CorruptVersionError,
    DatabaseError,
    InvalidTargetError,
    StepFailureError,
    VersionOutOfRangeError,
)
from ...core.types import JournalMode, UpgradeState, UpgradeStatus
from ..database import transaction
from ..schema import EXPECTED_VERSION, get_version, unix_now
from .pragmas import compact, force_durability, get_journal_mode, set_journal_mode
from .registry import StepRegistry
from .steps import STEPS

UPGRADE_NOTES = f"upgraded using nvrdb {__version__}"

_TRANSITIONS: dict[UpgradeState, frozenset[UpgradeState]] = {
    UpgradeState.VALIDATING: frozenset(
        {UpgradeState.MIGRATING, UpgradeState.FAILED}
    ),
    UpgradeState.MIGRATING: frozenset(
        {
            UpgradeState.MIGRATING,
            UpgradeState.COMPACTING,
            UpgradeState.DONE,
            UpgradeState.FAILED,
        }
    ),
    UpgradeState.COMPACTING: frozenset({UpgradeState.DONE, UpgradeState.FAILED}),
    UpgradeState.DONE: frozenset(),
    UpgradeState.FAILED: frozenset(),
}


class Upgrader:
    """Upgrades one database connection to the expected schema version.

    The connection must be in autocommit mode (``isolation_level=None``) and
    must not be used by anything else while an upgrade runs.

    Example:
        upgrader = Upgrader(conn, UpgradeConfig(sample_file_dir=Path("/media")))
        status = upgrader.run()
        print(f"Applied {status.applied} step(s), now at version {status.version}")
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        config: UpgradeConfig | None = None,
        registry: StepRegistry = STEPS,
        expected_version: int = EXPECTED_VERSION,
        clock: Callable[[], int] = unix_now,
        notes: str = UPGRADE_NOTES,
    ):
        """Initialize with database connection.

        Args:
            connection: SQLite connection to upgrade.
            config: Upgrade settings; defaults to UpgradeConfig().
            registry: Steps indexed by the version they upgrade from.
            expected_version: Version the database should end at.
            clock: Source of version log timestamps, in unix seconds.
            notes: Note stored with every version log row.
        """
        self.conn = connection
        self.config = config or UpgradeConfig()
        self.registry = registry
        self.expected_version = expected_version
        self.clock = clock
        self.notes = notes
        self.status = UpgradeStatus()

    def _transition(
        self,
        state: UpgradeState,
        version: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        if state not in _TRANSITIONS[self.status.state]:
            raise RuntimeError(f"Invalid upgrade transition {self.status} -> {state.value}")
        self.status.state = state
        if version is not None:
            self.status.version = version
        self.status.cause = cause
        logger.debug(f"Upgrade state: {self.status}")

    def _fail(self, cause: BaseException) -> None:
        if not self.status.state.is_terminal:
            self._transition(UpgradeState.FAILED, cause=cause)

    def get_version(self) -> int | None:
        """Get current schema version from the version log."""
        return get_version(self.conn)

    def validate(self, target_version: int | None = None) -> range:
        """Check the recorded version and compute the versions to upgrade from.

        Reads the version log only; no pragma or transaction is issued.

        Args:
            target_version: Version to upgrade to; defaults to expected_version.

        Returns:
            The range of versions whose steps still need to run.

        Raises:
            InvalidTargetError: If target_version is outside 0..expected_version.
            VersionOutOfRangeError: If the database is newer than expected or
                than the target.
            CorruptVersionError: If the version log is empty or negative.
            DatabaseError: If the version log cannot be read.
        """
        if target_version is None:
            target_version = self.expected_version
        if not 0 <= target_version <= self.expected_version:
            raise InvalidTargetError(target_version, self.expected_version)

        old_version = self.get_version()
        if old_version is None or old_version < 0:
            raise CorruptVersionError(old_version)
        if old_version > self.expected_version:
            raise VersionOutOfRangeError(old_version, self.expected_version)
        if old_version > target_version:
            # Downgrades are not supported.
            raise VersionOutOfRangeError(old_version, target_version)
        return range(old_version, target_version)

    def _apply(self, version: int) -> None:
        step = self.registry[version]
        logger.info(f"...from version {version} to version {version + 1}")
        try:
            with transaction(self.conn) as tx:
                step.run(self.config, tx)
                tx.execute(
                    "insert into version (id, unix_time, notes) values (?, ?, ?)",
                    (version + 1, self.clock(), self.notes),
                )
        except Exception as e:
            logger.error(f"Upgrade step {step!r} failed: {e}")
            raise StepFailureError(version, e) from e
        self.status.applied += 1

    def _migrate(self, versions: range) -> int:
        self._transition(UpgradeState.MIGRATING, version=versions.start)
        if not versions:
            logger.info(f"Database already at version {versions.start}; nothing to upgrade")
            return 0

        logger.info(
            f"Upgrading database from version {versions.start} to version {versions.stop}..."
        )
        set_journal_mode(self.conn, self.config.preset_journal, self.config.strict_pragmas)
        for version in versions:
            self._apply(version)
            self._transition(UpgradeState.MIGRATING, version=version + 1)
        return len(versions)

    def upgrade(self, target_version: int | None = None) -> int:
        """Apply pending steps up to target_version.

        Each step runs in its own transaction together with its version log
        row. Steps stop at the first failure.

        Args:
            target_version: Version to stop at; defaults to expected_version.

        Returns:
            Number of steps applied.

        Raises:
            StepFailureError: If a step (or its commit) fails.
        """
        self.status = UpgradeStatus()
        try:
            versions = self.validate(target_version)
            self.registry.check_length(self.expected_version)
            if self.conn.in_transaction:
                raise DatabaseError("Connection is already inside a transaction")
            applied = self._migrate(versions)
        except Exception as e:
            self._fail(e)
            raise

        self._transition(UpgradeState.DONE)
        return applied

    def run(self) -> UpgradeStatus:
        """Upgrade to expected_version and prepare for normal operation.

        Validates, forces durable pragmas, applies all pending steps, then
        optionally vacuums and finally switches to WAL.

        Returns:
            The final status (state DONE).

        Raises:
            UpgradeError: On any failure; the database stays at the last
                committed version.
        """
        self.status = UpgradeStatus()
        try:
            versions = self.validate()
            self.registry.check_length(self.expected_version)
            if self.conn.in_transaction:
                raise DatabaseError("Connection is already inside a transaction")

            force_durability(self.conn, self.config.strict_pragmas)
            self._migrate(versions)

            compaction_error = None
            if not self.config.no_vacuum:
                self._transition(UpgradeState.COMPACTING)
                # The page size can't change in WAL mode, which a database that
                # needed no steps may still be in.
                if get_journal_mode(self.conn) == JournalMode.WAL.value:
                    set_journal_mode(
                        self.conn, self.config.preset_journal, self.config.strict_pragmas
                    )
                logger.info("...vacuuming database after upgrade.")
                try:
                    compact(self.conn, self.config.page_size, self.config.strict_pragmas)
                except CompactionError as e:
                    logger.error(f"{e}; upgraded schema is kept")
                    compaction_error = e

            # WAL is the preferred journal mode for normal operation; it reduces
            # the number of syncs without compromising safety. It is set after
            # vacuum since the page size can't change once in WAL mode.
            set_journal_mode(self.conn, JournalMode.WAL, self.config.strict_pragmas)
            if compaction_error is not None:
                raise compaction_error
        except Exception as e:
            self._fail(e)
            raise

        self._transition(UpgradeState.DONE)
        logger.info("...done.")
        return self.status

    def is_up_to_date(self) -> bool:
        """Check if database is at expected_version."""
        return self.get_version() == self.expected_version


def run(
    config: UpgradeConfig,
    connection: sqlite3.Connection,
    **kwargs,
) -> UpgradeStatus:
    """Upgrade the database behind connection to EXPECTED_VERSION.

    Args:
        config: Upgrade settings.
        connection: SQLite connection in autocommit mode.
        **kwargs: Passed through to Upgrader.

    Returns:
        The final upgrade status.
    """
    return Upgrader(connection, config, **kwargs).run()
