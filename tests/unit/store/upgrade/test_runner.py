"""Tests for the schema upgrade orchestrator."""

import sqlite3
from pathlib import Path

import pytest

from nvrdb.core.config import UpgradeConfig
from nvrdb.core.exceptions import (
    CompactionError,
    CorruptVersionError,
    DatabaseError,
    InvalidTargetError,
    StepFailureError,
    VersionOutOfRangeError,
)
from nvrdb.core.types import UpgradeState
from nvrdb.store.compare import get_diffs
from nvrdb.store.schema import EXPECTED_VERSION, get_version, get_version_log
from nvrdb.store.upgrade import UPGRADE_NOTES, StepRegistry, UpgradeStep, Upgrader, run

VERSION_TABLE = """
create table version (
  id integer primary key,
  unix_time integer not null,
  notes text
);
"""


def _tables(conn: sqlite3.Connection) -> set[str]:
    return {
        row[0]
        for row in conn.execute("select name from sqlite_master where type = 'table'")
    }


def _creates(table: str):
    def step(config, tx):
        tx.execute(f"create table {table} (id integer primary key)")

    return step


def _fails_after_creating(table: str):
    def step(config, tx):
        tx.execute(f"create table {table} (id integer primary key)")
        raise RuntimeError(f"{table} is broken")

    return step


def _toy_registry(*fns) -> StepRegistry:
    return StepRegistry(UpgradeStep(i, f"step {i}", fn) for i, fn in enumerate(fns))


@pytest.fixture
def toy_conn(conn: sqlite3.Connection) -> sqlite3.Connection:
    """Database holding only a version log at version 0."""
    conn.executescript(VERSION_TABLE)
    conn.execute("insert into version (id, unix_time, notes) values (0, 1, 'db creation')")
    return conn


def _sql_kinds(statements: list[str]) -> set[str]:
    return {s.strip().split()[0].lower() for s in statements if s.strip()}


class TestValidate:
    """Tests for version validation."""

    def test_returns_pending_range(self, v0_conn: sqlite3.Connection):
        """A version-0 database needs every step."""
        assert Upgrader(v0_conn).validate() == range(0, EXPECTED_VERSION)

    def test_newer_database_is_refused(self, toy_conn: sqlite3.Connection, statements):
        """Older tooling must not touch a newer database."""
        toy_conn.execute(
            "insert into version (id, unix_time, notes) values (?, 2, 'future')",
            (EXPECTED_VERSION + 1,),
        )
        statements.clear()

        with pytest.raises(VersionOutOfRangeError) as excinfo:
            run(UpgradeConfig(), toy_conn)

        assert excinfo.value.observed == EXPECTED_VERSION + 1
        assert excinfo.value.expected == EXPECTED_VERSION
        assert not {"pragma", "begin"} & _sql_kinds(statements)

    def test_negative_version_is_corrupt(self, conn: sqlite3.Connection, statements):
        """A negative version means the log is corrupt."""
        conn.executescript(VERSION_TABLE)
        conn.execute("insert into version (id, unix_time, notes) values (-1, 1, 'bad')")
        statements.clear()

        with pytest.raises(CorruptVersionError, match="negative version -1"):
            run(UpgradeConfig(), conn)

        assert not {"pragma", "begin"} & _sql_kinds(statements)

    def test_empty_log_is_corrupt(self, conn: sqlite3.Connection):
        """A version table with no rows has no usable version."""
        conn.executescript(VERSION_TABLE)

        upgrader = Upgrader(conn)
        with pytest.raises(CorruptVersionError, match="no version rows"):
            upgrader.run()
        assert upgrader.status.state is UpgradeState.FAILED

    def test_missing_version_table(self, conn: sqlite3.Connection):
        """A database without a version log can't be upgraded."""
        with pytest.raises(DatabaseError, match="schema version"):
            run(UpgradeConfig(), conn)

    def test_downgrade_is_refused(self, toy_conn: sqlite3.Connection):
        """Targets below the current version are not supported."""
        registry = _toy_registry(_creates("t1"), _creates("t2"))
        upgrader = Upgrader(toy_conn, registry=registry, expected_version=2)
        upgrader.upgrade(2)

        with pytest.raises(VersionOutOfRangeError):
            upgrader.upgrade(1)
        assert get_version(toy_conn) == 2

    @pytest.mark.parametrize("target", [-1, 3])
    def test_invalid_target_is_refused(self, toy_conn: sqlite3.Connection, target: int):
        """A target outside the registry blames the argument, not the database."""
        registry = _toy_registry(_creates("t1"), _creates("t2"))
        upgrader = Upgrader(toy_conn, registry=registry, expected_version=2)

        with pytest.raises(InvalidTargetError, match=f"Cannot upgrade to version {target}"):
            upgrader.upgrade(target)
        assert get_version(toy_conn) == 0
        assert upgrader.status.state is UpgradeState.FAILED


class TestUpgrade:
    """Tests for applying steps."""

    def test_applies_steps_in_order(self, toy_conn: sqlite3.Connection, clock):
        """Each step should run once, in order, with its own version row."""
        calls = []

        def record(n):
            def step(config, tx):
                calls.append(n)
                tx.execute(f"create table t{n} (id integer primary key)")

            return step

        registry = _toy_registry(record(0), record(1), record(2))
        upgrader = Upgrader(toy_conn, registry=registry, expected_version=3, clock=clock)

        assert upgrader.upgrade() == 3
        assert calls == [0, 1, 2]
        assert {"t0", "t1", "t2"} <= _tables(toy_conn)
        assert upgrader.status.state is UpgradeState.DONE
        assert upgrader.status.version == 3

    def test_step_receives_config(self, toy_conn: sqlite3.Connection, tmp_path: Path):
        """Steps see the caller's UpgradeConfig."""
        seen = []
        registry = _toy_registry(lambda config, tx: seen.append(config))
        config = UpgradeConfig(sample_file_dir=tmp_path)

        Upgrader(toy_conn, config, registry=registry, expected_version=1).upgrade()

        assert seen == [config]

    def test_partial_target(self, toy_conn: sqlite3.Connection):
        """upgrade(target) stops at the target version."""
        registry = _toy_registry(_creates("t1"), _creates("t2"))
        upgrader = Upgrader(toy_conn, registry=registry, expected_version=2)

        assert upgrader.upgrade(1) == 1
        assert get_version(toy_conn) == 1
        assert "t2" not in _tables(toy_conn)

    def test_noop_when_up_to_date(self, fresh_conn: sqlite3.Connection):
        """A database at the expected version should not open a transaction."""
        statements: list[str] = []
        fresh_conn.set_trace_callback(statements.append)
        before = get_version_log(fresh_conn)

        status = run(UpgradeConfig(no_vacuum=True), fresh_conn)

        assert "begin" not in _sql_kinds(statements)
        assert get_version_log(fresh_conn) == before
        assert status.applied == 0
        assert status.state is UpgradeState.DONE

    def test_refuses_connection_in_transaction(self, toy_conn: sqlite3.Connection):
        """The orchestrator must own transaction control."""
        registry = _toy_registry(_creates("t1"))
        toy_conn.execute("begin")
        try:
            with pytest.raises(DatabaseError, match="already inside"):
                Upgrader(toy_conn, registry=registry, expected_version=1).upgrade()
        finally:
            toy_conn.execute("rollback")

    def test_registry_length_must_match(self, toy_conn: sqlite3.Connection):
        """A registry that doesn't reach the expected version is refused."""
        registry = _toy_registry(_creates("t1"))
        upgrader = Upgrader(toy_conn, registry=registry, expected_version=2)

        with pytest.raises(Exception, match="expected version is 2"):
            upgrader.run()
        assert get_version(toy_conn) == 0


class TestStepFailure:
    """Tests for failure and resume behavior."""

    def test_failed_step_leaves_no_trace(self, toy_conn: sqlite3.Connection):
        """The failing step's changes and version row are rolled back."""
        registry = _toy_registry(_creates("t1"), _fails_after_creating("t2"), _creates("t3"))
        upgrader = Upgrader(toy_conn, registry=registry, expected_version=3)

        with pytest.raises(StepFailureError) as excinfo:
            upgrader.run()

        assert excinfo.value.version == 1
        assert isinstance(excinfo.value.cause, RuntimeError)
        assert "1 to version 2" in str(excinfo.value)
        assert get_version(toy_conn) == 1
        tables = _tables(toy_conn)
        assert "t1" in tables
        assert "t2" not in tables
        assert "t3" not in tables
        assert not toy_conn.in_transaction
        assert upgrader.status.state is UpgradeState.FAILED
        assert upgrader.status.version == 1

    def test_failed_commit_rolls_back(self, toy_conn: sqlite3.Connection):
        """A step rejected at COMMIT leaves the connection usable at the old version."""

        def orphan(config, tx):
            tx.execute("create table parent (id integer primary key)")
            tx.execute(
                "create table child "
                "(p integer references parent (id) deferrable initially deferred)"
            )
            tx.execute("insert into child (p) values (1)")

        upgrader = Upgrader(toy_conn, registry=_toy_registry(orphan), expected_version=1)

        with pytest.raises(StepFailureError, match="0 to version 1") as excinfo:
            upgrader.run()

        assert isinstance(excinfo.value.cause, sqlite3.IntegrityError)
        assert not toy_conn.in_transaction
        assert get_version(toy_conn) == 0
        assert _tables(toy_conn) == {"version"}

        status = run(
            UpgradeConfig(), toy_conn, registry=_toy_registry(_creates("t1")), expected_version=1
        )
        assert status.applied == 1
        assert get_version(toy_conn) == 1

    def test_resume_after_fix(self, toy_conn: sqlite3.Connection):
        """Re-running with the step fixed continues from the failed version."""
        broken = _toy_registry(_creates("t1"), _fails_after_creating("t2"), _creates("t3"))
        with pytest.raises(StepFailureError):
            run(UpgradeConfig(), toy_conn, registry=broken, expected_version=3)

        calls = []

        def fixed_first(config, tx):
            calls.append(0)

        fixed = _toy_registry(fixed_first, _creates("t2"), _creates("t3"))
        status = run(UpgradeConfig(), toy_conn, registry=fixed, expected_version=3)

        assert calls == []  # version 0 -> 1 already committed
        assert status.applied == 2
        assert [r.id for r in get_version_log(toy_conn)] == [0, 1, 2, 3]

    def test_forced_pragmas_stay_after_failure(self, toy_conn: sqlite3.Connection):
        """Durability pragmas are not restored when a run fails."""
        toy_conn.execute("pragma synchronous = off")
        registry = _toy_registry(_fails_after_creating("t1"))

        with pytest.raises(StepFailureError):
            run(UpgradeConfig(), toy_conn, registry=registry, expected_version=1)

        assert toy_conn.execute("pragma synchronous").fetchone()[0] == 2
        assert toy_conn.execute("pragma foreign_keys").fetchone()[0] == 1

    def test_step_cannot_commit(self, toy_conn: sqlite3.Connection):
        """A step that tries to end the transaction itself fails."""

        def sneaky(config, tx):
            tx.execute("create table t1 (id integer primary key)")
            tx.execute("commit")

        registry = _toy_registry(sneaky)
        with pytest.raises(StepFailureError, match="Transaction control"):
            run(UpgradeConfig(), toy_conn, registry=registry, expected_version=1)

        assert get_version(toy_conn) == 0
        assert "t1" not in _tables(toy_conn)


class TestRun:
    """Tests for the full run()."""

    def test_scenario_version_0_to_3(
        self,
        populated_v0_conn: sqlite3.Connection,
        sample_file_dir: Path,
        fresh_conn: sqlite3.Connection,
        clock,
    ):
        """v0 with data should end with rows 1..3 and the fresh v3 schema."""
        config = UpgradeConfig(sample_file_dir=sample_file_dir)

        status = run(config, populated_v0_conn, clock=clock)

        log = [r for r in get_version_log(populated_v0_conn) if r.id > 0]
        assert [r.id for r in log] == [1, 2, 3]
        times = [r.unix_time for r in log]
        assert times == sorted(set(times))
        assert all(r.notes == UPGRADE_NOTES for r in log)
        assert status.applied == 3
        assert status.state is UpgradeState.DONE
        diffs = get_diffs("upgraded", populated_v0_conn, "fresh", fresh_conn)
        assert diffs is None, diffs

    @pytest.mark.parametrize("start_version", range(EXPECTED_VERSION + 1))
    def test_every_start_version_matches_fresh(
        self,
        start_version: int,
        populated_v0_conn: sqlite3.Connection,
        sample_file_dir: Path,
        fresh_conn: sqlite3.Connection,
    ):
        """Upgrading from any version yields the fresh schema."""
        config = UpgradeConfig(sample_file_dir=sample_file_dir, no_vacuum=True)
        Upgrader(populated_v0_conn, config).upgrade(start_version)
        assert get_version(populated_v0_conn) == start_version

        status = run(config, populated_v0_conn)

        assert status.applied == EXPECTED_VERSION - start_version
        assert get_version(populated_v0_conn) == EXPECTED_VERSION
        diffs = get_diffs("upgraded", populated_v0_conn, "fresh", fresh_conn)
        assert diffs is None, diffs

    @pytest.mark.parametrize("version", [1, 2])
    def test_intermediate_versions_match_fixtures(
        self,
        version: int,
        populated_v0_conn: sqlite3.Connection,
        sample_file_dir: Path,
        schema_sql,
    ):
        """Each intermediate version matches that version created directly."""
        config = UpgradeConfig(sample_file_dir=sample_file_dir)
        Upgrader(populated_v0_conn, config).upgrade(version)

        fresh = sqlite3.connect(":memory:")
        fresh.executescript(schema_sql(version))
        diffs = get_diffs("upgraded", populated_v0_conn, f"v{version}", fresh)
        assert diffs is None, diffs

    def test_ends_in_wal_with_configured_page_size(
        self, populated_v0_conn: sqlite3.Connection, sample_file_dir: Path
    ):
        """Compaction sets the page size, then the journal switches to WAL."""
        config = UpgradeConfig(sample_file_dir=sample_file_dir, page_size=16384)

        run(config, populated_v0_conn)

        assert populated_v0_conn.execute("pragma journal_mode").fetchone()[0] == "wal"
        assert populated_v0_conn.execute("pragma page_size").fetchone()[0] == 16384

    def test_up_to_date_wal_database_gets_page_size(self, fresh_conn: sqlite3.Connection):
        """A database already in WAL still ends at the configured page size."""
        fresh_conn.execute("pragma journal_mode = wal")
        assert fresh_conn.execute("pragma page_size").fetchone()[0] != 16384

        status = run(UpgradeConfig(page_size=16384), fresh_conn)

        assert status.applied == 0
        assert status.state is UpgradeState.DONE
        assert fresh_conn.execute("pragma page_size").fetchone()[0] == 16384
        assert fresh_conn.execute("pragma journal_mode").fetchone()[0] == "wal"

    def test_no_vacuum_skips_compaction(
        self, populated_v0_conn: sqlite3.Connection, sample_file_dir: Path, statements
    ):
        """no_vacuum=True should skip the rebuild but still switch to WAL."""
        config = UpgradeConfig(sample_file_dir=sample_file_dir, no_vacuum=True)

        run(config, populated_v0_conn)

        assert "vacuum" not in _sql_kinds(statements)
        assert populated_v0_conn.execute("pragma journal_mode").fetchone()[0] == "wal"

    def test_preset_journal_used_during_steps(self, toy_conn: sqlite3.Connection):
        """Steps run under the preset journal mode, not WAL."""
        modes = []

        def capture(config, tx):
            modes.append(tx.execute("pragma journal_mode").fetchone()[0])

        registry = _toy_registry(capture)
        config = UpgradeConfig(preset_journal="truncate", no_vacuum=True)
        run(config, toy_conn, registry=registry, expected_version=1)

        assert modes == ["truncate"]
        assert toy_conn.execute("pragma journal_mode").fetchone()[0] == "wal"

    def test_compaction_failure_keeps_upgrade(
        self, toy_conn: sqlite3.Connection, monkeypatch
    ):
        """A failed vacuum is reported but committed versions remain."""

        def broken_compact(conn, page_size, strict=False):
            raise CompactionError("Vacuum failed: disk full")

        monkeypatch.setattr("nvrdb.store.upgrade.runner.compact", broken_compact)
        registry = _toy_registry(_creates("t1"))
        upgrader = Upgrader(toy_conn, registry=registry, expected_version=1)

        with pytest.raises(CompactionError, match="disk full"):
            upgrader.run()

        assert get_version(toy_conn) == 1
        assert toy_conn.execute("pragma journal_mode").fetchone()[0] == "wal"
        assert upgrader.status.state is UpgradeState.FAILED

    def test_logs_progress(self, toy_conn: sqlite3.Connection, log_messages):
        """Successful runs log informational progress only."""
        registry = _toy_registry(_creates("t1"))

        run(UpgradeConfig(no_vacuum=True), toy_conn, registry=registry, expected_version=1)

        info = [msg for level, msg in log_messages if level == "INFO"]
        assert any("from version 0 to version 1" in msg for msg in info)
        assert any("journal_mode wal" in msg for msg in info)
        assert "...done." in info
        assert not [msg for level, msg in log_messages if level == "ERROR"]
