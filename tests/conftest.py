"""Pytest configuration and fixtures."""

import itertools
import sqlite3
import uuid
from pathlib import Path

import pytest
from loguru import logger

from nvrdb.store.schema import init_schema

SCHEMA_FIXTURES = Path(__file__).parent / "fixtures" / "schema"


def _sample_entry(profile: int = 0x4D, constraints: int = 0x00, level: int = 0x1F) -> bytes:
    avcc = bytes([1, profile, constraints, level, 0xFF, 0xE1])
    avcc_box = (8 + len(avcc)).to_bytes(4, "big") + b"avcC" + avcc
    return (8 + 78 + len(avcc_box)).to_bytes(4, "big") + b"avc1" + bytes(78) + avcc_box


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    """Provide a temporary database path for tests."""
    return tmp_path / "test.db"


@pytest.fixture
def schema_sql():
    """Load the SQL for a schema version from tests/fixtures/schema."""

    def load(version: int) -> str:
        return (SCHEMA_FIXTURES / f"v{version}.sql").read_text()

    return load


@pytest.fixture
def conn(test_db_path: Path):
    """Provide an empty file-backed connection in autocommit mode."""
    connection = sqlite3.connect(str(test_db_path), isolation_level=None)
    yield connection
    connection.close()


@pytest.fixture
def v0_conn(conn: sqlite3.Connection, schema_sql) -> sqlite3.Connection:
    """Provide a connection to an empty version-0 database."""
    conn.executescript(schema_sql(0))
    return conn


@pytest.fixture
def fresh_conn(tmp_path: Path):
    """Provide a database created directly at the expected version."""
    connection = sqlite3.connect(str(tmp_path / "fresh.db"), isolation_level=None)
    init_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def sample_entry():
    """Build an avc1 video sample entry with the given profile/level bytes."""
    return _sample_entry


@pytest.fixture
def sample_file_dir(tmp_path: Path) -> Path:
    """Provide an empty sample file directory."""
    path = tmp_path / "sample"
    path.mkdir()
    return path


@pytest.fixture
def populated_v0_conn(v0_conn: sqlite3.Connection, sample_file_dir: Path):
    """Version-0 database with two cameras, recordings, and their sample files."""
    conn = v0_conn
    conn.execute(
        "insert into video_sample_entry (id, sha1, width, height, data) values (?, ?, ?, ?, ?)",
        (1, b"\x01" * 20, 1920, 1080, _sample_entry()),
    )
    for camera_id in (1, 2):
        conn.execute(
            """
            insert into camera (id, uuid, short_name, host, retain_bytes)
                        values (?, ?, ?, ?, ?)
            """,
            (camera_id, uuid.uuid4().bytes, f"cam{camera_id}", "192.168.1.1", 10**9),
        )

    # Inserted out of start-time order to exercise per-camera id assignment.
    recordings = [
        (1, 1, 180_000),
        (2, 2, 90_000),
        (3, 1, 90_000),
        (4, 1, 270_000),
    ]
    for rec_id, camera_id, start in recordings:
        sample_uuid = uuid.uuid4()
        conn.execute(
            """
            insert into recording (id, camera_id, sample_file_bytes, start_time_90k,
                                   duration_90k, local_time_delta_90k, video_samples,
                                   video_sync_samples, video_sample_entry_id,
                                   sample_file_uuid, sample_file_sha1, video_index)
                           values (?, ?, 1000, ?, 90000, 0, 30, 1, 1, ?, ?, ?)
            """,
            (rec_id, camera_id, start, sample_uuid.bytes, b"\x02" * 20, b"\x00\x01"),
        )
        (sample_file_dir / sample_uuid.hex).write_bytes(b"mdat")
    return conn


@pytest.fixture
def clock():
    """Strictly increasing fake unix clock."""
    return itertools.count(1_600_000_000).__next__


@pytest.fixture
def statements(conn: sqlite3.Connection) -> list[str]:
    """Record every SQL statement executed on conn."""
    executed: list[str] = []
    conn.set_trace_callback(executed.append)
    yield executed
    conn.set_trace_callback(None)


@pytest.fixture
def log_messages() -> list:
    """Capture loguru records as (level, message) tuples."""
    captured = []
    handler_id = logger.add(
        lambda message: captured.append(
            (message.record["level"].name, message.record["message"])
        ),
        level="DEBUG",
    )
    yield captured
    logger.remove(handler_id)
