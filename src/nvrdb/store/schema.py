"""Database schema definitions for nvrdb."""

import sqlite3
import time
from typing import Callable

from loguru import logger

from ..core.exceptions import DatabaseError
from ..core.types import VersionRecord
from .database import transaction

# Version a freshly created database starts at, and the version every
# upgrade ends at. Must equal the number of registered upgrade steps.
EXPECTED_VERSION = 3

SCHEMA_SQL = """\
-- Schema version log. max(id) is the current version.
create table version (
  id integer primary key,
  unix_time integer not null,
  notes text
);

-- Each time the recorder opens the database for writing.
create table open (
  id integer primary key,
  uuid blob unique not null check (length(uuid) = 16),
  start_time_90k integer,
  end_time_90k integer,
  duration_90k integer
);

-- Directories holding sample files.
create table sample_file_dir (
  id integer primary key,
  path text unique not null,
  uuid blob unique not null check (length(uuid) = 16),
  last_complete_open_id integer references open (id)
);

create table camera (
  id integer primary key,
  uuid blob unique not null check (length(uuid) = 16),
  short_name text not null,
  description text,
  host text,
  username text,
  password text,
  main_rtsp_path text,
  sub_rtsp_path text,
  retain_bytes integer not null check (retain_bytes >= 0),
  next_recording_id integer not null default 0 check (next_recording_id >= 0),
  sample_file_dir_id integer references sample_file_dir (id)
);

create table video_sample_entry (
  id integer primary key,
  sha1 blob unique not null check (length(sha1) = 20),
  width integer not null check (width > 0),
  height integer not null check (height > 0),
  data blob not null check (length(data) > 86),
  rfc6381_codec text not null default ''
);

-- One row per recorded segment. composite_id is camera_id << 32 | recording_id.
create table recording (
  composite_id integer primary key,
  camera_id integer not null references camera (id),
  run_offset integer not null,
  flags integer not null,
  sample_file_bytes integer not null check (sample_file_bytes > 0),
  start_time_90k integer not null check (start_time_90k > 0),
  duration_90k integer not null check (duration_90k >= 0 and duration_90k < 5*60*90000),
  local_time_delta_90k integer not null,
  video_samples integer not null check (video_samples > 0),
  video_sync_samples integer not null check (video_sync_samples > 0),
  video_sample_entry_id integer references video_sample_entry (id),
  check (composite_id >> 32 = camera_id)
);

create index recording_cover on recording (
  camera_id,
  start_time_90k,
  duration_90k,
  video_samples,
  video_sample_entry_id,
  sample_file_bytes
);

-- Data needed only to serve a recording, kept apart from the cover index.
create table recording_playback (
  composite_id integer primary key references recording (composite_id),
  sample_file_uuid blob not null check (length(sample_file_uuid) = 16),
  sample_file_sha1 blob not null check (length(sample_file_sha1) = 20),
  video_index blob not null check (length(video_index) > 0)
);

-- Sample files whose recording rows are gone but which may still be on disk.
create table garbage (
  sample_file_dir_id integer not null references sample_file_dir (id),
  composite_id integer not null,
  primary key (sample_file_dir_id, composite_id)
) without rowid;
"""


def unix_now() -> int:
    """Current wall-clock time in whole seconds."""
    return int(time.time())


def get_schema() -> str:
    """Get the SQL schema string."""
    return SCHEMA_SQL


def get_version(conn: sqlite3.Connection) -> int | None:
    """Get the current schema version from the version log.

    Returns:
        ``max(id)`` of the version table, or None if it has no rows.

    Raises:
        DatabaseError: If the version table cannot be read.
    """
    try:
        row = conn.execute("select max(id) from version").fetchone()
    except sqlite3.Error as e:
        raise DatabaseError(f"Unable to read schema version: {e}") from e
    return row[0]


def get_version_log(conn: sqlite3.Connection) -> list[VersionRecord]:
    """Get every row of the version log, oldest first."""
    try:
        rows = conn.execute(
            "select id, unix_time, notes from version order by id"
        ).fetchall()
    except sqlite3.Error as e:
        raise DatabaseError(f"Unable to read version log: {e}") from e
    return [VersionRecord.from_row(row) for row in rows]


def init_schema(
    conn: sqlite3.Connection,
    clock: Callable[[], int] = unix_now,
) -> None:
    """Create a fresh database directly at EXPECTED_VERSION.

    Args:
        conn: Connection to an empty database, in autocommit mode.
        clock: Source of the creation timestamp.

    Raises:
        DatabaseError: If the database already has tables or creation fails.
    """
    (existing,) = conn.execute(
        "select count(*) from sqlite_master "
        "where type = 'table' and name not like 'sqlite_%'"
    ).fetchone()
    if existing:
        raise DatabaseError(
            f"Refusing to initialize a database that already has {existing} table(s)"
        )

    try:
        with transaction(conn) as tx:
            tx.executescript(SCHEMA_SQL)
            tx.execute(
                "insert into version (id, unix_time, notes) values (?, ?, ?)",
                (EXPECTED_VERSION, clock(), "db creation"),
            )
    except sqlite3.Error as e:
        raise DatabaseError(f"Failed to initialize schema: {e}") from e

    logger.info(f"Created database at schema version {EXPECTED_VERSION}")
