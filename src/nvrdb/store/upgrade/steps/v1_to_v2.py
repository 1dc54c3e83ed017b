"""Track sample file directories and database opens.

Changes:
- open: new; one row per time the database is opened for writing
- sample_file_dir: new; directories holding sample files
- camera.sample_file_dir_id: new; directory each camera records into

Databases with cameras need ``UpgradeConfig.sample_file_dir`` so existing
cameras can be pointed at the directory their files already live in.
"""

import uuid
from pathlib import Path

from loguru import logger

FROM_VERSION = 1
DESCRIPTION = "Add open and sample_file_dir tables"


class SampleFileDirError(ValueError):
    """sample_file_dir is missing or unusable."""


def _check_sample_files(tx, sample_file_dir: Path) -> int:
    """Count recordings whose sample file is not in sample_file_dir."""
    missing = 0
    for (raw_uuid,) in tx.execute("select sample_file_uuid from recording_playback"):
        if not (sample_file_dir / uuid.UUID(bytes=raw_uuid).hex).exists():
            missing += 1
    return missing


def run(config, tx):
    """Apply v1 -> v2."""
    tx.executescript(
        """
        create table open (
          id integer primary key,
          uuid blob unique not null check (length(uuid) = 16),
          start_time_90k integer,
          end_time_90k integer,
          duration_90k integer
        );

        create table sample_file_dir (
          id integer primary key,
          path text unique not null,
          uuid blob unique not null check (length(uuid) = 16),
          last_complete_open_id integer references open (id)
        );

        alter table camera add column
          sample_file_dir_id integer references sample_file_dir (id);
        """
    )

    (cameras,) = tx.execute("select count(*) from camera").fetchone()
    sample_file_dir = config.sample_file_dir
    if sample_file_dir is None:
        if cameras:
            raise SampleFileDirError(
                "sample_file_dir is required to upgrade a database with cameras "
                "from version 1 to 2"
            )
        logger.debug("No cameras and no sample_file_dir; skipping directory setup")
        return

    sample_file_dir = Path(sample_file_dir).resolve()
    if not sample_file_dir.is_dir():
        raise SampleFileDirError(f"sample_file_dir {sample_file_dir} is not a directory")

    open_id = tx.execute(
        "insert into open (uuid) values (?)", (uuid.uuid4().bytes,)
    ).lastrowid
    dir_id = tx.execute(
        """
        insert into sample_file_dir (path, uuid, last_complete_open_id)
                             values (?, ?, ?)
        """,
        (str(sample_file_dir), uuid.uuid4().bytes, open_id),
    ).lastrowid
    tx.execute("update camera set sample_file_dir_id = ?", (dir_id,))

    missing = _check_sample_files(tx, sample_file_dir)
    if missing:
        logger.warning(
            f"...{missing} recording(s) have no sample file in {sample_file_dir}"
        )
