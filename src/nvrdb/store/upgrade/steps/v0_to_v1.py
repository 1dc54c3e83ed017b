"""Split recording into a cover-index table and a playback table.

Changes:
- recording: keyed by composite_id (camera_id << 32 | recording_id) instead of id
- recording_playback: new; holds sample file uuid, sha1 and video index
- camera.next_recording_id: new; next recording_id to assign per camera
"""

from loguru import logger

FROM_VERSION = 0
DESCRIPTION = "Split recording into recording and recording_playback"


def run(config, tx):
    """Apply v0 -> v1."""
    # The old table keeps its recording_cover index until it is dropped, so
    # the new index can only be created afterwards.
    tx.executescript(
        """
        alter table recording rename to old_recording;

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

        create table recording_playback (
          composite_id integer primary key references recording (composite_id),
          sample_file_uuid blob not null check (length(sample_file_uuid) = 16),
          sample_file_sha1 blob not null check (length(sample_file_sha1) = 20),
          video_index blob not null check (length(video_index) > 0)
        );

        alter table camera add column
          next_recording_id integer not null default 0 check (next_recording_id >= 0);
        """
    )

    rows = tx.execute(
        """
        select
          camera_id,
          sample_file_bytes,
          start_time_90k,
          duration_90k,
          local_time_delta_90k,
          video_samples,
          video_sync_samples,
          video_sample_entry_id,
          sample_file_uuid,
          sample_file_sha1,
          video_index
        from old_recording
        order by camera_id, start_time_90k, id
        """
    ).fetchall()

    next_recording_ids: dict[int, int] = {}
    for row in rows:
        camera_id = row[0]
        recording_id = next_recording_ids.get(camera_id, 0)
        next_recording_ids[camera_id] = recording_id + 1
        composite_id = camera_id << 32 | recording_id
        tx.execute(
            """
            insert into recording (composite_id, camera_id, run_offset, flags,
                                   sample_file_bytes, start_time_90k, duration_90k,
                                   local_time_delta_90k, video_samples,
                                   video_sync_samples, video_sample_entry_id)
                           values (?, ?, 0, 0, ?, ?, ?, ?, ?, ?, ?)
            """,
            (composite_id, camera_id, *row[1:8]),
        )
        tx.execute(
            """
            insert into recording_playback (composite_id, sample_file_uuid,
                                            sample_file_sha1, video_index)
                                    values (?, ?, ?, ?)
            """,
            (composite_id, *row[8:11]),
        )

    tx.executemany(
        "update camera set next_recording_id = ? where id = ?",
        [(next_id, camera_id) for camera_id, next_id in next_recording_ids.items()],
    )

    tx.executescript(
        """
        drop table old_recording;

        create index recording_cover on recording (
          camera_id,
          start_time_90k,
          duration_90k,
          video_samples,
          video_sample_entry_id,
          sample_file_bytes
        );
        """
    )
    logger.debug(
        f"Moved {len(rows)} recording(s) for {len(next_recording_ids)} camera(s)"
    )
