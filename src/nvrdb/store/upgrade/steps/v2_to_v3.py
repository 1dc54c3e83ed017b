"""Add garbage collection table and RFC 6381 codec strings.

Changes:
- garbage: new; sample files pending deletion
- video_sample_entry.rfc6381_codec: new; filled from each entry's avcC box
"""

from loguru import logger

FROM_VERSION = 2
DESCRIPTION = "Add garbage table and video_sample_entry.rfc6381_codec"

# An avc1 VisualSampleEntry: 8-byte box header, then 78 bytes of fields,
# then the avcC box (4-byte size, 4-byte type, configurationVersion,
# profile, profile compatibility, level).
_AVCC_OFFSET = 86


def rfc6381_codec_from_sample_entry(data: bytes) -> str:
    """Derive the codec string (e.g. ``avc1.4d001f``) from a sample entry.

    Raises:
        ValueError: If data is not an avc1 sample entry with an avcC box.
    """
    if len(data) < _AVCC_OFFSET + 12 or data[4:8] != b"avc1":
        raise ValueError("not an avc1 sample entry")
    if data[_AVCC_OFFSET + 4:_AVCC_OFFSET + 8] != b"avcC":
        raise ValueError("avc1 sample entry has no avcC box")
    profile_idc, constraint_flags, level_idc = data[_AVCC_OFFSET + 9:_AVCC_OFFSET + 12]
    return f"avc1.{profile_idc:02x}{constraint_flags:02x}{level_idc:02x}"


def run(config, tx):
    """Apply v2 -> v3."""
    tx.executescript(
        """
        create table garbage (
          sample_file_dir_id integer not null references sample_file_dir (id),
          composite_id integer not null,
          primary key (sample_file_dir_id, composite_id)
        ) without rowid;

        alter table video_sample_entry add column
          rfc6381_codec text not null default '';
        """
    )

    entries = tx.execute("select id, data from video_sample_entry").fetchall()
    for entry_id, data in entries:
        try:
            codec = rfc6381_codec_from_sample_entry(bytes(data))
        except ValueError as e:
            raise ValueError(f"video_sample_entry {entry_id}: {e}") from e
        tx.execute(
            "update video_sample_entry set rfc6381_codec = ? where id = ?",
            (codec, entry_id),
        )
    logger.debug(f"Set rfc6381_codec on {len(entries)} video sample entries")
