"""Configuration management for nvrdb."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .exceptions import ConfigError
from .types import JournalMode

DEFAULT_PAGE_SIZE = 16384


def _default_db_dir() -> Path:
    """Get default database directory."""
    data_dir = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return data_dir / "nvrdb"


@dataclass(frozen=True)
class UpgradeConfig:
    """Read-only settings for a schema upgrade run."""

    # Directory holding recorded sample files; required by some steps.
    sample_file_dir: Path | None = None
    # Journal mode used while steps run (WAL is only set afterwards).
    preset_journal: JournalMode = JournalMode.DELETE
    no_vacuum: bool = False
    page_size: int = DEFAULT_PAGE_SIZE
    # Raise instead of warn when SQLite does not grant a requested pragma.
    strict_pragmas: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "preset_journal", JournalMode.parse(self.preset_journal))
        if self.sample_file_dir is not None:
            object.__setattr__(self, "sample_file_dir", Path(self.sample_file_dir))
        # SQLite page sizes are powers of two between 512 and 65536.
        size = self.page_size
        if not isinstance(size, int) or size < 512 or size > 65536 or size & (size - 1):
            raise ConfigError(f"Invalid page size {size!r}")


@dataclass
class Config:
    """Main application configuration."""

    db_dir: Path = field(default_factory=_default_db_dir)
    log_level: str = "INFO"
    upgrade: UpgradeConfig = field(default_factory=UpgradeConfig)

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database file inside db_dir."""
        return self.db_dir / "db"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()._apply_env()

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from a TOML file, then apply env overrides.

        Args:
            path: Path to the TOML file.

        Raises:
            ConfigError: If the file cannot be read or holds invalid values.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to load config {path}: {e}") from e

        config = cls()
        if db_dir := data.get("db_dir"):
            config.db_dir = Path(db_dir)
        if log_level := data.get("log_level"):
            config.log_level = str(log_level).upper()

        upgrade = data.get("upgrade", {})
        if upgrade:
            try:
                config.upgrade = UpgradeConfig(**upgrade)
            except TypeError as e:
                raise ConfigError(f"Invalid [upgrade] section in {path}: {e}") from e

        return config._apply_env()

    @classmethod
    def from_env_or_file(cls, path: Path | None = None) -> "Config":
        """Load from an explicit path, $NVRDB_CONFIG, or the environment alone."""
        if path is None and (env_path := os.environ.get("NVRDB_CONFIG")):
            path = Path(env_path)
        if path is not None:
            return cls.from_file(path)
        return cls.from_env()

    def _apply_env(self) -> "Config":
        if db_dir := os.environ.get("NVRDB_DB_DIR"):
            self.db_dir = Path(db_dir)
        if log_level := os.environ.get("NVRDB_LOG_LEVEL"):
            self.log_level = log_level.upper()
        return self
