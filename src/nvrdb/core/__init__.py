"""Core configuration, errors and types for nvrdb."""

from .config import DEFAULT_PAGE_SIZE, Config, UpgradeConfig
from .exceptions import (
    CompactionError,
    ConfigError,
    CorruptVersionError,
    InvalidTargetError,
    DatabaseError,
    NvrDbError,
    PragmaMismatchError,
    RegistryError,
    StepFailureError,
    UpgradeError,
    VersionOutOfRangeError,
)
from .types import JournalMode, UpgradeState, UpgradeStatus, VersionRecord

__all__ = [
    "Config",
    "UpgradeConfig",
    "DEFAULT_PAGE_SIZE",
    "NvrDbError",
    "ConfigError",
    "DatabaseError",
    "UpgradeError",
    "VersionOutOfRangeError",
    "CorruptVersionError",
    "InvalidTargetError",
    "StepFailureError",
    "PragmaMismatchError",
    "CompactionError",
    "RegistryError",
    "JournalMode",
    "UpgradeState",
    "UpgradeStatus",
    "VersionRecord",
]
