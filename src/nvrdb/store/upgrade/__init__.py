"""Schema upgrades for nvrdb.

Each version step runs in its own transaction and appends a row to the
``version`` table in that same transaction.

Example:
    from nvrdb.store.upgrade import run

    status = run(UpgradeConfig(sample_file_dir=path), connection)
"""

from .pragmas import compact, force_durability, get_journal_mode, set_journal_mode
from .registry import StepRegistry, UpgradeStep
from .runner import UPGRADE_NOTES, Upgrader, run
from .steps import STEPS

__all__ = [
    "STEPS",
    "StepRegistry",
    "UPGRADE_NOTES",
    "UpgradeStep",
    "Upgrader",
    "compact",
    "force_durability",
    "get_journal_mode",
    "run",
    "set_journal_mode",
]
