"""Command implementations for nvrdb CLI."""

from .init import handle_init
from .status import handle_status
from .upgrade import build_upgrade_config, handle_upgrade

__all__ = [
    "handle_init",
    "handle_upgrade",
    "build_upgrade_config",
    "handle_status",
]
