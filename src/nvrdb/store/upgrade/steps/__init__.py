"""Upgrade steps for the recording schema.

Each module moves the schema from ``FROM_VERSION`` to ``FROM_VERSION + 1``
and defines:
    FROM_VERSION: int - Version the step upgrades from
    DESCRIPTION: str - Human-readable description
    run(config, tx): Applies the step through the Transaction handle only;
        it must never commit. Raising rolls the whole step back.
"""

from ..registry import StepRegistry
from . import v0_to_v1, v1_to_v2, v2_to_v3

STEPS = StepRegistry.from_modules(
    [
        v0_to_v1,
        v1_to_v2,
        v2_to_v3,
    ]
)

__all__ = ["STEPS"]
