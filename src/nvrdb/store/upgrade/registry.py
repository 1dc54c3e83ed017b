"""Ordered, immutable registry of upgrade steps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, Sequence

from ...core.exceptions import RegistryError

if TYPE_CHECKING:
    from types import ModuleType

    from ...core.config import UpgradeConfig
    from ..database import Transaction


StepFn = Callable[["UpgradeConfig", "Transaction"], None]


@dataclass(frozen=True)
class UpgradeStep:
    """Transition of the schema from ``from_version`` to ``from_version + 1``."""

    from_version: int
    description: str
    run: StepFn

    @property
    def to_version(self) -> int:
        return self.from_version + 1

    def __repr__(self) -> str:
        return f"UpgradeStep({self.from_version}->{self.to_version}, {self.description!r})"


class StepRegistry(Sequence[UpgradeStep]):
    """Steps indexed by the version they upgrade from.

    Step ``i`` must upgrade from version ``i``; the registry is checked once at
    construction and cannot be modified afterwards.
    """

    def __init__(self, steps: Iterable[UpgradeStep]):
        self._steps: tuple[UpgradeStep, ...] = tuple(steps)
        for index, step in enumerate(self._steps):
            if step.from_version != index:
                raise RegistryError(
                    f"Step at position {index} upgrades from version "
                    f"{step.from_version}; expected {index}"
                )

    @classmethod
    def from_modules(cls, modules: Iterable[ModuleType]) -> "StepRegistry":
        """Build a registry from step modules.

        Each module must define ``FROM_VERSION``, ``DESCRIPTION`` and
        ``run(config, tx)``.

        Raises:
            RegistryError: If a module is missing an attribute.
        """
        steps = []
        for module in modules:
            try:
                steps.append(
                    UpgradeStep(
                        from_version=module.FROM_VERSION,
                        description=module.DESCRIPTION,
                        run=module.run,
                    )
                )
            except AttributeError as e:
                raise RegistryError(f"Invalid upgrade step module {module.__name__}: {e}") from e
        return cls(steps)

    def check_length(self, expected_version: int) -> None:
        """Ensure there is exactly one step per version below expected_version.

        Raises:
            RegistryError: If the registry length differs.
        """
        if len(self._steps) != expected_version:
            raise RegistryError(
                f"Have {len(self._steps)} upgrade steps but expected version is "
                f"{expected_version}"
            )

    def __getitem__(self, index):
        return self._steps[index]

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[UpgradeStep]:
        return iter(self._steps)

    def __repr__(self) -> str:
        return f"StepRegistry({list(self._steps)!r})"
