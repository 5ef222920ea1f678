"""Configuration for the keeper engine."""

from __future__ import annotations

import dataclasses
import pathlib

import keeper.config
import keeper.engine.models
import keeper.errors


def _check_threshold(value: int) -> None:
    if value < 1:
        raise keeper.errors.ValidationError(
            f"promotion_threshold must be at least 1, got {value}"
        )


@keeper.config.configurable("keeper")
@dataclasses.dataclass
class KeeperConfig:
    mode: str = dataclasses.field(
        default="growth",
        metadata={
            "check": keeper.engine.models.parse_mode,
            "choices": [m.value for m in keeper.engine.models.Mode],
        },
    )

    # Registry documents (frontend.yaml, backend.yaml, ...) relative to root
    seeds_dir: str = ".keeper/seeds"

    # Schema migrations are always allowed in seeding and growth
    migrations_in_conservation: bool = False

    # Extension count at which a local extension is promoted
    promotion_threshold: int = dataclasses.field(
        default=2, metadata={"check": _check_threshold}
    )

    @property
    def governance_mode(self) -> keeper.engine.models.Mode:
        return keeper.engine.models.parse_mode(self.mode)

    def seeds_path(self, root: pathlib.Path) -> pathlib.Path:
        path = pathlib.Path(self.seeds_dir)
        return path if path.is_absolute() else root / path

    def migrations_allowed(self, mode: keeper.engine.models.Mode) -> bool:
        if mode is keeper.engine.models.Mode.CONSERVATION:
            return self.migrations_in_conservation
        return True


def load(root: pathlib.Path | None = None) -> KeeperConfig:
    return keeper.config.load("keeper", root)
