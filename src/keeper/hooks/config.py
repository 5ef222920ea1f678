"""Configuration for keeper hooks."""

from __future__ import annotations

import dataclasses
import re

import keeper.config
import keeper.errors


def _check_patterns(patterns: list[str]) -> None:
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as exc:
            raise keeper.errors.ValidationError(
                f"bad gate pattern {pattern!r}: {exc}"
            ) from None


@keeper.config.configurable("hooks")
@dataclasses.dataclass
class HooksConfig:
    # Pre-tool-use gate
    gate_enabled: bool = True

    # Bash commands that create work items and need an approved decision
    gate_patterns: list[str] = dataclasses.field(
        default_factory=lambda: [
            r"^bd\s+create",
            r"^bd\s+--[a-z-]+\s+create",
            r"^gt\s+convoy\s+create",
        ],
        metadata={"check": _check_patterns},
    )
