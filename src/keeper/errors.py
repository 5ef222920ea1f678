"""Error taxonomy for the keeper engine.

Fatal errors abort the current evaluation before anything is written.
``NotFound`` is recoverable and is part of normal decision-table flow.
Validator violations are data, not exceptions (see
``keeper.engine.models.ViolationKind``).
"""

from __future__ import annotations

import pathlib


class KeeperError(Exception):
    """Base class for all keeper errors."""


class RegistryParseError(KeeperError):
    """The seed registry could not be loaded."""

    def __init__(self, message: str, *, source: pathlib.Path | str | None = None):
        self.source = source
        if source is not None:
            message = f"{source}: {message}"
        super().__init__(message)


class ValidationError(KeeperError):
    """A proposed change, changeset, or mode is malformed."""


class NotFound(KeeperError, KeyError):
    """A seed or decision lookup missed."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "not found"


class ConflictError(KeeperError):
    """A decision id collides with an existing or expected id."""


class AppendOnlyViolation(KeeperError):
    """An update would remove, rename, or reorder published seed values."""


class AmbiguousLookup(KeeperError):
    """Several seeds match a lookup with equal precedence."""

    def __init__(self, message: str, *, candidates: list | None = None):
        self.candidates = candidates or []
        super().__init__(message)
