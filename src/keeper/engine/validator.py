"""Check an implemented changeset against a stored decision.

Pure: the same decision and changeset always produce the same report.
"""

from __future__ import annotations

import fnmatch
from typing import TYPE_CHECKING

import keeper.engine.models

if TYPE_CHECKING:
    from collections.abc import Iterable


def matches(
    pattern: keeper.engine.models.ForbiddenPattern,
    kind: keeper.engine.models.Kind,
    name: str,
) -> bool:
    """Return True if *(kind, name)* falls under a forbidden pattern."""
    if pattern.kind is not kind:
        return False
    folded = name.casefold()
    if any(folded == exempt.casefold() for exempt in pattern.exempt):
        return False
    return fnmatch.fnmatchcase(folded, pattern.pattern.casefold())


def _approved_creations(
    decision: keeper.engine.models.Decision,
) -> set[tuple[str, str]]:
    approved = {(str(s.kind), s.name) for s in decision.new_seeds}
    approved |= decision.extension_names()
    return approved


def validate(
    decision: keeper.engine.models.Decision,
    changeset: Iterable[keeper.engine.models.ChangeItem],
) -> keeper.engine.models.Report:
    """Return the violations of *changeset* against *decision*.

    Each changeset entry yields at most one violation: a forbidden pattern
    is reported in preference to an unapproved creation. Unmet constraints
    follow, in decision order.
    """
    entries = list(changeset)
    approved = _approved_creations(decision)
    violations: list[keeper.engine.models.Violation] = []

    for entry in entries:
        hit = next(
            (p for p in decision.forbidden if matches(p, entry.kind, entry.name)), None
        )
        if hit is not None:
            reason = f" ({hit.reason})" if hit.reason else ""
            violations.append(
                keeper.engine.models.Violation(
                    keeper.engine.models.ViolationKind.FORBIDDEN_PATTERN_USED,
                    entry.domain,
                    entry.kind,
                    entry.name,
                    f"{entry.kind} {entry.name} matches forbidden pattern "
                    f"{hit.pattern!r}{reason}",
                )
            )
            continue
        if (
            entry.operation is keeper.engine.models.Operation.CREATE
            and (str(entry.kind), entry.name) not in approved
        ):
            violations.append(
                keeper.engine.models.Violation(
                    keeper.engine.models.ViolationKind.UNAPPROVED_CREATION,
                    entry.domain,
                    entry.kind,
                    entry.name,
                    f"{entry.kind} {entry.name} was created without approval "
                    f"in {decision.label}",
                )
            )

    for constraint in decision.constraints:
        satisfied = any(
            e.kind is constraint.kind
            and e.name == constraint.name
            and constraint.satisfied_by(e.operation)
            for e in entries
        )
        if not satisfied:
            violations.append(
                keeper.engine.models.Violation(
                    keeper.engine.models.ViolationKind.CONSTRAINT_UNMET,
                    constraint.domain,
                    constraint.kind,
                    constraint.name,
                    f"{decision.label}: {constraint}",
                )
            )

    return keeper.engine.models.Report(
        decision_id=decision.id, violations=tuple(violations)
    )
