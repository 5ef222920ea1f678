"""Combine per-item verdicts into one Decision."""

from __future__ import annotations

import datetime
from typing import TYPE_CHECKING, Any

import keeper.engine.models

if TYPE_CHECKING:
    from collections.abc import Iterable


_PARALLEL_REASON = "no parallel implementation of sanctioned {kind} {name}"


def _status(
    verdicts: list[keeper.engine.models.Verdict],
) -> keeper.engine.models.Status:
    if any(v.terminal for v in verdicts):
        return keeper.engine.models.Status.REJECTED
    if any(v.ambiguous for v in verdicts):
        return keeper.engine.models.Status.DEFERRED
    return keeper.engine.models.Status.APPROVED


def _dedupe(items: Iterable[Any]) -> list[Any]:
    seen: set[str] = set()
    out = []
    for item in items:
        key = repr(item)
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def default_forbidden(
    seeds: Iterable[keeper.engine.models.Seed],
    approved: Iterable[tuple[keeper.engine.models.Kind, str]] = (),
) -> list[keeper.engine.models.ForbiddenPattern]:
    """Hard prohibitions that apply in every mode.

    Every seed a decision reuses or extends is the one sanctioned
    implementation of its pattern; anything named like it is a parallel
    implementation. The *approved* ``(kind, name)`` pairs are the seeds the
    same decision creates or extends, and are exempt.
    """
    approved = list(approved)
    patterns = []
    for seed in seeds:
        exempt = [seed.name]
        for kind, name in approved:
            if (
                kind is seed.kind
                and seed.name.casefold() in name.casefold()
                and name not in exempt
            ):
                exempt.append(name)
        patterns.append(
            keeper.engine.models.ForbiddenPattern(
                domain=seed.domain,
                kind=seed.kind,
                pattern=f"*{seed.name}*",
                reason=_PARALLEL_REASON.format(kind=seed.kind, name=seed.name),
                exempt=tuple(exempt),
            )
        )
    return patterns


def aggregate(
    verdicts: list[keeper.engine.models.Verdict],
    *,
    mode: keeper.engine.models.Mode,
    title: str = "",
    now: datetime.datetime | None = None,
) -> keeper.engine.models.Decision:
    """Build the (unsaved) Decision for a list of verdicts."""
    status = _status(verdicts)

    outcomes: dict[str, str] = {}
    for domain in keeper.engine.models.Domain:
        worst = keeper.engine.models.worst_outcome(
            [v.outcome for v in verdicts if v.item.domain is domain]
        )
        if worst is not None:
            outcomes[str(domain)] = str(worst)

    reuse: dict[str, list[str]] = {}
    extensions: dict[str, dict[str, dict[str, Any]]] = {}
    reused_seeds: list[keeper.engine.models.Seed] = []
    new_seeds: list[keeper.engine.models.NewSeed] = []
    forbidden: list[keeper.engine.models.ForbiddenPattern] = []
    constraints: list[keeper.engine.models.Constraint] = []
    directives: list[keeper.engine.models.Directive] = []
    notes: list[str] = []

    for verdict in verdicts:
        item = verdict.item
        if verdict.reason:
            notes.append(f"{item.label()}: {verdict.outcome}: {verdict.reason}")
        forbidden.extend(verdict.forbidden)
        if verdict.terminal or verdict.ambiguous:
            continue

        for seed in verdict.reused:
            names = reuse.setdefault(str(seed.domain), [])
            if seed.name not in names:
                names.append(seed.name)
            if seed not in reused_seeds:
                reused_seeds.append(seed)

        extended = set()
        for ext in verdict.extensions:
            body = extensions.setdefault(str(ext.domain), {}).setdefault(
                ext.name, {"kind": str(ext.kind)}
            )
            if ext.scope is not None:
                body["scope"] = ext.scope
            values = ext.value if isinstance(ext.value, list) else [ext.value]
            current = body.get(ext.action)
            merged = [] if current is None else (
                current if isinstance(current, list) else [current]
            )
            merged += [v for v in values if v not in merged]
            body[ext.action] = merged[0] if len(merged) == 1 else merged
            extended.add((ext.kind, ext.name))
            constraints.append(
                keeper.engine.models.Constraint(
                    keeper.engine.models.Operation.EXTEND,
                    ext.domain,
                    ext.kind,
                    ext.name,
                )
            )

        if verdict.outcome in (
            keeper.engine.models.Outcome.USE,
            keeper.engine.models.Outcome.USE_VARIANT,
        ):
            for seed in verdict.reused:
                if (seed.kind, seed.name) not in extended:
                    constraints.append(
                        keeper.engine.models.Constraint(
                            keeper.engine.models.Operation.REUSE,
                            seed.domain,
                            seed.kind,
                            seed.name,
                        )
                    )

        new_seeds.extend(verdict.new_seeds)
        directives.extend(verdict.directives)

    approved = [(s.kind, s.name) for s in new_seeds]
    approved += [
        (keeper.engine.models.Kind(body["kind"]), name)
        for entries in extensions.values()
        for name, body in entries.items()
    ]
    forbidden.extend(default_forbidden(reused_seeds, approved))

    confidence = keeper.engine.models.Confidence.NORMAL
    if any(v.outcome is keeper.engine.models.Outcome.WARN for v in verdicts):
        confidence = keeper.engine.models.Confidence.LOWERED

    now = now or datetime.datetime.now(datetime.UTC)
    return keeper.engine.models.Decision(
        status=status,
        mode=mode,
        title=title,
        created_at=now.isoformat(timespec="seconds"),
        confidence=confidence,
        outcomes=outcomes,
        reuse=reuse,
        extensions=extensions,
        new_seeds=tuple(_dedupe(new_seeds)),
        forbidden=tuple(_dedupe(forbidden)),
        constraints=tuple(_dedupe(constraints)),
        directives=tuple(_dedupe(directives)),
        notes=tuple(notes),
    )
