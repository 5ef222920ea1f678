"""ADR-style rendering of decisions and work-item frontmatter."""

from __future__ import annotations

import pathlib
import re
from typing import Any

import yaml

import keeper.engine.models

_SLUG_MAX = 30
_NON_ALNUM = re.compile(r"[^a-z0-9]")


def slug(title: str) -> str:
    """Lowercase *title*, dash out non-alphanumerics, cut to 30 characters."""
    text = _NON_ALNUM.sub("-", title.lower())[:_SLUG_MAX]
    return text.rstrip("-") or "pending"


def filename(decision: keeper.engine.models.Decision) -> str:
    return f"{decision.id or 'pending'}-{slug(decision.title)}.yaml"


def constraint_strings(decision: keeper.engine.models.Decision) -> list[str]:
    return [str(c) for c in decision.constraints]


def to_adr(decision: keeper.engine.models.Decision) -> dict[str, Any]:
    """Return the ADR document for *decision*."""
    reuse = {
        str(d): list(decision.reuse.get(str(d), []))
        for d in keeper.engine.models.Domain
    }
    body: dict[str, Any] = {
        "id": decision.label,
        "date": decision.created_at[:10],
        "spec": decision.title,
        "mode": str(decision.mode),
        "status": str(decision.status),
        "confidence": str(decision.confidence),
        "outcomes": dict(decision.outcomes),
        "reuse": reuse,
        "extensions": {
            domain: {name: dict(entry) for name, entry in entries.items()}
            for domain, entries in decision.extensions.items()
        },
        "new_seeds": [
            {k: v for k, v in s.to_dict().items() if v not in (None, [], False)}
            for s in decision.new_seeds
        ],
        "forbidden": [
            {"kind": str(f.kind), "pattern": f.pattern, "reason": f.reason}
            for f in decision.forbidden
        ],
        "constraints": constraint_strings(decision),
        "directives": [d.to_dict() for d in decision.directives],
        "rationale": "\n".join(decision.notes),
    }
    return {
        "keeper_decision": body,
        "bead_frontmatter": {
            "keeper": decision.label,
            "constraints": constraint_strings(decision),
        },
    }


def render(decision: keeper.engine.models.Decision) -> str:
    return yaml.safe_dump(to_adr(decision), sort_keys=False, allow_unicode=True)


def frontmatter(decision: keeper.engine.models.Decision) -> str:
    """Return the ``---`` delimited block a work item carries."""
    lines = ["---", f"keeper: {decision.label}"]
    constraints = constraint_strings(decision)
    if constraints:
        lines.append("constraints:")
        lines.extend(f'  - "{c}"' for c in constraints)
    else:
        lines.append("constraints: []")
    lines.append("---")
    return "\n".join(lines) + "\n"


def export(
    decision: keeper.engine.models.Decision, directory: pathlib.Path
) -> pathlib.Path:
    """Write the ADR document into *directory* and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename(decision)
    path.write_text(render(decision))
    return path
