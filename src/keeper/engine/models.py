"""Data model shared by the registry, decision tables, store and validator."""

from __future__ import annotations

import dataclasses
import enum
from typing import Any

import keeper.errors


class Domain(enum.StrEnum):
    FRONTEND = "frontend"
    BACKEND = "backend"
    DATA = "data"
    AUTH = "auth"


class Kind(enum.StrEnum):
    COMPONENT = "component"
    ROUTE = "route"
    ENUM = "enum"
    SERVICE = "service"
    SCOPE = "scope"
    # Roles are never seeds; they only appear in proposals so they can be
    # rejected.
    ROLE = "role"


SEED_KINDS = frozenset(
    [Kind.COMPONENT, Kind.ROUTE, Kind.ENUM, Kind.SERVICE, Kind.SCOPE]
)

DOMAIN_KINDS: dict[Domain, frozenset[Kind]] = {
    Domain.FRONTEND: frozenset([Kind.COMPONENT]),
    Domain.BACKEND: frozenset([Kind.ROUTE, Kind.SERVICE]),
    Domain.DATA: frozenset([Kind.ENUM]),
    Domain.AUTH: frozenset([Kind.SERVICE, Kind.SCOPE, Kind.ROLE]),
}

# Kind assumed for registry entries that do not declare one.
DEFAULT_KIND: dict[Domain, Kind] = {
    Domain.FRONTEND: Kind.COMPONENT,
    Domain.BACKEND: Kind.ROUTE,
    Domain.DATA: Kind.ENUM,
    Domain.AUTH: Kind.SERVICE,
}


class Operation(enum.StrEnum):
    REUSE = "reuse"
    EXTEND = "extend"
    CREATE = "create"


class Mode(enum.StrEnum):
    SEEDING = "seeding"
    GROWTH = "growth"
    CONSERVATION = "conservation"


class ExtensionPolicy(enum.StrEnum):
    APPEND_ONLY = "append-only"
    FROZEN = "frozen"
    CONTROLLED = "controlled"

    def allows_growth(self, mode: Mode) -> bool:
        """Return True if a seed under this policy may gain values in *mode*."""
        if self is ExtensionPolicy.FROZEN:
            return False
        if self is ExtensionPolicy.CONTROLLED:
            return mode is not Mode.CONSERVATION
        return True


class Outcome(enum.StrEnum):
    USE = "use"
    USE_VARIANT = "use_variant"
    EXTEND = "extend"
    CREATE = "create"
    MODIFY = "modify"
    APPROVE = "approve"
    ADD_SCOPE = "add_scope"
    PROCEED = "proceed"
    FIX_AUTH = "fix_auth"
    MIGRATION_PLAN = "migration_plan"
    WARN = "warn"
    # Lookup ambiguity; the decision is deferred.
    DEFER = "defer"
    REJECT = "reject"
    BLOCK = "block"

    @property
    def terminal(self) -> bool:
        return self in (Outcome.REJECT, Outcome.BLOCK)


# Higher wins when several items in one domain are summarised.
_SEVERITY = {
    Outcome.BLOCK: 5,
    Outcome.REJECT: 4,
    Outcome.DEFER: 3,
    Outcome.WARN: 3,
    Outcome.FIX_AUTH: 2,
}


def worst_outcome(outcomes: list[Outcome]) -> Outcome | None:
    """Return the most severe outcome, keeping the first on ties."""
    worst: Outcome | None = None
    for outcome in outcomes:
        if worst is None or _SEVERITY.get(outcome, 0) > _SEVERITY.get(worst, 0):
            worst = outcome
    return worst


class Status(enum.StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"
    DEFERRED = "deferred"


class Confidence(enum.StrEnum):
    NORMAL = "normal"
    LOWERED = "lowered"


def parse_mode(value: str | Mode) -> Mode:
    """Parse a governance mode, raising ``ValidationError`` on unknown values."""
    try:
        return Mode(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(m.value for m in Mode)
        raise keeper.errors.ValidationError(
            f"unknown mode {value!r} (expected one of: {choices})"
        ) from None


# ---------------------------------------------------------------------------
# Seeds
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class Seed:
    """A sanctioned architectural pattern owned by the registry."""

    domain: Domain
    kind: Kind
    name: str
    scope: str | None = None
    values: list[str] = dataclasses.field(default_factory=list)
    extension_policy: ExtensionPolicy = ExtensionPolicy.APPEND_ONLY
    usage_count: int = 0
    forbidden_extensions: list[str] = dataclasses.field(default_factory=list)
    attributes: dict[str, Any] = dataclasses.field(default_factory=dict)

    @property
    def is_global(self) -> bool:
        return self.scope is None

    def find_value(self, value: str) -> str | None:
        """Return the published value equal to *value* ignoring case."""
        needle = value.casefold()
        for existing in self.values:
            if existing.casefold() == needle:
                return existing
        return None

    def forbids(self, value: str) -> bool:
        needle = value.casefold()
        return any(f.casefold() == needle for f in self.forbidden_extensions)

    def append_values(self, new_values: list[str]) -> list[str]:
        """Append values not yet published; return the ones actually added."""
        added = []
        for value in new_values:
            if self.find_value(value) is None:
                self.values.append(value)
                added.append(value)
        return added

    def replace_values(self, values: list[str]) -> None:
        """Replace values with *values*, which must extend the current list."""
        if values[: len(self.values)] != self.values:
            raise keeper.errors.AppendOnlyViolation(
                f"{self.kind} {self.name}: values {self.values} "
                f"are not a prefix of {values}"
            )
        self.values = list(values)


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class ChangeItem:
    """One (domain, kind, name, operation) entry of a proposal or changeset."""

    domain: Domain
    kind: Kind
    name: str
    operation: Operation
    scope: str | None = None
    metadata: dict[str, Any] = dataclasses.field(default_factory=dict)

    def label(self) -> str:
        return f"{self.domain}/{self.kind} {self.name}"


@dataclasses.dataclass(frozen=True)
class ProposedChange:
    title: str
    items: tuple[ChangeItem, ...]


# ---------------------------------------------------------------------------
# Decision building blocks
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class Directive:
    """An actionable instruction attached to a decision."""

    action: str
    domain: Domain
    kind: Kind
    name: str
    value: Any = None
    scope: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "action": self.action,
            "domain": str(self.domain),
            "kind": str(self.kind),
            "name": self.name,
        }
        if self.value is not None:
            data["value"] = self.value
        if self.scope is not None:
            data["scope"] = self.scope
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Directive:
        return cls(
            action=data["action"],
            domain=Domain(data["domain"]),
            kind=Kind(data["kind"]),
            name=data["name"],
            value=data.get("value"),
            scope=data.get("scope"),
        )


@dataclasses.dataclass(frozen=True)
class NewSeed:
    domain: Domain
    kind: Kind
    name: str
    scope: str | None = None
    values: tuple[str, ...] = ()
    promoted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": str(self.domain),
            "kind": str(self.kind),
            "name": self.name,
            "scope": self.scope,
            "values": list(self.values),
            "promoted": self.promoted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NewSeed:
        return cls(
            domain=Domain(data["domain"]),
            kind=Kind(data["kind"]),
            name=data["name"],
            scope=data.get("scope"),
            values=tuple(data.get("values") or ()),
            promoted=bool(data.get("promoted", False)),
        )


@dataclasses.dataclass(frozen=True)
class ForbiddenPattern:
    """A glob over entity names that implementations must not introduce.

    ``exempt`` lists names the pattern never matches: the sanctioned seed
    it was derived from, plus anything the same decision approves.
    """

    domain: Domain
    kind: Kind
    pattern: str
    reason: str = ""
    exempt: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": str(self.domain),
            "kind": str(self.kind),
            "pattern": self.pattern,
            "reason": self.reason,
            "exempt": list(self.exempt),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ForbiddenPattern:
        return cls(
            domain=Domain(data["domain"]),
            kind=Kind(data["kind"]),
            pattern=data["pattern"],
            reason=data.get("reason", ""),
            exempt=tuple(data.get("exempt") or ()),
        )


@dataclasses.dataclass(frozen=True)
class Constraint:
    """A required action, e.g. "must extend component Button"."""

    action: Operation
    domain: Domain
    kind: Kind
    name: str

    def __str__(self) -> str:
        return f"must {self.action} {self.kind} {self.name}"

    def satisfied_by(self, operation: Operation) -> bool:
        if self.action is Operation.REUSE:
            return operation in (Operation.REUSE, Operation.EXTEND)
        if self.action is Operation.EXTEND:
            return operation in (Operation.EXTEND, Operation.CREATE)
        return operation is Operation.CREATE

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": str(self.action),
            "domain": str(self.domain),
            "kind": str(self.kind),
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Constraint:
        return cls(
            action=Operation(data["action"]),
            domain=Domain(data["domain"]),
            kind=Kind(data["kind"]),
            name=data["name"],
        )


@dataclasses.dataclass
class Verdict:
    """Result of walking one domain table for one proposal item."""

    item: ChangeItem
    outcome: Outcome
    reason: str = ""
    reused: list[Seed] = dataclasses.field(default_factory=list)
    extensions: list[Directive] = dataclasses.field(default_factory=list)
    directives: list[Directive] = dataclasses.field(default_factory=list)
    new_seeds: list[NewSeed] = dataclasses.field(default_factory=list)
    forbidden: list[ForbiddenPattern] = dataclasses.field(default_factory=list)
    followup: Outcome | None = None
    warnings: list[str] = dataclasses.field(default_factory=list)
    ambiguous: bool = False

    @property
    def terminal(self) -> bool:
        return self.outcome.terminal


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------

def format_id(seq: int) -> str:
    """Render a store sequence number as a decision id (``001``)."""
    return f"{seq:03d}"


@dataclasses.dataclass(frozen=True)
class Decision:
    """Immutable record of one evaluated proposal."""

    status: Status
    mode: Mode
    title: str = ""
    id: str | None = None
    created_at: str = ""
    confidence: Confidence = Confidence.NORMAL
    outcomes: dict[str, str] = dataclasses.field(default_factory=dict)
    reuse: dict[str, list[str]] = dataclasses.field(default_factory=dict)
    extensions: dict[str, dict[str, dict[str, Any]]] = dataclasses.field(
        default_factory=dict
    )
    new_seeds: tuple[NewSeed, ...] = ()
    forbidden: tuple[ForbiddenPattern, ...] = ()
    constraints: tuple[Constraint, ...] = ()
    directives: tuple[Directive, ...] = ()
    notes: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return f"ADR-{self.id}" if self.id else "ADR-pending"

    def outcome_for(self, domain: Domain | str) -> Outcome | None:
        value = self.outcomes.get(str(domain))
        return Outcome(value) if value else None

    def extension_names(self) -> set[tuple[str, str]]:
        """Return ``(kind, name)`` pairs approved for extension."""
        pairs = set()
        for entries in self.extensions.values():
            for name, body in entries.items():
                pairs.add((str(body.get("kind", "")), name))
        return pairs

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at,
            "mode": str(self.mode),
            "status": str(self.status),
            "confidence": str(self.confidence),
            "outcomes": dict(self.outcomes),
            "reuse": {k: list(v) for k, v in self.reuse.items()},
            "extensions": {
                domain: {name: dict(body) for name, body in entries.items()}
                for domain, entries in self.extensions.items()
            },
            "new_seeds": [s.to_dict() for s in self.new_seeds],
            "forbidden": [f.to_dict() for f in self.forbidden],
            "constraints": [c.to_dict() for c in self.constraints],
            "directives": [d.to_dict() for d in self.directives],
            "notes": list(self.notes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Decision:
        return cls(
            id=data.get("id"),
            title=data.get("title", ""),
            created_at=data.get("created_at", ""),
            mode=Mode(data["mode"]),
            status=Status(data["status"]),
            confidence=Confidence(data.get("confidence", Confidence.NORMAL)),
            outcomes=dict(data.get("outcomes") or {}),
            reuse={k: list(v) for k, v in (data.get("reuse") or {}).items()},
            extensions={
                domain: {name: dict(body) for name, body in entries.items()}
                for domain, entries in (data.get("extensions") or {}).items()
            },
            new_seeds=tuple(NewSeed.from_dict(s) for s in data.get("new_seeds") or ()),
            forbidden=tuple(
                ForbiddenPattern.from_dict(f) for f in data.get("forbidden") or ()
            ),
            constraints=tuple(
                Constraint.from_dict(c) for c in data.get("constraints") or ()
            ),
            directives=tuple(
                Directive.from_dict(d) for d in data.get("directives") or ()
            ),
            notes=tuple(data.get("notes") or ()),
        )


# ---------------------------------------------------------------------------
# Validation report
# ---------------------------------------------------------------------------

class ViolationKind(enum.StrEnum):
    UNAPPROVED_CREATION = "UnapprovedCreation"
    FORBIDDEN_PATTERN_USED = "ForbiddenPatternUsed"
    CONSTRAINT_UNMET = "ConstraintUnmet"


@dataclasses.dataclass(frozen=True)
class Violation:
    kind: ViolationKind
    domain: Domain
    entity_kind: Kind
    name: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "domain": str(self.domain),
            "entity_kind": str(self.entity_kind),
            "name": self.name,
            "message": self.message,
        }


@dataclasses.dataclass(frozen=True)
class Report:
    decision_id: str | None
    violations: tuple[Violation, ...] = ()

    @property
    def passed(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision_id,
            "pass": self.passed,
            "violations": [v.to_dict() for v in self.violations],
        }
