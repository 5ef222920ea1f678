"""Decision tables, one per domain.

Each table is walked top to bottom. A failing check ends the walk with a
terminal ``reject`` or ``block``. Mode changes severity, never order:

- growth: tables run unmodified.
- seeding: a failing check records a ``warn`` and the walk continues as if
  the check had passed.
- conservation: ``create`` proposals are rejected before the table runs
  unless the target seed's extension policy allows growth.

Reusing or extending a seed that does not exist is a failing check in
every table, so only ``create`` can introduce a new seed.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

import keeper.engine.models
import keeper.errors

if TYPE_CHECKING:
    from collections.abc import Callable

    import keeper.engine.config
    import keeper.engine.registry

logger = logging.getLogger("keeper.engine.matrix")


_HTTP_METHODS = frozenset(["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"])

# REST shape policy: action verb -> allowed HTTP methods.
_VERB_METHODS = {
    "list": {"GET"},
    "get": {"GET"},
    "read": {"GET"},
    "show": {"GET"},
    "search": {"GET"},
    "create": {"POST"},
    "update": {"PUT", "PATCH"},
    "replace": {"PUT"},
    "patch": {"PATCH"},
    "delete": {"DELETE"},
    "remove": {"DELETE"},
}

# Path segments may not carry verbs (/getUsers, /create-order).
_VERB_SEGMENT = re.compile(
    r"^(get|list|fetch|create|add|update|set|delete|remove|do)([-_A-Z]|$)"
)
_LITERAL_SEGMENT = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
_PARAM_SEGMENT = re.compile(r"^(\{[A-Za-z_][A-Za-z0-9_]*\}|:[A-Za-z_][A-Za-z0-9_]*)$")
_PREFIX_SEGMENT = re.compile(r"^(api|v\d+)$")


class _Terminal(Exception):
    def __init__(self, outcome: keeper.engine.models.Outcome, reason: str):
        self.outcome = outcome
        self.reason = reason
        super().__init__(reason)


class _Walk:
    """State of one table walk for one proposal item."""

    def __init__(
        self,
        item: keeper.engine.models.ChangeItem,
        registry: keeper.engine.registry.Registry,
        mode: keeper.engine.models.Mode,
        config: keeper.engine.config.KeeperConfig,
        counted: set[keeper.engine.registry.SeedKey],
    ) -> None:
        self.item = item
        self.registry = registry
        self.mode = mode
        self.config = config
        self.counted = counted
        self.verdict = keeper.engine.models.Verdict(
            item=item, outcome=keeper.engine.models.Outcome.PROCEED
        )

    # -- lookups -----------------------------------------------------------

    def find(self) -> keeper.engine.models.Seed | None:
        return self.registry.find(self.item.kind, self.item.name, self.item.scope)

    # -- checks ------------------------------------------------------------

    def fail(self, outcome: keeper.engine.models.Outcome, reason: str) -> None:
        """Fail the current check; raises unless the mode downgrades it."""
        if self.mode is keeper.engine.models.Mode.SEEDING:
            logger.warning(
                "seeding: %s %s downgraded to warn (%s)",
                self.item.label(),
                outcome,
                reason,
            )
            self.verdict.warnings.append(f"{outcome}: {reason}")
            return
        raise _Terminal(outcome, reason)

    def growth_allowed(self, seed: keeper.engine.models.Seed) -> bool:
        return seed.extension_policy.allows_growth(self.mode)

    def missing(self, what: str) -> None:
        """Fail a reuse or extend whose target seed does not exist."""
        operation = self.item.operation
        if operation in (
            keeper.engine.models.Operation.REUSE,
            keeper.engine.models.Operation.EXTEND,
        ):
            self.fail(
                keeper.engine.models.Outcome.REJECT,
                f"no {what} {self.item.name!r} to {operation}",
            )

    # -- results -----------------------------------------------------------

    def reuse(self, seed: keeper.engine.models.Seed) -> None:
        if seed not in self.verdict.reused:
            self.verdict.reused.append(seed)

    def directive(
        self,
        action: str,
        kind: keeper.engine.models.Kind,
        name: str,
        value: Any = None,
    ) -> None:
        self.verdict.directives.append(
            keeper.engine.models.Directive(action, self.item.domain, kind, name, value)
        )

    def extend(self, seed: keeper.engine.models.Seed, action: str, value: Any) -> None:
        """Record an approved extension and check it for promotion.

        A proposal counts as one use of each seed it extends, on top of the
        persisted count. The registry is not modified here; usage is only
        recorded when the store writes an approved decision.
        """
        self.reuse(seed)
        self.verdict.extensions.append(
            keeper.engine.models.Directive(
                action, self.item.domain, seed.kind, seed.name, value, scope=seed.scope
            )
        )
        key = (seed.kind, seed.name, seed.scope)
        if key in self.counted:
            return
        self.counted.add(key)
        count = seed.usage_count + 1
        if count >= self.config.promotion_threshold:
            logger.info(
                "%s %s reached %d extensions; promoting", seed.kind, seed.name, count
            )
            self.directive("promote", seed.kind, seed.name, count)
            self.verdict.new_seeds.append(
                keeper.engine.models.NewSeed(
                    self.item.domain,
                    seed.kind,
                    seed.name,
                    scope=seed.scope,
                    promoted=True,
                )
            )

    def new_seed(
        self, values: list[str] | None = None, scope: str | None = None
    ) -> None:
        self.verdict.new_seeds.append(
            keeper.engine.models.NewSeed(
                self.item.domain,
                self.item.kind,
                self.item.name,
                scope=scope if scope is not None else self.item.scope,
                values=tuple(values or ()),
            )
        )

    def forbid(
        self, kind: keeper.engine.models.Kind, pattern: str, reason: str
    ) -> None:
        self.verdict.forbidden.append(
            keeper.engine.models.ForbiddenPattern(
                self.item.domain, kind, pattern, reason
            )
        )

    def finish(
        self, outcome: keeper.engine.models.Outcome, reason: str = ""
    ) -> keeper.engine.models.Verdict:
        verdict = self.verdict
        verdict.outcome = outcome
        verdict.reason = reason
        if verdict.warnings:
            verdict.reason = "; ".join(verdict.warnings)
            verdict.outcome = keeper.engine.models.Outcome.WARN
        return verdict


def _metadata_str(item: keeper.engine.models.ChangeItem, key: str) -> str | None:
    value = item.metadata.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _metadata_list(
    item: keeper.engine.models.ChangeItem, key: str
) -> list[str] | None:
    value = item.metadata.get(key)
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


# ---------------------------------------------------------------------------
# Frontend
# ---------------------------------------------------------------------------

def _frontend(walk: _Walk) -> keeper.engine.models.Verdict:
    item = walk.item
    seed = walk.find()
    if seed is None:
        walk.missing("component")
        walk.new_seed(_metadata_list(item, "variants"))
        return walk.finish(keeper.engine.models.Outcome.CREATE, "new component")

    walk.reuse(seed)
    variant = _metadata_str(item, "variant")
    if variant is None:
        return walk.finish(keeper.engine.models.Outcome.USE, f"reuse {seed.name}")

    existing = seed.find_value(variant)
    if existing is not None:
        return walk.finish(
            keeper.engine.models.Outcome.USE_VARIANT,
            f"reuse {seed.name} variant {existing}",
        )

    if seed.forbids(variant):
        walk.fail(
            keeper.engine.models.Outcome.REJECT,
            f"{seed.name} forbids the {variant!r} extension",
        )
    elif not walk.growth_allowed(seed):
        walk.fail(
            keeper.engine.models.Outcome.REJECT,
            f"{seed.name} is {seed.extension_policy}; variants may not be added",
        )

    walk.extend(seed, "add_variant", variant)
    walk.forbid(
        keeper.engine.models.Kind.COMPONENT,
        f"{variant[:1].upper()}{variant[1:]}{seed.name}",
        f"use {seed.name} variant {variant!r} instead of a new component",
    )
    return walk.finish(
        keeper.engine.models.Outcome.EXTEND, f"add variant {variant!r} to {seed.name}"
    )


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

def resource_of(path: str) -> str:
    """Return the resource segment of a route path.

    ``/api/v1/users/{id}`` gives ``users``.
    """
    for segment in path.strip("/").split("/"):
        if not segment or _PREFIX_SEGMENT.match(segment):
            continue
        if _PARAM_SEGMENT.match(segment):
            continue
        return segment
    return ""


def rest_shape_problems(path: str, method: str | None, action: str | None) -> list[str]:
    """Return the ways a route departs from the REST shape policy."""
    problems = []
    if not path.startswith("/"):
        problems.append("path must start with '/'")
    for segment in path.strip("/").split("/"):
        if not segment or _PARAM_SEGMENT.match(segment):
            continue
        if _VERB_SEGMENT.match(segment):
            problems.append(f"segment {segment!r} is a verb; use HTTP methods")
        elif not _LITERAL_SEGMENT.match(segment):
            problems.append(f"segment {segment!r} is not lowercase kebab-case")
    resource = resource_of(path)
    if not resource:
        problems.append("path names no resource")
    elif not resource.endswith("s"):
        problems.append(f"resource {resource!r} must be plural")
    if method is not None and method not in _HTTP_METHODS:
        problems.append(f"unknown HTTP method {method!r}")
    if action is not None:
        allowed = _VERB_METHODS.get(action.lower())
        if allowed is None:
            problems.append(f"unknown action {action!r}")
        elif method is not None and method not in allowed:
            expected = "/".join(sorted(allowed))
            problems.append(f"action {action!r} maps to {expected}, not {method}")
    return problems


def _auth_schemes(walk: _Walk, resource: str) -> tuple[set[str], set[str]]:
    """Return (schemes used by sibling routes, schemes of auth services)."""
    siblings = {
        str(r.attributes["auth"])
        for r in walk.registry.seeds(kind=keeper.engine.models.Kind.ROUTE)
        if resource_of(r.name) == resource and r.attributes.get("auth")
    }
    sanctioned = {
        str(s.attributes["scheme"])
        for s in _auth_services(walk)
        if s.attributes.get("scheme")
    }
    return siblings, sanctioned


def _check_route_auth(walk: _Walk, resource: str) -> None:
    declared = _metadata_str(walk.item, "auth")
    walk.verdict.followup = keeper.engine.models.Outcome.PROCEED
    if declared is None:
        return
    siblings, sanctioned = _auth_schemes(walk, resource)
    expected: str | None = None
    if siblings and declared not in siblings:
        expected = sorted(siblings)[0]
    elif sanctioned and declared != "none" and declared not in sanctioned:
        expected = sorted(sanctioned)[0]
    if expected is not None:
        walk.verdict.followup = keeper.engine.models.Outcome.FIX_AUTH
        walk.directive("fix_auth", walk.item.kind, walk.item.name, expected)


def _backend_route(walk: _Walk) -> keeper.engine.models.Verdict:
    item = walk.item
    path = item.name
    method = _metadata_str(item, "method")
    method = method.upper() if method else None
    action = _metadata_str(item, "action")
    resource = _metadata_str(item, "resource") or resource_of(path)

    seed = walk.find()
    if seed is not None:
        walk.reuse(seed)
        if method is None or seed.find_value(method) is not None:
            outcome = keeper.engine.models.Outcome.USE
            reason = f"reuse route {seed.name}"
        else:
            if not walk.growth_allowed(seed):
                walk.fail(
                    keeper.engine.models.Outcome.REJECT,
                    f"route {seed.name} is {seed.extension_policy}",
                )
            walk.extend(seed, "add_method", method)
            outcome = keeper.engine.models.Outcome.EXTEND
            reason = f"add {method} to {seed.name}"
        _check_route_auth(walk, resource)
        return walk.finish(outcome, reason)

    walk.missing("route")

    siblings = [
        r
        for r in walk.registry.seeds(kind=keeper.engine.models.Kind.ROUTE)
        if resource_of(r.name) == resource
    ]
    breaking = bool(item.metadata.get("breaking")) or bool(item.metadata.get("removes"))
    if siblings and not breaking:
        for sibling in siblings:
            walk.reuse(sibling)
        walk.directive(
            "modify", keeper.engine.models.Kind.ROUTE, siblings[0].name, path
        )
        walk.new_seed([method] if method else [])
        _check_route_auth(walk, resource)
        return walk.finish(
            keeper.engine.models.Outcome.MODIFY,
            f"backward-compatible change to {resource}",
        )

    problems = rest_shape_problems(path, method, action)
    if problems:
        walk.fail(keeper.engine.models.Outcome.REJECT, "; ".join(problems))
    walk.new_seed([method] if method else [])
    _check_route_auth(walk, resource)
    return walk.finish(keeper.engine.models.Outcome.APPROVE, f"new route {path}")


def _backend_service(walk: _Walk) -> keeper.engine.models.Verdict:
    item = walk.item
    seed = walk.find()
    if seed is not None:
        walk.reuse(seed)
        return walk.finish(
            keeper.engine.models.Outcome.USE, f"reuse service {seed.name}"
        )
    walk.missing("service")
    walk.new_seed()
    return walk.finish(keeper.engine.models.Outcome.CREATE, "new service")


def _backend(walk: _Walk) -> keeper.engine.models.Verdict:
    if walk.item.kind is keeper.engine.models.Kind.SERVICE:
        return _backend_service(walk)
    return _backend_route(walk)


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------

def _data(walk: _Walk) -> keeper.engine.models.Verdict:
    item = walk.item
    proposed = _metadata_list(item, "values")
    additions = _metadata_list(item, "add_values") or []

    seed = walk.find()
    owning_table: str | None
    if seed is not None:
        walk.reuse(seed)
        owning_table = seed.scope
        new_values = [v for v in additions if seed.find_value(v) is None]
        if proposed is not None:
            if proposed[: len(seed.values)] != seed.values:
                walk.fail(
                    keeper.engine.models.Outcome.REJECT,
                    f"enum {seed.name} is append-only; {seed.values} must stay "
                    "a prefix of the proposed values",
                )
            new_values += [
                v for v in proposed[len(seed.values):]
                if seed.find_value(v) is None and v not in new_values
            ]
        if not new_values:
            return walk.finish(
                keeper.engine.models.Outcome.USE, f"reuse enum {seed.name}"
            )
        if not walk.growth_allowed(seed):
            walk.fail(
                keeper.engine.models.Outcome.REJECT,
                f"enum {seed.name} is {seed.extension_policy}",
            )
        walk.extend(seed, "add_value", new_values)
        outcome = keeper.engine.models.Outcome.EXTEND
        reason = f"append {new_values} to {seed.name}"
    else:
        walk.missing("enum")
        owning_table = item.scope
        if owning_table is None:
            walk.fail(
                keeper.engine.models.Outcome.REJECT,
                "global enums are barred; scope the enum to one table",
            )
        elif "," in owning_table:
            walk.fail(
                keeper.engine.models.Outcome.REJECT,
                "an enum must be owned by exactly one table",
            )
            owning_table = owning_table.split(",")[0].strip()
        walk.new_seed((proposed or []) + additions, scope=owning_table)
        outcome = keeper.engine.models.Outcome.APPROVE
        reason = f"new enum scoped to {owning_table}"

    requires_migration = item.metadata.get("migration")
    if requires_migration is None:
        requires_migration = owning_table is not None
    if requires_migration:
        if not walk.config.migrations_allowed(walk.mode):
            walk.fail(
                keeper.engine.models.Outcome.BLOCK,
                f"schema migrations are disallowed in {walk.mode} mode",
            )
        walk.verdict.followup = keeper.engine.models.Outcome.MIGRATION_PLAN
        walk.directive("migration_plan", item.kind, item.name, owning_table)
    return walk.finish(outcome, reason)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

def _auth_services(walk: _Walk) -> list[keeper.engine.models.Seed]:
    return walk.registry.seeds(
        domain=keeper.engine.models.Domain.AUTH, kind=keeper.engine.models.Kind.SERVICE
    )


def _auth_service_for(walk: _Walk) -> keeper.engine.models.Seed | None:
    """Return the auth service responsible for the item's concern."""
    services = _auth_services(walk)
    wanted = _metadata_str(walk.item, "service")
    if wanted is not None:
        for service in services:
            if service.name == wanted:
                return service
        return None
    if len(services) > 1:
        names = ", ".join(s.name for s in services)
        raise keeper.errors.AmbiguousLookup(
            f"several auth services ({names}); name one with 'service'",
            candidates=services,
        )
    return services[0] if services else None


def _check_token(walk: _Walk, service: keeper.engine.models.Seed | None) -> None:
    declared = _metadata_str(walk.item, "token")
    expected = service.attributes.get("token") if service is not None else None
    if declared is not None and expected is not None and declared != str(expected):
        walk.fail(
            keeper.engine.models.Outcome.REJECT,
            f"token shape {declared!r} differs from {service.name}'s {expected!r}",
        )
    walk.verdict.followup = keeper.engine.models.Outcome.PROCEED


def _auth(walk: _Walk) -> keeper.engine.models.Verdict:
    item = walk.item

    if item.kind is keeper.engine.models.Kind.ROLE:
        if item.operation is not keeper.engine.models.Operation.REUSE:
            walk.fail(
                keeper.engine.models.Outcome.REJECT,
                f"never create or widen role {item.name!r} to work around a "
                "missing scope; request a scope instead",
            )
            return walk.finish(
                keeper.engine.models.Outcome.ADD_SCOPE, "seeding: role accepted"
            )
        return walk.finish(
            keeper.engine.models.Outcome.USE, f"reuse role {item.name}"
        )

    if item.kind is keeper.engine.models.Kind.SERVICE:
        services = _auth_services(walk)
        seed = walk.find()
        if seed is not None and seed.domain is keeper.engine.models.Domain.AUTH:
            walk.reuse(seed)
            _check_token(walk, seed)
            return walk.finish(
                keeper.engine.models.Outcome.USE, f"reuse auth service {seed.name}"
            )
        if not services:
            walk.fail(
                keeper.engine.models.Outcome.BLOCK,
                "no sanctioned auth service exists for this concern",
            )
        else:
            names = ", ".join(s.name for s in services)
            walk.fail(
                keeper.engine.models.Outcome.BLOCK,
                f"never approve a second auth system; extend {names} instead",
            )
        walk.new_seed()
        walk.verdict.followup = keeper.engine.models.Outcome.PROCEED
        return walk.finish(
            keeper.engine.models.Outcome.CREATE, "seeding: new auth service"
        )

    # Scopes
    service = _auth_service_for(walk)
    if service is None:
        walk.fail(
            keeper.engine.models.Outcome.BLOCK,
            "no sanctioned auth service exists for this concern",
        )
    else:
        walk.reuse(service)
    seed = walk.find()
    if seed is not None:
        walk.reuse(seed)
        _check_token(walk, service)
        return walk.finish(
            keeper.engine.models.Outcome.USE, f"reuse scope {seed.name}"
        )
    walk.missing("scope")
    owner = service.name if service is not None else None
    walk.new_seed(scope=item.scope)
    if owner is not None:
        walk.directive(
            "add_scope", keeper.engine.models.Kind.SERVICE, owner, item.name
        )
    _check_token(walk, service)
    return walk.finish(
        keeper.engine.models.Outcome.ADD_SCOPE, f"add scope {item.name}"
    )


_TABLES: dict[
    keeper.engine.models.Domain, Callable[[_Walk], keeper.engine.models.Verdict]
] = {
    keeper.engine.models.Domain.FRONTEND: _frontend,
    keeper.engine.models.Domain.BACKEND: _backend,
    keeper.engine.models.Domain.DATA: _data,
    keeper.engine.models.Domain.AUTH: _auth,
}


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def validate_item(item: keeper.engine.models.ChangeItem) -> None:
    """Raise ``ValidationError`` if *item* cannot be evaluated."""
    if not isinstance(item.domain, keeper.engine.models.Domain):
        raise keeper.errors.ValidationError(f"missing or unknown domain: {item!r}")
    if not isinstance(item.kind, keeper.engine.models.Kind):
        raise keeper.errors.ValidationError(f"missing or unknown kind: {item!r}")
    if not isinstance(item.name, str) or not item.name.strip():
        raise keeper.errors.ValidationError(f"missing name: {item!r}")
    if not isinstance(item.operation, keeper.engine.models.Operation):
        raise keeper.errors.ValidationError(
            f"missing or unknown operation: {item!r}"
        )
    if item.kind not in keeper.engine.models.DOMAIN_KINDS[item.domain]:
        allowed = ", ".join(sorted(keeper.engine.models.DOMAIN_KINDS[item.domain]))
        raise keeper.errors.ValidationError(
            f"{item.label()}: kind must be one of {allowed} in {item.domain}"
        )


def validate_proposal(proposal: keeper.engine.models.ProposedChange) -> None:
    if not proposal.items:
        raise keeper.errors.ValidationError("proposal has no changes")
    for item in proposal.items:
        validate_item(item)


def _conservation_gate(walk: _Walk) -> None:
    """Reject creation up front unless the target seed's policy allows growth."""
    if walk.mode is not keeper.engine.models.Mode.CONSERVATION:
        return
    if walk.item.operation is not keeper.engine.models.Operation.CREATE:
        return
    seed = walk.find()
    if seed is not None and walk.growth_allowed(seed):
        return
    raise _Terminal(
        keeper.engine.models.Outcome.REJECT, "creation is barred in conservation mode"
    )


def evaluate_item(
    item: keeper.engine.models.ChangeItem,
    registry: keeper.engine.registry.Registry,
    mode: keeper.engine.models.Mode,
    config: keeper.engine.config.KeeperConfig,
    counted: set[keeper.engine.registry.SeedKey] | None = None,
) -> keeper.engine.models.Verdict:
    """Walk the domain table for one validated item.

    *counted* collects the seeds already counted towards promotion by
    earlier items of the same proposal.
    """
    if counted is None:
        counted = set()
    walk = _Walk(item, registry, mode, config, counted)
    try:
        _conservation_gate(walk)
        verdict = _TABLES[item.domain](walk)
    except _Terminal as term:
        logger.debug("%s -> %s (%s)", item.label(), term.outcome, term.reason)
        return keeper.engine.models.Verdict(
            item=item, outcome=term.outcome, reason=term.reason
        )
    except keeper.errors.AmbiguousLookup as exc:
        logger.debug("%s -> defer (%s)", item.label(), exc)
        return keeper.engine.models.Verdict(
            item=item,
            outcome=keeper.engine.models.Outcome.DEFER,
            reason=str(exc),
            ambiguous=True,
        )
    logger.debug("%s -> %s (%s)", item.label(), verdict.outcome, verdict.reason)
    return verdict


def evaluate(
    proposal: keeper.engine.models.ProposedChange,
    registry: keeper.engine.registry.Registry,
    mode: keeper.engine.models.Mode,
    config: keeper.engine.config.KeeperConfig,
) -> list[keeper.engine.models.Verdict]:
    """Validate every item, then evaluate each one in order."""
    validate_proposal(proposal)
    counted: set[keeper.engine.registry.SeedKey] = set()
    return [
        evaluate_item(item, registry, mode, config, counted) for item in proposal.items
    ]
