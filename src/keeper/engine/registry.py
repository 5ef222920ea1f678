"""Seed registry of sanctioned architectural patterns.

The registry is loaded from one YAML document per domain::

    <seeds_dir>/frontend.yaml
    <seeds_dir>/backend.yaml
    <seeds_dir>/data.yaml
    <seeds_dir>/auth.yaml

Each document maps a seed name to its attributes. A name may map to a list
of attribute mappings when the same name exists in several scopes::

    Button:
      variants: [primary, secondary, danger]
      extension_policy: append-only
      forbidden_extensions: [ghost]

    status:
      - scope: orders
        values: [pending, shipped]
      - scope: invoices
        values: [draft, paid]

Malformed documents fail closed with ``RegistryParseError``.
"""

from __future__ import annotations

import logging
import pathlib
from typing import TYPE_CHECKING, Any

import yaml

import keeper.engine.models
import keeper.errors

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

logger = logging.getLogger("keeper.engine.registry")


_VALUE_KEYS = ("variants", "values", "methods")
_KNOWN_KEYS = frozenset(
    [
        "kind",
        "scope",
        "extension_policy",
        "usage_count",
        "forbidden_extensions",
        *_VALUE_KEYS,
    ]
)

SeedKey = tuple["keeper.engine.models.Kind", str, "str | None"]


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses duplicate mapping keys."""

    def construct_mapping(self, node, deep=False):  # type: ignore[override]
        seen: set[Any] = set()
        for key_node, _value_node in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping",
                    node.start_mark,
                    f"found duplicate key {key!r}",
                    key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _str_list(value: Any, field: str, where: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(
        isinstance(v, (str, int)) for v in value
    ):
        raise keeper.errors.RegistryParseError(
            f"{where}: {field} must be a list of strings"
        )
    return [str(v) for v in value]


def _normalize_scope(value: Any) -> str | None:
    if value is None:
        return None
    scope = str(value).strip()
    if not scope or scope.lower() == "global":
        return None
    return scope


def _parse_seed(
    domain: keeper.engine.models.Domain, name: str, attrs: Any
) -> keeper.engine.models.Seed:
    where = f"{domain}.{name}"
    if attrs is None:
        attrs = {}
    if not isinstance(attrs, dict):
        raise keeper.errors.RegistryParseError(
            f"{where}: seed attributes must be a mapping"
        )

    raw_kind = attrs.get("kind", keeper.engine.models.DEFAULT_KIND[domain])
    try:
        kind = keeper.engine.models.Kind(str(raw_kind))
    except ValueError:
        raise keeper.errors.RegistryParseError(
            f"{where}: unknown kind {raw_kind!r}"
        ) from None
    if (
        kind not in keeper.engine.models.SEED_KINDS
        or kind not in keeper.engine.models.DOMAIN_KINDS[domain]
    ):
        raise keeper.errors.RegistryParseError(
            f"{where}: kind {kind} is not a {domain} seed kind"
        )

    raw_policy = attrs.get(
        "extension_policy", keeper.engine.models.ExtensionPolicy.APPEND_ONLY
    )
    try:
        policy = keeper.engine.models.ExtensionPolicy(str(raw_policy))
    except ValueError:
        raise keeper.errors.RegistryParseError(
            f"{where}: unknown extension_policy {raw_policy!r}"
        ) from None

    value_keys = [k for k in _VALUE_KEYS if k in attrs]
    if len(value_keys) > 1:
        raise keeper.errors.RegistryParseError(
            f"{where}: use only one of {', '.join(value_keys)}"
        )
    values = _str_list(attrs.get(value_keys[0]) if value_keys else None,
                       value_keys[0] if value_keys else "values", where)
    if len({v.casefold() for v in values}) != len(values):
        raise keeper.errors.RegistryParseError(f"{where}: duplicate values")

    usage = attrs.get("usage_count", 0)
    if not isinstance(usage, int) or isinstance(usage, bool) or usage < 0:
        raise keeper.errors.RegistryParseError(
            f"{where}: usage_count must be a non-negative integer"
        )

    return keeper.engine.models.Seed(
        domain=domain,
        kind=kind,
        name=str(name),
        scope=_normalize_scope(attrs.get("scope")),
        values=values,
        extension_policy=policy,
        usage_count=usage,
        forbidden_extensions=_str_list(
            attrs.get("forbidden_extensions"), "forbidden_extensions", where
        ),
        attributes={k: v for k, v in attrs.items() if k not in _KNOWN_KEYS},
    )


def _seed_to_attrs(seed: keeper.engine.models.Seed) -> dict[str, Any]:
    attrs: dict[str, Any] = {}
    if seed.kind is not keeper.engine.models.DEFAULT_KIND[seed.domain]:
        attrs["kind"] = str(seed.kind)
    if seed.scope is not None:
        attrs["scope"] = seed.scope
    if seed.values:
        key = "values"
        if seed.kind is keeper.engine.models.Kind.COMPONENT:
            key = "variants"
        elif seed.kind is keeper.engine.models.Kind.ROUTE:
            key = "methods"
        attrs[key] = list(seed.values)
    attrs["extension_policy"] = str(seed.extension_policy)
    if seed.forbidden_extensions:
        attrs["forbidden_extensions"] = list(seed.forbidden_extensions)
    attrs["usage_count"] = seed.usage_count
    attrs.update(seed.attributes)
    return attrs


class Registry:
    """In-memory view of all seeds, keyed by ``(kind, name, scope)``."""

    def __init__(
        self,
        seeds: Iterable[keeper.engine.models.Seed] = (),
        *,
        source: pathlib.Path | None = None,
    ) -> None:
        self.source = source
        self._seeds: dict[SeedKey, keeper.engine.models.Seed] = {}
        for seed in seeds:
            self.add(seed)

    def __len__(self) -> int:
        return len(self._seeds)

    def __iter__(self) -> Iterator[keeper.engine.models.Seed]:
        return iter(list(self._seeds.values()))

    def add(self, seed: keeper.engine.models.Seed) -> None:
        key = (seed.kind, seed.name, seed.scope)
        if key in self._seeds:
            scope = seed.scope or "global"
            raise keeper.errors.RegistryParseError(
                f"duplicate {seed.kind} {seed.name!r} in scope {scope}",
                source=self.source,
            )
        self._seeds[key] = seed

    def seeds(
        self,
        *,
        domain: keeper.engine.models.Domain | None = None,
        kind: keeper.engine.models.Kind | None = None,
    ) -> list[keeper.engine.models.Seed]:
        return [
            s
            for s in self._seeds.values()
            if (domain is None or s.domain is domain)
            and (kind is None or s.kind is kind)
        ]

    def lookup(
        self,
        kind: keeper.engine.models.Kind,
        name: str,
        scope: str | None = None,
    ) -> keeper.engine.models.Seed:
        """Return the seed for *(kind, name)*.

        With a *scope*, the seed bound to that scope wins, then the global
        one. Without a scope the global seed wins, then a single scoped
        seed. Raises ``NotFound`` on a miss and ``AmbiguousLookup`` when
        several scoped seeds match and none is global.
        """
        scope = _normalize_scope(scope)
        if scope is not None:
            seed = self._seeds.get((kind, name, scope))
            if seed is not None:
                return seed
        seed = self._seeds.get((kind, name, None))
        if seed is not None:
            return seed
        if scope is None:
            candidates = [
                s for (k, n, _), s in self._seeds.items() if k is kind and n == name
            ]
            if len(candidates) == 1:
                return candidates[0]
            if candidates:
                scopes = ", ".join(sorted(str(c.scope) for c in candidates))
                raise keeper.errors.AmbiguousLookup(
                    f"{kind} {name!r} exists in several scopes ({scopes})",
                    candidates=candidates,
                )
        raise keeper.errors.NotFound(f"no {kind} seed named {name!r}")

    def find(
        self,
        kind: keeper.engine.models.Kind,
        name: str,
        scope: str | None = None,
    ) -> keeper.engine.models.Seed | None:
        """Like ``lookup`` but returns ``None`` on a miss."""
        try:
            return self.lookup(kind, name, scope)
        except keeper.errors.NotFound:
            return None

    def merge_usage(self, counts: Mapping[SeedKey, int]) -> None:
        """Raise usage counts to persisted values (never lowers them)."""
        for (kind, name, scope), count in counts.items():
            seed = self._seeds.get((kind, name, scope))
            if seed is not None and count > seed.usage_count:
                seed.usage_count = count

    def apply_decision(
        self, decision: keeper.engine.models.Decision
    ) -> list[str]:
        """Append the growth an approved decision authorizes.

        Extensions append values to existing seeds; new seeds are added;
        promoted seeds are lifted to global scope. Returns a human-readable
        list of changes. Published values are never removed.
        """
        if decision.status is not keeper.engine.models.Status.APPROVED:
            return []

        changes: list[str] = []
        for domain, entries in decision.extensions.items():
            for name, body in entries.items():
                kind = keeper.engine.models.Kind(body["kind"])
                seed = self.find(kind, name, body.get("scope"))
                if seed is None:
                    logger.warning("extension target %s %s vanished", kind, name)
                    continue
                for action, value in body.items():
                    if not action.startswith("add_"):
                        continue
                    values = value if isinstance(value, list) else [value]
                    for added in seed.append_values([str(v) for v in values]):
                        changes.append(f"{domain}: {kind} {name} += {added}")

        for new in decision.new_seeds:
            existing = self._seeds.get((new.kind, new.name, new.scope))
            if existing is None and new.promoted:
                existing = self.find(new.kind, new.name)
            if existing is None:
                self.add(
                    keeper.engine.models.Seed(
                        domain=new.domain,
                        kind=new.kind,
                        name=new.name,
                        scope=new.scope,
                        values=list(new.values),
                    )
                )
                changes.append(f"{new.domain}: new {new.kind} {new.name}")
                continue
            existing.append_values(list(new.values))
            # Enums stay owned by their table when promoted.
            if (
                new.promoted
                and existing.scope is not None
                and existing.kind is not keeper.engine.models.Kind.ENUM
            ):
                if (existing.kind, existing.name, None) not in self._seeds:
                    del self._seeds[(existing.kind, existing.name, existing.scope)]
                    existing.scope = None
                    self._seeds[(existing.kind, existing.name, None)] = existing
                    changes.append(
                        f"{new.domain}: promoted {new.kind} {new.name} to global"
                    )
        return changes

    def to_documents(self) -> dict[str, dict[str, Any]]:
        """Render the registry as one mapping per domain."""
        docs: dict[str, dict[str, Any]] = {
            str(d): {} for d in keeper.engine.models.Domain
        }
        for seed in self._seeds.values():
            doc = docs[str(seed.domain)]
            attrs = _seed_to_attrs(seed)
            if seed.name not in doc:
                doc[seed.name] = attrs
            elif isinstance(doc[seed.name], list):
                doc[seed.name].append(attrs)
            else:
                doc[seed.name] = [doc[seed.name], attrs]
        return docs

    def save(self, directory: pathlib.Path | None = None) -> None:
        """Write one YAML document per non-empty domain to *directory*."""
        directory = directory or self.source
        if directory is None:
            raise ValueError("registry has no source directory to save to")
        directory.mkdir(parents=True, exist_ok=True)
        for domain, doc in self.to_documents().items():
            path = directory / f"{domain}.yaml"
            if not doc and not path.exists():
                continue
            path.write_text(yaml.safe_dump(doc, sort_keys=False))
        logger.info("Saved %d seeds to %s", len(self), directory)


def parse_documents(
    documents: Mapping[str, Any], *, source: pathlib.Path | None = None
) -> Registry:
    """Build a registry from already-decoded per-domain documents."""
    registry = Registry(source=source)
    for domain_name, doc in documents.items():
        try:
            domain = keeper.engine.models.Domain(domain_name)
        except ValueError:
            raise keeper.errors.RegistryParseError(
                f"unknown domain document {domain_name!r}", source=source
            ) from None
        if doc is None:
            continue
        if not isinstance(doc, dict):
            raise keeper.errors.RegistryParseError(
                f"{domain} document must be a mapping of seed names", source=source
            )
        for name, attrs in doc.items():
            entries = attrs if isinstance(attrs, list) else [attrs]
            for entry in entries:
                try:
                    registry.add(_parse_seed(domain, str(name), entry))
                except keeper.errors.RegistryParseError as exc:
                    if exc.source is None and source is not None:
                        raise keeper.errors.RegistryParseError(
                            str(exc), source=source
                        ) from exc
                    raise
    return registry


def load(source: pathlib.Path | Mapping[str, Any]) -> Registry:
    """Load the registry from a seeds directory or a mapping of documents."""
    if not isinstance(source, pathlib.Path):
        return parse_documents(source)

    if not source.is_dir():
        raise keeper.errors.RegistryParseError(
            "seeds directory not found", source=source
        )

    documents: dict[str, Any] = {}
    for domain in keeper.engine.models.Domain:
        path = source / f"{domain}.yaml"
        if not path.exists():
            continue
        try:
            documents[str(domain)] = yaml.load(
                path.read_text(), Loader=_UniqueKeyLoader
            )
        except yaml.YAMLError as exc:
            raise keeper.errors.RegistryParseError(str(exc), source=path) from exc
    registry = parse_documents(documents, source=source)
    logger.debug("Loaded %d seeds from %s", len(registry), source)
    return registry
