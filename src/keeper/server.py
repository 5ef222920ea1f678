"""FastMCP server: keeper review, validation and lookups as MCP tools.

Every tool takes and returns YAML text. Tools run against the current
working directory, which ``run_server`` points at the project root.
Errors are reported as text so the calling agent can read them.
"""

from __future__ import annotations

import os
import pathlib
from typing import TYPE_CHECKING

import yaml
from mcp.server.fastmcp import FastMCP

import keeper.engine.artifacts
import keeper.engine.config
import keeper.engine.documents
import keeper.engine.models
import keeper.engine.review
import keeper.engine.store
import keeper.errors

if TYPE_CHECKING:
    from pathlib import Path

mcp = FastMCP("Keeper")


def _root() -> pathlib.Path:
    return pathlib.Path.cwd()


def _error(exc: keeper.errors.KeeperError) -> str:
    return yaml.safe_dump({"error": type(exc).__name__, "message": str(exc)})


@mcp.tool()
def keeper_review(proposal: str) -> str:
    """Reviews a proposed change against the seed registry.

    Call this BEFORE creating work items. Returns the recorded decision
    as an ADR document; only an approved decision lets work proceed.
    """
    try:
        parsed = keeper.engine.documents.load_proposal(proposal)
        result = keeper.engine.review.review(parsed, root=_root())
    except keeper.errors.KeeperError as exc:
        return _error(exc)
    return keeper.engine.artifacts.render(result.decision)


@mcp.tool()
def keeper_validate(changeset: str, decision_id: str | None = None) -> str:
    """Checks an implemented changeset against a decision (latest by default)."""
    try:
        entries = keeper.engine.documents.load_changeset(changeset)
        report = keeper.engine.review.validate_changeset(
            entries, root=_root(), decision_id=decision_id
        )
    except keeper.errors.KeeperError as exc:
        return _error(exc)
    return yaml.safe_dump(report.to_dict(), sort_keys=False)


@mcp.tool()
def keeper_decision(decision_id: str | None = None) -> str:
    """Returns a recorded decision as an ADR document (latest by default)."""
    store = keeper.engine.store.DecisionStore(_root())
    try:
        decision = keeper.engine.review.resolve_decision(store, decision_id)
    except keeper.errors.KeeperError as exc:
        return _error(exc)
    return keeper.engine.artifacts.render(decision)


@mcp.tool()
def keeper_seed(kind: str, name: str, scope: str | None = None) -> str:
    """Looks up a sanctioned seed by kind and name.

    Use this BEFORE inventing a component, route, enum, service or scope.
    """
    root = _root()
    try:
        seed_kind = keeper.engine.models.Kind(kind.lower())
    except ValueError:
        return _error(keeper.errors.ValidationError(f"unknown kind {kind!r}"))
    try:
        config = keeper.engine.config.load(root)
        registry = keeper.engine.review.load_registry(root, config)
        seed = registry.lookup(seed_kind, name, scope)
    except keeper.errors.KeeperError as exc:
        return _error(exc)
    return yaml.safe_dump(
        {
            "domain": str(seed.domain),
            "kind": str(seed.kind),
            "name": seed.name,
            "scope": seed.scope or "global",
            "values": list(seed.values),
            "extension_policy": str(seed.extension_policy),
            "usage_count": seed.usage_count,
            "forbidden_extensions": list(seed.forbidden_extensions),
            **seed.attributes,
        },
        sort_keys=False,
    )


def run_server(root_dir: Path | None = None) -> None:
    """Configure and start the FastMCP server."""
    if root_dir is not None:
        os.chdir(root_dir.resolve())

    mcp.run()
