"""Keeper CLI: architectural governance for agent-driven development.

Usage:
    keeper review PROPOSAL [--path ROOT] [--mode MODE] [--apply]
                           Review a proposed change and record a decision
    keeper validate CHANGESET [--decision ID] [--path ROOT]
                           Check an implementation against a decision
    keeper show ID         Print a decision as an ADR document
    keeper latest          Print the most recent decision
    keeper export ID --dir DIR
                           Write NNN-<slug>.yaml into DIR
    keeper frontmatter [ID]
                           Print work-item frontmatter for a decision
    keeper seeds [--kind KIND]
                           List sanctioned seeds
    keeper server [--root-dir DIR]
                           Run the MCP server
    keeper config <cmd>    Configuration (get/set/list/show)
    keeper hook <event>    Run a hook (called by Claude Code, not users)

Add --verbose to any command for debug logging.
"""

from __future__ import annotations

import argparse
import json
import logging
import pathlib
import sys

import keeper.errors

_HOOK_EVENTS = {
    "PreToolUse": "keeper.hooks.pre_tool_use",
}

logger = logging.getLogger("keeper.cli")


def _root(value: str | None) -> pathlib.Path:
    return pathlib.Path(value).resolve() if value else pathlib.Path.cwd()


def _cmd_review(args: list[str]) -> int:
    """Review a proposal file and print the recorded decision."""
    import keeper.engine.artifacts
    import keeper.engine.documents
    import keeper.engine.models
    import keeper.engine.review

    parser = argparse.ArgumentParser(prog="keeper review")
    parser.add_argument("proposal", type=pathlib.Path)
    parser.add_argument("--path", default=None, help="Project root (default: cwd)")
    parser.add_argument("--mode", default=None, help="Override the configured mode")
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Append approved growth to the registry documents",
    )
    parsed = parser.parse_args(args)

    text = keeper.engine.documents.read_text(parsed.proposal)
    proposal = keeper.engine.documents.load_proposal(text)
    result = keeper.engine.review.review(
        proposal, root=_root(parsed.path), mode=parsed.mode, apply=parsed.apply
    )
    print(keeper.engine.artifacts.render(result.decision), end="")
    return 0 if result.decision.status is keeper.engine.models.Status.APPROVED else 1


def _cmd_validate(args: list[str]) -> int:
    """Validate a changeset file against a decision."""
    import yaml

    import keeper.engine.documents
    import keeper.engine.review

    parser = argparse.ArgumentParser(prog="keeper validate")
    parser.add_argument("changeset", type=pathlib.Path)
    parser.add_argument(
        "--decision", default=None, help="Decision id (default: latest)"
    )
    parser.add_argument("--path", default=None, help="Project root (default: cwd)")
    parsed = parser.parse_args(args)

    text = keeper.engine.documents.read_text(parsed.changeset)
    entries = keeper.engine.documents.load_changeset(text)
    report = keeper.engine.review.validate_changeset(
        entries, root=_root(parsed.path), decision_id=parsed.decision
    )
    print(yaml.safe_dump(report.to_dict(), sort_keys=False), end="")
    return 0 if report.passed else 1


def _decision_parser(prog: str, *, id_required: bool) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog)
    parser.add_argument("id", nargs=None if id_required else "?", default=None)
    parser.add_argument("--path", default=None, help="Project root (default: cwd)")
    return parser


def _load_decision(decision_id: str | None, path: str | None):
    import keeper.engine.review
    import keeper.engine.store

    store = keeper.engine.store.DecisionStore(_root(path))
    return keeper.engine.review.resolve_decision(store, decision_id)


def _cmd_show(args: list[str]) -> int:
    import keeper.engine.artifacts

    parsed = _decision_parser("keeper show", id_required=True).parse_args(args)
    decision = _load_decision(parsed.id, parsed.path)
    print(keeper.engine.artifacts.render(decision), end="")
    return 0


def _cmd_latest(args: list[str]) -> int:
    import keeper.engine.artifacts

    parser = argparse.ArgumentParser(prog="keeper latest")
    parser.add_argument("--path", default=None, help="Project root (default: cwd)")
    parsed = parser.parse_args(args)
    decision = _load_decision(None, parsed.path)
    print(keeper.engine.artifacts.render(decision), end="")
    return 0


def _cmd_export(args: list[str]) -> int:
    import keeper.engine.artifacts

    parser = _decision_parser("keeper export", id_required=True)
    parser.add_argument("--dir", required=True, type=pathlib.Path)
    parsed = parser.parse_args(args)
    decision = _load_decision(parsed.id, parsed.path)
    path = keeper.engine.artifacts.export(decision, parsed.dir)
    print(path)
    return 0


def _cmd_frontmatter(args: list[str]) -> int:
    import keeper.engine.artifacts

    parsed = _decision_parser("keeper frontmatter", id_required=False).parse_args(args)
    decision = _load_decision(parsed.id, parsed.path)
    print(keeper.engine.artifacts.frontmatter(decision), end="")
    return 0


def _cmd_seeds(args: list[str]) -> int:
    """List the seeds in the registry."""
    import keeper.engine.config
    import keeper.engine.models
    import keeper.engine.review

    parser = argparse.ArgumentParser(prog="keeper seeds")
    parser.add_argument(
        "--kind",
        default=None,
        choices=[str(k) for k in keeper.engine.models.SEED_KINDS],
    )
    parser.add_argument("--path", default=None, help="Project root (default: cwd)")
    parsed = parser.parse_args(args)

    root = _root(parsed.path)
    config = keeper.engine.config.load(root)
    registry = keeper.engine.review.load_registry(root, config)
    kind = keeper.engine.models.Kind(parsed.kind) if parsed.kind else None
    seeds = registry.seeds(kind=kind)
    if not seeds:
        print("No seeds registered.")
        return 0
    for seed in sorted(seeds, key=lambda s: (s.domain, s.kind, s.name)):
        values = ", ".join(seed.values)
        print(
            f"{seed.domain:<9} {seed.kind:<10} {seed.name:<24} "
            f"{seed.scope or 'global':<12} {seed.extension_policy:<12} "
            f"uses={seed.usage_count}  [{values}]"
        )
    return 0


def _cmd_hook(args: list[str]) -> int:
    """Dispatch a hook event. Called by Claude Code, not users."""
    if not args:
        print("Usage: keeper hook <event>", file=sys.stderr)
        print(f"Events: {', '.join(_HOOK_EVENTS)}", file=sys.stderr)
        return 1

    event = args[0]
    module_name = _HOOK_EVENTS.get(event)
    if module_name is None:
        print(f"Unknown hook event: {event}", file=sys.stderr)
        return 1

    import importlib

    module = importlib.import_module(module_name)

    hook_data: dict = {}
    raw = sys.stdin.read()
    if raw:
        try:
            hook_data = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            logger.warning("hook input is not JSON; ignoring")

    print(module.main(hook_data))
    return 0


def _cmd_server(args: list[str]) -> int:
    """Run the MCP server."""
    parser = argparse.ArgumentParser(prog="keeper server")
    parser.add_argument("--root-dir", type=pathlib.Path, default=None)
    parsed = parser.parse_args(args)

    import keeper.server

    keeper.server.run_server(parsed.root_dir)
    return 0


def _cmd_config(args: list[str]) -> int:
    """Unified configuration."""
    import keeper.config_cli

    return keeper.config_cli.main(args)


_COMMANDS = {
    "review": _cmd_review,
    "validate": _cmd_validate,
    "show": _cmd_show,
    "latest": _cmd_latest,
    "export": _cmd_export,
    "frontmatter": _cmd_frontmatter,
    "seeds": _cmd_seeds,
    "hook": _cmd_hook,
    "server": _cmd_server,
    "config": _cmd_config,
}


def run(argv: list[str]) -> int:
    """Run one keeper command and return its exit code."""
    verbose = "--verbose" in argv
    args = [a for a in argv if a != "--verbose"]
    if not args or args[0] not in _COMMANDS:
        print(__doc__)
        return 1

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        stream=sys.stderr,
    )
    try:
        return _COMMANDS[args[0]](args[1:])
    except keeper.errors.KeeperError as exc:
        print(f"keeper: {exc}", file=sys.stderr)
        return 2


def main() -> None:
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
