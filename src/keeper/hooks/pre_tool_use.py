"""PreToolUse hook: gate work-item creation behind an approved decision.

Reads stdin JSON with tool_name, tool_input and cwd. Bash commands that
match a configured gate pattern (``bd create``, ``gt convoy create``) are
denied unless the latest decision in the project's store is approved.
Projects without a decision store are not governed and pass through.
"""

from __future__ import annotations

import json
import logging
import pathlib
import re

import keeper.config
import keeper.engine.models
import keeper.engine.store
import keeper.errors

logger = logging.getLogger("keeper.hooks.pre_tool_use")

_PASS = json.dumps({"hookSpecificOutput": {}})


def _hooks_cfg(root: pathlib.Path):
    import keeper.hooks.config

    return keeper.config.load("hooks", root)


def _is_gated(command: str, patterns: list[str]) -> bool:
    command = command.strip()
    return any(re.search(p, command) for p in patterns)


def _deny(reason: str) -> str:
    return json.dumps({
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "deny",
            "permissionDecisionReason": reason,
        }
    })


def main(hook_input: dict) -> str:
    """Run the keeper gate. Returns JSON output string."""
    if hook_input.get("tool_name", "") != "Bash":
        return _PASS
    command = (hook_input.get("tool_input") or {}).get("command", "")
    if not command:
        return _PASS

    cwd_str = hook_input.get("cwd")
    root = pathlib.Path(cwd_str) if cwd_str else pathlib.Path.cwd()
    cfg = _hooks_cfg(root)
    if not cfg.gate_enabled or not _is_gated(command, cfg.gate_patterns):
        return _PASS

    store = keeper.engine.store.DecisionStore(root)
    if not store.exists():
        return _PASS

    try:
        decision = store.latest()
    except keeper.errors.NotFound:
        decision = None

    if decision is None or decision.status is not keeper.engine.models.Status.APPROVED:
        status = decision.status if decision is not None else "missing"
        logger.info("keeper gate blocked %r (latest decision %s)", command, status)
        return _deny(
            "KEEPER GATE: BLOCKED. Cannot create work items without an approved "
            f"keeper decision (latest: {status}). Run 'keeper review <proposal>' "
            "first to get architectural approval."
        )

    return json.dumps({
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "additionalContext": (
                f"KEEPER: using decision {decision.label}. Include "
                f"'Keeper ADR: {decision.label}' in work item descriptions."
            ),
        }
    })
