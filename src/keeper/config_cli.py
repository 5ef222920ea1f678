"""CLI for keeper configuration.

Usage:
    keeper config list                         Show sections, defaults, choices
    keeper config get <section.key>            Print effective value
    keeper config set [--global] <key> <value> Check and write a config value
    keeper config reset [--global] <key>       Remove an override
    keeper config show                         Effective config as TOML
"""

from __future__ import annotations

import argparse
import dataclasses
import sys
from pathlib import Path

import tomli_w

import keeper.config
import keeper.errors


def _ensure_registry() -> None:
    """Import all config modules so the registry is populated."""
    import keeper.engine.config
    import keeper.hooks.config  # noqa: F401


def _split_key(key: str) -> tuple[str, str] | None:
    parts = key.split(".", 1)
    if len(parts) != 2:
        print(f"Invalid key format: {key!r} (expected section.key)", file=sys.stderr)
        return None
    return parts[0], parts[1]


def _default(f: dataclasses.Field):
    if f.default is not dataclasses.MISSING:
        return f.default
    return f.default_factory()  # type: ignore[misc]


def _toml_value(value) -> str:
    return tomli_w.dumps({"v": value}).strip().removeprefix("v = ")


def cmd_list() -> int:
    """Print every section with its field types, defaults and choices."""
    _ensure_registry()
    for name, cls in sorted(keeper.config.list_sections().items()):
        print(f"[{name}]")
        for f in dataclasses.fields(cls):
            type_name = f.type if isinstance(f.type, str) else f.type.__name__
            line = f"  {f.name}: {type_name} = {_default(f)!r}"
            choices = f.metadata.get("choices")
            if choices:
                line += f"  ({' | '.join(choices)})"
            print(line)
        print()
    return 0


def cmd_get(key: str, root: Path) -> int:
    """Print the effective value for section.key."""
    _ensure_registry()
    split = _split_key(key)
    if split is None:
        return 1
    try:
        value = keeper.config.get_effective(*split, root)
    except KeyError as exc:
        print(exc.args[0], file=sys.stderr)
        return 1
    print(value)
    return 0


def cmd_set(key: str, value: str, *, global_flag: bool, root: Path) -> int:
    """Check a value against its field and write it to TOML."""
    _ensure_registry()
    split = _split_key(key)
    if split is None:
        return 1
    scope = "global" if global_flag else "local"
    try:
        stored = keeper.config.set_value(*split, value, scope=scope, root=root)
    except KeyError as exc:
        print(exc.args[0], file=sys.stderr)
        return 1
    except keeper.errors.ValidationError as exc:
        print(f"Rejected {key}: {exc}", file=sys.stderr)
        return 1
    print(f"Set {key} = {_toml_value(stored)} ({scope})")
    return 0


def cmd_reset(key: str, *, global_flag: bool, root: Path) -> int:
    """Remove a config override."""
    _ensure_registry()
    split = _split_key(key)
    if split is None:
        return 1
    scope = "global" if global_flag else "local"
    if keeper.config.reset_value(*split, scope=scope, root=root):
        print(f"Reset {key} ({scope})")
    else:
        print(f"{key} has no {scope} override")
    return 0


def cmd_show(root: Path) -> int:
    """Print the effective config as TOML, marking overridden keys."""
    _ensure_registry()
    for name in sorted(keeper.config.list_sections()):
        instance = keeper.config.load(name, root)
        origin = keeper.config.overrides(name, root)
        print(f"[{name}]")
        for f in dataclasses.fields(instance):
            line = f"{f.name} = {_toml_value(getattr(instance, f.name))}"
            if f.name in origin:
                line += f"  # {origin[f.name]}"
            print(line)
        print()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``keeper config``."""
    parser = argparse.ArgumentParser(
        prog="keeper config",
        description="Keeper configuration.",
    )
    sub = parser.add_subparsers(dest="subcmd")

    p_list = sub.add_parser("list", help="Show sections, defaults, choices")
    p_list.set_defaults(func=lambda args: cmd_list())

    p_get = sub.add_parser("get", help="Print effective value")
    p_get.add_argument("key", help="section.key")
    p_get.set_defaults(func=lambda args: cmd_get(args.key, args.path))

    p_set = sub.add_parser("set", help="Check and write a config value")
    p_set.add_argument("key", help="section.key")
    p_set.add_argument("value", help="New value")
    p_set.set_defaults(
        func=lambda args: cmd_set(
            args.key, args.value, global_flag=args.global_flag, root=args.path
        )
    )

    p_reset = sub.add_parser("reset", help="Remove an override")
    p_reset.add_argument("key", help="section.key")
    p_reset.set_defaults(
        func=lambda args: cmd_reset(
            args.key, global_flag=args.global_flag, root=args.path
        )
    )

    p_show = sub.add_parser("show", help="Effective config as TOML")
    p_show.set_defaults(func=lambda args: cmd_show(args.path))

    for p in (p_get, p_set, p_reset, p_show):
        p.add_argument(
            "--path", type=Path, default=None, help="Project root (default: cwd)"
        )
    for p in (p_set, p_reset):
        p.add_argument("--global", dest="global_flag", action="store_true")

    args = parser.parse_args(argv)
    if args.subcmd is None:
        parser.print_help()
        return 1
    if getattr(args, "path", None) is None:
        args.path = Path.cwd()
    return args.func(args)
