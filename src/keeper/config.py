"""Configuration registry with TOML-backed persistence.

Subsystems register dataclass config models with ``@configurable``;
``load()`` merges code defaults, then global TOML, then local TOML into a
populated instance.

Config files:
    ~/.config/keeper/config.toml     global (user-wide)
    <root>/.keeper/config.toml       local  (project-specific)

The project root is always explicit. Nothing here walks parent
directories looking for a project.

Fields may carry ``metadata={"check": fn}``; ``set_value`` runs *fn* on the
coerced value before anything is written, so a bad mode or regex never
reaches the TOML file. ``metadata={"choices": [...]}`` documents the
accepted values for ``keeper config list``.
"""

from __future__ import annotations

import dataclasses
import logging
import pathlib
import tomllib
import typing
from typing import Any, TypeVar

import tomli_w

import keeper.errors

T = TypeVar("T")

logger = logging.getLogger("keeper.config")

_REGISTRY: dict[str, type] = {}

_SCOPES = ("global", "local")


def configurable(section: str):
    """Class decorator: register a dataclass as a configurable section."""

    def decorator(cls: type[T]) -> type[T]:
        _REGISTRY[section] = cls
        return cls

    return decorator


def _global_path() -> pathlib.Path:
    return pathlib.Path.home() / ".config" / "keeper" / "config.toml"


def _local_path(root: pathlib.Path) -> pathlib.Path:
    return root / ".keeper" / "config.toml"


def _path_for(scope: str, root: pathlib.Path | None) -> pathlib.Path:
    if scope not in _SCOPES:
        raise ValueError(f"scope must be one of {', '.join(_SCOPES)}, not {scope!r}")
    if scope == "global":
        return _global_path()
    return _local_path(root if root is not None else pathlib.Path.cwd())


def _load_toml(path: pathlib.Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        return tomllib.loads(path.read_text())
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("ignoring unreadable config %s: %s", path, exc)
        return {}


def _write_toml(path: pathlib.Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(tomli_w.dumps(data).encode())


def _section(section: str) -> type:
    cls = _REGISTRY.get(section)
    if cls is None:
        raise KeyError(f"Unknown config section: {section}")
    return cls


def field_of(section: str, key: str) -> dataclasses.Field:
    """Return the dataclass field behind ``section.key``."""
    for f in dataclasses.fields(_section(section)):
        if f.name == key:
            return f
    raise KeyError(f"Unknown key: {section}.{key}")


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a CLI string to *target_type*."""
    if target_type is bool:
        return value.lower() in ("true", "1", "yes")
    if target_type in (int, float):
        try:
            return target_type(value)
        except ValueError:
            raise keeper.errors.ValidationError(
                f"expected {target_type.__name__}, got {value!r}"
            ) from None
    if target_type is list:
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


def _field_type(f: dataclasses.Field) -> type:
    t = f.type
    # String annotations (from __future__ import annotations)
    if isinstance(t, str):
        if t.startswith("list"):
            return list
        return {"int": int, "float": float, "bool": bool, "str": str}.get(t, str)
    if typing.get_origin(t) is list:
        return list
    return t


def list_sections() -> dict[str, type]:
    """Return a copy of the registry."""
    return dict(_REGISTRY)


def load(section: str, root: pathlib.Path | None = None) -> Any:
    """Load a config section, merging defaults, global and local TOML."""
    cls = _section(section)
    merged: dict[str, Any] = {}
    for scope in _SCOPES:
        merged.update(_load_toml(_path_for(scope, root)).get(section, {}))

    valid_fields = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(merged) - valid_fields)
    if unknown:
        logger.warning("ignoring unknown [%s] keys: %s", section, ", ".join(unknown))
    return cls(**{k: v for k, v in merged.items() if k in valid_fields})


def get_effective(
    section: str,
    key: str,
    root: pathlib.Path | None = None,
) -> Any:
    """Get the effective value for a single config key."""
    field_of(section, key)
    return getattr(load(section, root), key)


def overrides(section: str, root: pathlib.Path | None = None) -> dict[str, str]:
    """Map each overridden key of *section* to the scope that wins for it."""
    origin: dict[str, str] = {}
    for scope in _SCOPES:
        for key in _load_toml(_path_for(scope, root)).get(section, {}):
            origin[key] = scope
    return origin


def set_value(
    section: str,
    key: str,
    value: Any,
    *,
    scope: str = "local",
    root: pathlib.Path | None = None,
) -> Any:
    """Check and write a config value; return the value as stored."""
    f = field_of(section, key)
    if isinstance(value, str):
        value = _coerce(value, _field_type(f))
    check = f.metadata.get("check")
    if check is not None:
        check(value)

    path = _path_for(scope, root)
    data = _load_toml(path)
    data.setdefault(section, {})[key] = value
    _write_toml(path, data)
    logger.debug("set %s.%s = %r in %s", section, key, value, path)
    return value


def reset_value(
    section: str,
    key: str,
    *,
    scope: str = "local",
    root: pathlib.Path | None = None,
) -> bool:
    """Remove a config override; return False if there was none."""
    path = _path_for(scope, root)
    data = _load_toml(path)
    sec = data.get(section, {})
    if key not in sec:
        return False
    del sec[key]
    if not sec:
        del data[section]
    _write_toml(path, data)
    return True
