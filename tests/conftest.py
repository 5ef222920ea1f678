"""Shared test fixtures for keeper tests."""

from __future__ import annotations

import pathlib

import pytest
import yaml

import keeper.config
import keeper.engine.config
import keeper.engine.registry
import keeper.engine.store

SEEDS = {
    "frontend": {
        "Button": {
            "variants": ["primary", "secondary", "danger"],
            "extension_policy": "append-only",
            "forbidden_extensions": ["ghost"],
        },
        "Modal": {"variants": ["default"], "extension_policy": "frozen"},
        "Card": {"variants": ["plain"], "extension_policy": "controlled"},
    },
    "backend": {
        "/api/users": {"methods": ["GET", "POST"], "auth": "session"},
        "/api/users/{id}": {"methods": ["GET"], "auth": "session"},
    },
    "data": {
        "status": {
            "scope": "orders",
            "values": ["pending", "shipped", "delivered"],
        },
    },
    "auth": {
        "SessionAuth": {"scheme": "session", "token": "jwt"},
        "read:orders": {"kind": "scope"},
    },
}


@pytest.fixture(autouse=True)
def _isolated_global_config(
    tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Keep the user's ~/.config/keeper out of every test."""
    monkeypatch.setattr(
        keeper.config, "_global_path", lambda: tmp_path / "global" / "config.toml"
    )


@pytest.fixture
def project(tmp_path: pathlib.Path) -> pathlib.Path:
    """A project root with the sample seed documents."""
    root = tmp_path / "project"
    seeds_dir = root / ".keeper" / "seeds"
    seeds_dir.mkdir(parents=True)
    for domain, doc in SEEDS.items():
        (seeds_dir / f"{domain}.yaml").write_text(yaml.safe_dump(doc, sort_keys=False))
    return root


@pytest.fixture
def registry(project: pathlib.Path) -> keeper.engine.registry.Registry:
    return keeper.engine.registry.load(project / ".keeper" / "seeds")


@pytest.fixture
def config() -> keeper.engine.config.KeeperConfig:
    return keeper.engine.config.KeeperConfig()


@pytest.fixture
def store(project: pathlib.Path) -> keeper.engine.store.DecisionStore:
    return keeper.engine.store.DecisionStore(project)
