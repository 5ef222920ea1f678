"""Tests for proposal and changeset parsing."""

from __future__ import annotations

import pathlib

import pytest

import keeper.engine.documents
import keeper.errors
from keeper.engine.models import ChangeItem, Domain, Kind, Operation


PROPOSAL = """\
title: Warning state for buttons
changes:
  - domain: frontend
    kind: component
    name: Button
    operation: create
    variant: warning
  - domain: data
    kind: enum
    name: status
    operation: extend
    scope: orders
    metadata:
      add_values: [returned]
"""


class TestLoadProposal:
    def test_parses_items(self) -> None:
        proposal = keeper.engine.documents.load_proposal(PROPOSAL)
        assert proposal.title == "Warning state for buttons"
        button, status = proposal.items
        assert button == ChangeItem(
            Domain.FRONTEND,
            Kind.COMPONENT,
            "Button",
            Operation.CREATE,
            metadata={"variant": "warning"},
        )
        assert status.scope == "orders"
        assert status.metadata == {"add_values": ["returned"]}

    def test_accepts_json(self) -> None:
        proposal = keeper.engine.documents.load_proposal(
            '{"changes": [{"domain": "Auth", "kind": "SCOPE", "name": "x", '
            '"operation": "Create"}]}'
        )
        [item] = proposal.items
        assert (item.domain, item.kind, item.operation) == (
            Domain.AUTH,
            Kind.SCOPE,
            Operation.CREATE,
        )

    @pytest.mark.parametrize(
        ("text", "match"),
        [
            ("changes:\n  - {kind: component, name: B, operation: create}\n", "domain"),
            ("changes:\n  - {domain: frontend, name: B, operation: create}\n", "kind"),
            ("changes:\n  - {domain: frontend, kind: component, operation: create}\n", "name"),
            ("changes:\n  - {domain: ui, kind: component, name: B, operation: create}\n", "ui"),
            ("changes: []\n", "changes"),
            ("title: nothing\n", "changes"),
            ("changes: [\n", "unreadable"),
            ("just text\n", "malformed proposal"),
        ],
    )
    def test_malformed(self, text: str, match: str) -> None:
        with pytest.raises(keeper.errors.ValidationError, match=match):
            keeper.engine.documents.load_proposal(text)


class TestLoadChangeset:
    def test_bare_list(self) -> None:
        entries = keeper.engine.documents.load_changeset(
            "- {domain: frontend, kind: component, name: WarningButton, operation: create}\n"
        )
        assert [e.name for e in entries] == ["WarningButton"]

    def test_empty_document(self) -> None:
        assert keeper.engine.documents.load_changeset("") == []

    def test_unknown_operation(self) -> None:
        with pytest.raises(keeper.errors.ValidationError, match="delete"):
            keeper.engine.documents.load_changeset(
                "changes:\n  - {domain: data, kind: enum, name: s, operation: delete}\n"
            )


class TestReadText:
    def test_missing_file(self, tmp_path: pathlib.Path) -> None:
        with pytest.raises(keeper.errors.ValidationError, match="cannot read"):
            keeper.engine.documents.read_text(tmp_path / "missing.yaml")
