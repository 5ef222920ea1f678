"""Parse proposal and changeset documents.

Both are YAML (or JSON) documents listing change entries::

    title: Warning state for buttons
    changes:
      - domain: frontend
        kind: component
        name: Button
        operation: create
        variant: warning

Keys other than domain, kind, name, operation, scope and metadata are
folded into the entry's metadata. A changeset may also be a bare list.
Every failure surfaces as ``keeper.errors.ValidationError``.
"""

from __future__ import annotations

import pathlib
import typing

import pydantic
import yaml

import keeper.engine.models
import keeper.errors


class ChangeEntry(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="allow", str_strip_whitespace=True)

    domain: str
    kind: str
    name: str = pydantic.Field(min_length=1)
    operation: str
    scope: str | None = None
    metadata: dict[str, typing.Any] = pydantic.Field(default_factory=dict)

    def to_item(self) -> keeper.engine.models.ChangeItem:
        try:
            domain = keeper.engine.models.Domain(self.domain.lower())
            kind = keeper.engine.models.Kind(self.kind.lower())
            operation = keeper.engine.models.Operation(self.operation.lower())
        except ValueError as exc:
            raise keeper.errors.ValidationError(f"{self.name}: {exc}") from None
        metadata = dict(self.metadata)
        metadata.update(self.model_extra or {})
        return keeper.engine.models.ChangeItem(
            domain=domain,
            kind=kind,
            name=self.name,
            operation=operation,
            scope=self.scope,
            metadata=metadata,
        )


class ProposalDocument(pydantic.BaseModel):
    title: str = ""
    changes: list[ChangeEntry] = pydantic.Field(min_length=1)


class ChangesetDocument(pydantic.BaseModel):
    changes: list[ChangeEntry] = pydantic.Field(default_factory=list)


def _format_errors(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


def _decode(text: str) -> typing.Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise keeper.errors.ValidationError(f"unreadable document: {exc}") from exc


def parse_proposal(data: typing.Any) -> keeper.engine.models.ProposedChange:
    if isinstance(data, list):
        data = {"changes": data}
    try:
        doc = ProposalDocument.model_validate(data)
    except pydantic.ValidationError as exc:
        raise keeper.errors.ValidationError(
            f"malformed proposal: {_format_errors(exc)}"
        ) from None
    return keeper.engine.models.ProposedChange(
        title=doc.title, items=tuple(entry.to_item() for entry in doc.changes)
    )


def parse_changeset(data: typing.Any) -> list[keeper.engine.models.ChangeItem]:
    if data is None:
        data = []
    if isinstance(data, list):
        data = {"changes": data}
    try:
        doc = ChangesetDocument.model_validate(data)
    except pydantic.ValidationError as exc:
        raise keeper.errors.ValidationError(
            f"malformed changeset: {_format_errors(exc)}"
        ) from None
    return [entry.to_item() for entry in doc.changes]


def load_proposal(text: str) -> keeper.engine.models.ProposedChange:
    return parse_proposal(_decode(text))


def load_changeset(text: str) -> list[keeper.engine.models.ChangeItem]:
    return parse_changeset(_decode(text))


def read_text(path: pathlib.Path) -> str:
    """Read an input document, mapping I/O failures to ``ValidationError``."""
    try:
        return path.read_text()
    except OSError as exc:
        raise keeper.errors.ValidationError(f"cannot read {path}: {exc}") from exc
