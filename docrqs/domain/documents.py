"""
Value types exchanged with a document store.

Document         — a JSON document with its id and opaque revision
Attachment       — named bytes written together with a new document
BulkWriteResult  — per-document outcome of a bulk write
IndexDefinition  — an ordered secondary index over documents that have
                   (or lack) a given field, keyed by another field
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def lookup(body: dict[str, Any], path: str) -> Any:
    """Resolve a dotted path ("lock.locked_at") in a document body, or None."""
    value: Any = body
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class Document(BaseModel):
    """
    A stored document.

    id   — document identifier, unique within a container
    rev  — opaque revision token; None for a document not yet written
    body — JSON fields (never contains id/rev bookkeeping)
    """

    model_config = ConfigDict(frozen=True)

    id: str
    rev: str | None = None
    body: dict[str, Any] = Field(default_factory=dict)

    def with_rev(self, rev: str) -> Document:
        return self.model_copy(update={"rev": rev})

    def with_body(self, body: dict[str, Any]) -> Document:
        return self.model_copy(update={"body": body})


class Attachment(BaseModel):
    """Named binary content stored alongside a document."""

    model_config = ConfigDict(frozen=True)

    name: str
    data: bytes
    content_type: str = "application/octet-stream"


class BulkWriteResult(BaseModel):
    """
    Outcome of one document in a bulk write.

    Exactly one of `rev` (success, the new revision) or `error` is set.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    rev: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.rev is not None


class IndexDefinition(BaseModel):
    """
    An ordered index over the documents of one container.

    name    — index name, unique within its group
    field   — dotted path whose presence (or absence) selects documents
    present — select documents that have `field` (True) or lack it (False)
    key     — dotted path of the sort key emitted for selected documents
    """

    model_config = ConfigDict(frozen=True)

    name: str
    field: str
    present: bool
    key: str

    def selects(self, body: dict[str, Any]) -> bool:
        return (lookup(body, self.field) is not None) == self.present

    def key_of(self, body: dict[str, Any]) -> Any:
        return lookup(body, self.key)
