"""
Codec — convert between message documents and domain models using Pydantic v2.

Wire format (document body, produced by MessageBody.model_dump):
----------------------------------------------------------------
Pending message:

    {"sent_at": 1700000000000}

Locked message:

    {
      "sent_at": 1700000000000,
      "lock": {
        "locked_at": 1700000000123,     <-- epoch milliseconds
        "locked_by": "4242@worker-1",
        "visibility_timeout": 30000      <-- milliseconds
      }
    }

The payload is not part of the body: it lives in an attachment named
ATTACHMENT_NAME. Any other keys in the body (for example adapter-private
attachment stubs) are carried through untouched on every re-encode.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from docrqs.domain.documents import Document
from docrqs.domain.errors import StorageError
from docrqs.domain.models import Lock, Message, MessageBody

ATTACHMENT_NAME = "message"
CONTENT_TYPE = "application/octet-stream"

_OWN_FIELDS = ("sent_at", "lock")


def encode(body: MessageBody, base: dict[str, Any] | None = None) -> dict[str, Any]:
    """Serialize a MessageBody into document fields, keeping foreign keys of `base`."""
    fields = {k: v for k, v in (base or {}).items() if k not in _OWN_FIELDS}
    fields.update(body.model_dump(exclude_none=True))
    return fields


def decode(doc: Document) -> MessageBody:
    """Parse the message fields of a stored document."""
    try:
        return MessageBody.model_validate(doc.body)
    except ValidationError as exc:
        raise StorageError(f"Malformed message document {doc.id!r}", exc) from exc


def to_message(doc: Document, data: bytes | None = None) -> Message:
    """Build a Message from a stored document (and, optionally, its payload)."""
    if doc.rev is None:
        raise ValueError(f"Document {doc.id!r} has no revision")
    body = decode(doc)
    return Message(id=doc.id, rev=doc.rev, sent_at=body.sent_at, lock=body.lock, data=data)


def with_lock(doc: Document, lock: Lock | None) -> Document:
    """Return a copy of `doc` whose body carries `lock` (or no lock at all)."""
    body = decode(doc).model_copy(update={"lock": lock})
    return doc.with_body(encode(body, base=doc.body))
