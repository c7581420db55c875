"""
DocumentStorePort — the single port in docrqs.

Any object satisfying this structural Protocol can act as the store backend.
No base class or registration is required.

CAS contract
------------
Every document carries an opaque revision token (`Document.rev`). Every
successful write returns a new revision. Conditional operations compare the
caller's expected revision with the current one:

  update_document(container, doc)           expected = doc.rev
  delete_document(container, doc_id, rev)   expected = rev
  bulk_update(container, docs)              expected = each doc.rev

A mismatch raises DocumentConflictError (or, for bulk_update, is reported as
a per-document error). A missing document raises DocumentNotFoundError. Any
other failure raises StorageError.

Indexes
-------
Indexes are installed per container under a named group. query_index returns
selected documents ordered by the index key; count_index returns the number
of selected documents without materializing them.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from docrqs.domain.documents import (
    Attachment,
    BulkWriteResult,
    Document,
    IndexDefinition,
)


@runtime_checkable
class DocumentStorePort(Protocol):
    """
    Minimal interface required by the docrqs core.

    Implementing adapters (built-in):
      - InMemoryDocumentStore        — asyncio.Lock-based, for testing
      - LocalFileSystemDocumentStore — fcntl.flock-based, POSIX single-machine
      - CouchDBDocumentStore         — CouchDB HTTP API (httpx)
    """

    # ------------------------------------------------------------------ #
    # Containers                                                          #
    # ------------------------------------------------------------------ #

    async def container_exists(self, container: str) -> bool: ...

    async def create_container(self, container: str) -> None:
        """Create an empty container. DocumentConflictError if it exists."""
        ...

    async def delete_container(self, container: str) -> None:
        """Delete a container and everything in it. DocumentNotFoundError if absent."""
        ...

    async def list_containers(self) -> list[str]: ...

    # ------------------------------------------------------------------ #
    # Documents                                                           #
    # ------------------------------------------------------------------ #

    async def get_document(self, container: str, doc_id: str) -> Document | None:
        """Return the current document, or None if it does not exist."""
        ...

    async def get_documents(
        self, container: str, doc_ids: Sequence[str]
    ) -> list[Document]:
        """Return the existing documents among doc_ids, in request order."""
        ...

    async def create_document(
        self,
        container: str,
        doc: Document,
        attachments: Sequence[Attachment] = (),
    ) -> str:
        """
        Create a document under doc.id, together with its attachments.

        The document and its attachments become visible in one write: no
        reader ever sees the document without them.

        Returns the new revision. DocumentConflictError if the id is taken.
        """
        ...

    async def update_document(self, container: str, doc: Document) -> str:
        """
        Replace the body of doc.id if its current revision equals doc.rev.

        Returns the new revision.

        Raises
        ------
        DocumentConflictError  revision mismatch
        DocumentNotFoundError  document does not exist
        """
        ...

    async def delete_document(self, container: str, doc_id: str, rev: str) -> None:
        """
        Delete doc_id if its current revision equals rev.

        Raises
        ------
        DocumentNotFoundError  document does not exist
        DocumentConflictError  revision mismatch
        """
        ...

    async def bulk_update(
        self, container: str, docs: Sequence[Document]
    ) -> list[BulkWriteResult]:
        """
        Conditionally write every document in one operation.

        Returns one result per input document, in input order. Partial
        failure never aborts the remaining writes.
        """
        ...

    # ------------------------------------------------------------------ #
    # Attachments                                                         #
    # ------------------------------------------------------------------ #

    async def put_attachment(
        self,
        container: str,
        doc_id: str,
        rev: str,
        name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Attach bytes to a document (CAS on rev). Returns the new revision."""
        ...

    async def get_attachment(self, container: str, doc_id: str, name: str) -> bytes:
        """Fetch attachment bytes. DocumentNotFoundError if absent."""
        ...

    # ------------------------------------------------------------------ #
    # Indexes                                                             #
    # ------------------------------------------------------------------ #

    async def define_indexes(
        self,
        container: str,
        group: str,
        definitions: Sequence[IndexDefinition],
    ) -> None:
        """Install a group of index definitions in a container."""
        ...

    async def get_index_definitions(
        self, container: str, group: str
    ) -> list[IndexDefinition] | None:
        """Return the installed definitions of a group, or None if not installed."""
        ...

    async def query_index(
        self,
        container: str,
        group: str,
        index: str,
        *,
        limit: int | None = None,
        descending: bool = False,
    ) -> list[Document]:
        """Return selected documents ordered by the index key, capped at limit."""
        ...

    async def count_index(self, container: str, group: str, index: str) -> int:
        """Number of documents selected by the index (metadata only)."""
        ...
