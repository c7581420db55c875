"""
InMemoryDocumentStore — asyncio.Lock-based document store for tests and development.

Stores containers, documents, attachments and index definitions in plain
dicts. An asyncio.Lock serializes every operation, faithfully simulating the
per-document CAS semantics of a real revisioned document store.

Revisions look like CouchDB's: "<generation>-<counter>", where generation
counts the writes to that document and counter is a store-wide sequence, so
no two writes ever produce the same token.

Index queries scan the container. Documents with equal index keys keep their
insertion order (reversed for descending queries).

Zero external dependencies. Safe for multiple concurrent coroutines in a
single event loop. NOT safe across processes or threads.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
from collections.abc import Sequence

from docrqs.domain.documents import (
    Attachment,
    BulkWriteResult,
    Document,
    IndexDefinition,
)
from docrqs.domain.errors import DocumentConflictError, DocumentNotFoundError


@dataclasses.dataclass
class _Container:
    docs: dict[str, Document] = dataclasses.field(default_factory=dict)
    attachments: dict[tuple[str, str], tuple[bytes, str]] = dataclasses.field(
        default_factory=dict
    )
    indexes: dict[str, list[IndexDefinition]] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class InMemoryDocumentStore:
    """In-process document store backed by dicts."""

    def __post_init__(self) -> None:
        self._containers: dict[str, _Container] = {}
        self._counter: int = 0
        self._lock: asyncio.Lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Containers                                                          #
    # ------------------------------------------------------------------ #

    async def container_exists(self, container: str) -> bool:
        async with self._lock:
            return container in self._containers

    async def create_container(self, container: str) -> None:
        async with self._lock:
            if container in self._containers:
                raise DocumentConflictError(f"Container {container!r} already exists")
            self._containers[container] = _Container()

    async def delete_container(self, container: str) -> None:
        async with self._lock:
            if self._containers.pop(container, None) is None:
                raise DocumentNotFoundError(f"Container {container!r} does not exist")

    async def list_containers(self) -> list[str]:
        async with self._lock:
            return sorted(self._containers)

    # ------------------------------------------------------------------ #
    # Documents                                                           #
    # ------------------------------------------------------------------ #

    async def get_document(self, container: str, doc_id: str) -> Document | None:
        async with self._lock:
            doc = self._get(container).docs.get(doc_id)
            return None if doc is None else doc.model_copy(deep=True)

    async def get_documents(
        self, container: str, doc_ids: Sequence[str]
    ) -> list[Document]:
        async with self._lock:
            docs = self._get(container).docs
            return [docs[i].model_copy(deep=True) for i in doc_ids if i in docs]

    async def create_document(
        self,
        container: str,
        doc: Document,
        attachments: Sequence[Attachment] = (),
    ) -> str:
        async with self._lock:
            c = self._get(container)
            if doc.id in c.docs:
                raise DocumentConflictError(f"Document {doc.id!r} already exists")
            rev = self._next_rev(None)
            c.docs[doc.id] = Document(id=doc.id, rev=rev, body=copy.deepcopy(doc.body))
            for att in attachments:
                c.attachments[(doc.id, att.name)] = (bytes(att.data), att.content_type)
            return rev

    async def update_document(self, container: str, doc: Document) -> str:
        async with self._lock:
            return self._update(self._get(container), doc)

    async def delete_document(self, container: str, doc_id: str, rev: str) -> None:
        async with self._lock:
            c = self._get(container)
            current = c.docs.get(doc_id)
            if current is None:
                raise DocumentNotFoundError(f"Document {doc_id!r} not found")
            if current.rev != rev:
                raise DocumentConflictError(
                    f"Revision mismatch for {doc_id!r}: expected {rev!r}, got {current.rev!r}"
                )
            del c.docs[doc_id]
            for key in [k for k in c.attachments if k[0] == doc_id]:
                del c.attachments[key]

    async def bulk_update(
        self, container: str, docs: Sequence[Document]
    ) -> list[BulkWriteResult]:
        async with self._lock:
            c = self._get(container)
            results: list[BulkWriteResult] = []
            for doc in docs:
                try:
                    results.append(BulkWriteResult(id=doc.id, rev=self._update(c, doc)))
                except DocumentConflictError:
                    results.append(BulkWriteResult(id=doc.id, error="conflict"))
                except DocumentNotFoundError:
                    results.append(BulkWriteResult(id=doc.id, error="not_found"))
            return results

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
        async with self._lock:
            c = self._get(container)
            current = c.docs.get(doc_id)
            if current is None:
                raise DocumentNotFoundError(f"Document {doc_id!r} not found")
            new_rev = self._update(c, current.model_copy(update={"rev": rev}))
            c.attachments[(doc_id, name)] = (bytes(data), content_type)
            return new_rev

    async def get_attachment(self, container: str, doc_id: str, name: str) -> bytes:
        async with self._lock:
            found = self._get(container).attachments.get((doc_id, name))
            if found is None:
                raise DocumentNotFoundError(
                    f"Attachment {name!r} of document {doc_id!r} not found"
                )
            return found[0]

    # ------------------------------------------------------------------ #
    # Indexes                                                             #
    # ------------------------------------------------------------------ #

    async def define_indexes(
        self,
        container: str,
        group: str,
        definitions: Sequence[IndexDefinition],
    ) -> None:
        async with self._lock:
            self._get(container).indexes[group] = list(definitions)

    async def get_index_definitions(
        self, container: str, group: str
    ) -> list[IndexDefinition] | None:
        async with self._lock:
            found = self._get(container).indexes.get(group)
            return None if found is None else list(found)

    async def query_index(
        self,
        container: str,
        group: str,
        index: str,
        *,
        limit: int | None = None,
        descending: bool = False,
    ) -> list[Document]:
        async with self._lock:
            c = self._get(container)
            definition = _find_index(c, group, index)
            rows = [d for d in c.docs.values() if definition.selects(d.body)]
            rows.sort(key=lambda d: _sort_key(definition, d))
            if descending:
                rows.reverse()
            if limit is not None:
                rows = rows[:limit]
            return [d.model_copy(deep=True) for d in rows]

    async def count_index(self, container: str, group: str, index: str) -> int:
        async with self._lock:
            c = self._get(container)
            definition = _find_index(c, group, index)
            return sum(1 for d in c.docs.values() if definition.selects(d.body))

    # ------------------------------------------------------------------ #
    # Internal helpers (caller holds self._lock)                          #
    # ------------------------------------------------------------------ #

    def _get(self, container: str) -> _Container:
        found = self._containers.get(container)
        if found is None:
            raise DocumentNotFoundError(f"Container {container!r} does not exist")
        return found

    def _next_rev(self, current: str | None) -> str:
        generation = 1 if current is None else int(current.split("-", 1)[0]) + 1
        self._counter += 1
        return f"{generation}-{self._counter:08x}"

    def _update(self, c: _Container, doc: Document) -> str:
        current = c.docs.get(doc.id)
        if current is None:
            raise DocumentNotFoundError(f"Document {doc.id!r} not found")
        if current.rev != doc.rev:
            raise DocumentConflictError(
                f"Revision mismatch for {doc.id!r}: expected {doc.rev!r}, got {current.rev!r}"
            )
        rev = self._next_rev(current.rev)
        # Assigning to an existing key keeps its insertion position.
        c.docs[doc.id] = Document(id=doc.id, rev=rev, body=copy.deepcopy(doc.body))
        return rev


def _find_index(c: _Container, group: str, index: str) -> IndexDefinition:
    for definition in c.indexes.get(group, ()):
        if definition.name == index:
            return definition
    raise DocumentNotFoundError(f"Index {group}/{index} is not defined")


def _sort_key(definition: IndexDefinition, doc: Document) -> tuple[bool, object]:
    key = definition.key_of(doc.body)
    return key is not None, key
