"""
LocalFileSystemDocumentStore — fcntl.flock-based document store for POSIX systems.

Suitable for local development, single-machine deployments, or integration
tests that need persistent state shared between processes on one host.

NOT suitable for multi-machine deployments — use CouchDBDocumentStore for
distributed workloads.

Layout
------
    <root>/<container>/.lock                    flock target
    <root>/<container>/meta.json                {"seq": <last insertion number>}
    <root>/<container>/docs/<id>.json           {"_rev", "_seq", "attachments", "body"}
    <root>/<container>/attachments/<id>/<name>  raw attachment bytes
    <root>/<container>/indexes/<group>.json     list of index definitions

Names are percent-encoded before they touch the filesystem, dots included, so
"." and ".." stay ordinary entries under their parent. Empty names are
rejected.

Revision strategy
-----------------
"<generation>-<sha256 prefix>" where the digest covers the previous revision
and the new document content, so every write yields a new token.

CAS semantics
-------------
Mutations take an exclusive flock on the container's lock file, re-read the
current revision while holding it, and raise DocumentConflictError on a
mismatch. Reads take a shared lock. Files are replaced atomically
(write to a temp file, then os.replace).

POSIX-only (Linux, macOS). Not compatible with NFS or distributed filesystems.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import fcntl
import hashlib
import json
import logging
import os
import shutil
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import quote, unquote

from docrqs.domain.documents import (
    Attachment,
    BulkWriteResult,
    Document,
    IndexDefinition,
)
from docrqs.domain.errors import (
    DocumentConflictError,
    DocumentNotFoundError,
    StorageError,
    StoreError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclasses.dataclass
class LocalFileSystemDocumentStore:
    """
    Stores containers as directories under a root directory.

    Parameters
    ----------
    root : base directory (created on first container creation)
    """

    root: Path

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    # ------------------------------------------------------------------ #
    # Containers                                                          #
    # ------------------------------------------------------------------ #

    async def container_exists(self, container: str) -> bool:
        return await self._run(lambda: self._container_dir(container).is_dir())

    async def create_container(self, container: str) -> None:
        await self._run(self._sync_create_container, container)

    async def delete_container(self, container: str) -> None:
        await self._run(self._sync_delete_container, container)

    async def list_containers(self) -> list[str]:
        return await self._run(self._sync_list_containers)

    # ------------------------------------------------------------------ #
    # Documents                                                           #
    # ------------------------------------------------------------------ #

    async def get_document(self, container: str, doc_id: str) -> Document | None:
        return await self._run(self._sync_get_document, container, doc_id)

    async def get_documents(
        self, container: str, doc_ids: Sequence[str]
    ) -> list[Document]:
        return await self._run(self._sync_get_documents, container, list(doc_ids))

    async def create_document(
        self,
        container: str,
        doc: Document,
        attachments: Sequence[Attachment] = (),
    ) -> str:
        return await self._run(
            self._sync_create_document, container, doc, list(attachments)
        )

    async def update_document(self, container: str, doc: Document) -> str:
        return await self._run(self._sync_update_document, container, doc)

    async def delete_document(self, container: str, doc_id: str, rev: str) -> None:
        await self._run(self._sync_delete_document, container, doc_id, rev)

    async def bulk_update(
        self, container: str, docs: Sequence[Document]
    ) -> list[BulkWriteResult]:
        return await self._run(self._sync_bulk_update, container, list(docs))

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
        return await self._run(
            self._sync_put_attachment, container, doc_id, rev, name, data, content_type
        )

    async def get_attachment(self, container: str, doc_id: str, name: str) -> bytes:
        return await self._run(self._sync_get_attachment, container, doc_id, name)

    # ------------------------------------------------------------------ #
    # Indexes                                                             #
    # ------------------------------------------------------------------ #

    async def define_indexes(
        self,
        container: str,
        group: str,
        definitions: Sequence[IndexDefinition],
    ) -> None:
        await self._run(self._sync_define_indexes, container, group, list(definitions))

    async def get_index_definitions(
        self, container: str, group: str
    ) -> list[IndexDefinition] | None:
        return await self._run(self._sync_get_index_definitions, container, group)

    async def query_index(
        self,
        container: str,
        group: str,
        index: str,
        *,
        limit: int | None = None,
        descending: bool = False,
    ) -> list[Document]:
        return await self._run(
            self._sync_query_index, container, group, index, limit, descending
        )

    async def count_index(self, container: str, group: str, index: str) -> int:
        return await self._run(self._sync_count_index, container, group, index)

    # ------------------------------------------------------------------ #
    # Synchronous implementations (executed in a thread-pool worker)      #
    # ------------------------------------------------------------------ #

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except StoreError:
            raise
        except (OSError, ValueError) as exc:
            raise StorageError("Filesystem store operation failed", exc) from exc

    def _container_dir(self, container: str) -> Path:
        return self.root / _fs_name(container)

    def _doc_path(self, cdir: Path, doc_id: str) -> Path:
        return cdir / "docs" / f"{_fs_name(doc_id)}.json"

    def _attachment_path(self, cdir: Path, doc_id: str, name: str) -> Path:
        return cdir / "attachments" / _fs_name(doc_id) / _fs_name(name)

    @contextlib.contextmanager
    def _locked(self, container: str, exclusive: bool) -> Iterator[Path]:
        cdir = self._container_dir(container)
        try:
            fd = os.open(str(cdir / ".lock"), os.O_RDWR | os.O_CREAT, 0o644)
        except FileNotFoundError as exc:
            raise DocumentNotFoundError(f"Container {container!r} does not exist") from exc
        try:
            fcntl.flock(fd, fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            yield cdir
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def _sync_create_container(self, container: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        cdir = self._container_dir(container)
        try:
            cdir.mkdir()
        except FileExistsError as exc:
            raise DocumentConflictError(f"Container {container!r} already exists") from exc
        for sub in ("docs", "attachments", "indexes"):
            (cdir / sub).mkdir()
        _write_json(cdir / "meta.json", {"seq": 0})
        logger.debug(f"Created container directory {cdir}")

    def _sync_delete_container(self, container: str) -> None:
        with self._locked(container, exclusive=True) as cdir:
            shutil.rmtree(cdir)

    def _sync_list_containers(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(unquote(p.name) for p in self.root.iterdir() if p.is_dir())

    def _load(self, cdir: Path, doc_id: str) -> dict[str, Any] | None:
        path = self._doc_path(cdir, doc_id)
        if not path.exists():
            return None
        return _read_json(path)

    def _sync_get_document(self, container: str, doc_id: str) -> Document | None:
        with self._locked(container, exclusive=False) as cdir:
            raw = self._load(cdir, doc_id)
        return None if raw is None else _to_document(doc_id, raw)

    def _sync_get_documents(self, container: str, doc_ids: list[str]) -> list[Document]:
        with self._locked(container, exclusive=False) as cdir:
            loaded = [(i, self._load(cdir, i)) for i in doc_ids]
        return [_to_document(i, raw) for i, raw in loaded if raw is not None]

    def _sync_create_document(
        self, container: str, doc: Document, attachments: list[Attachment]
    ) -> str:
        with self._locked(container, exclusive=True) as cdir:
            path = self._doc_path(cdir, doc.id)
            if path.exists():
                raise DocumentConflictError(f"Document {doc.id!r} already exists")
            meta = _read_json(cdir / "meta.json")
            meta["seq"] += 1
            for att in attachments:
                att_path = self._attachment_path(cdir, doc.id, att.name)
                att_path.parent.mkdir(parents=True, exist_ok=True)
                _write_bytes(att_path, att.data)
            raw = {
                "_seq": meta["seq"],
                "attachments": {att.name: att.content_type for att in attachments},
                "body": doc.body,
            }
            raw["_rev"] = _next_rev(None, raw)
            _write_json(path, raw)
            _write_json(cdir / "meta.json", meta)
            return raw["_rev"]

    def _update_locked(self, cdir: Path, doc: Document) -> str:
        raw = self._load(cdir, doc.id)
        if raw is None:
            raise DocumentNotFoundError(f"Document {doc.id!r} not found")
        if raw["_rev"] != doc.rev:
            raise DocumentConflictError(
                f"Revision mismatch for {doc.id!r}: expected {doc.rev!r}, got {raw['_rev']!r}"
            )
        raw["body"] = doc.body
        raw["_rev"] = _next_rev(raw["_rev"], raw)
        _write_json(self._doc_path(cdir, doc.id), raw)
        return raw["_rev"]

    def _sync_update_document(self, container: str, doc: Document) -> str:
        with self._locked(container, exclusive=True) as cdir:
            return self._update_locked(cdir, doc)

    def _sync_delete_document(self, container: str, doc_id: str, rev: str) -> None:
        with self._locked(container, exclusive=True) as cdir:
            raw = self._load(cdir, doc_id)
            if raw is None:
                raise DocumentNotFoundError(f"Document {doc_id!r} not found")
            if raw["_rev"] != rev:
                raise DocumentConflictError(
                    f"Revision mismatch for {doc_id!r}: expected {rev!r}, got {raw['_rev']!r}"
                )
            self._doc_path(cdir, doc_id).unlink()
            shutil.rmtree(cdir / "attachments" / _fs_name(doc_id), ignore_errors=True)

    def _sync_bulk_update(
        self, container: str, docs: list[Document]
    ) -> list[BulkWriteResult]:
        results: list[BulkWriteResult] = []
        with self._locked(container, exclusive=True) as cdir:
            for doc in docs:
                try:
                    results.append(
                        BulkWriteResult(id=doc.id, rev=self._update_locked(cdir, doc))
                    )
                except DocumentConflictError:
                    results.append(BulkWriteResult(id=doc.id, error="conflict"))
                except DocumentNotFoundError:
                    results.append(BulkWriteResult(id=doc.id, error="not_found"))
        return results

    def _sync_put_attachment(
        self,
        container: str,
        doc_id: str,
        rev: str,
        name: str,
        data: bytes,
        content_type: str,
    ) -> str:
        with self._locked(container, exclusive=True) as cdir:
            raw = self._load(cdir, doc_id)
            if raw is None:
                raise DocumentNotFoundError(f"Document {doc_id!r} not found")
            if raw["_rev"] != rev:
                raise DocumentConflictError(
                    f"Revision mismatch for {doc_id!r}: expected {rev!r}, got {raw['_rev']!r}"
                )
            path = self._attachment_path(cdir, doc_id, name)
            path.parent.mkdir(parents=True, exist_ok=True)
            _write_bytes(path, data)
            raw["attachments"][name] = content_type
            raw["_rev"] = _next_rev(raw["_rev"], raw)
            _write_json(self._doc_path(cdir, doc_id), raw)
            return raw["_rev"]

    def _sync_get_attachment(self, container: str, doc_id: str, name: str) -> bytes:
        with self._locked(container, exclusive=False) as cdir:
            path = self._attachment_path(cdir, doc_id, name)
            if not path.exists():
                raise DocumentNotFoundError(
                    f"Attachment {name!r} of document {doc_id!r} not found"
                )
            return path.read_bytes()

    def _sync_define_indexes(
        self, container: str, group: str, definitions: list[IndexDefinition]
    ) -> None:
        with self._locked(container, exclusive=True) as cdir:
            _write_json(
                cdir / "indexes" / f"{_fs_name(group)}.json",
                [d.model_dump() for d in definitions],
            )

    def _sync_get_index_definitions(
        self, container: str, group: str
    ) -> list[IndexDefinition] | None:
        with self._locked(container, exclusive=False) as cdir:
            path = cdir / "indexes" / f"{_fs_name(group)}.json"
            if not path.exists():
                return None
            return [IndexDefinition.model_validate(d) for d in _read_json(path)]

    def _select(
        self, cdir: Path, group: str, index: str
    ) -> tuple[IndexDefinition, list[tuple[str, dict[str, Any]]]]:
        path = cdir / "indexes" / f"{_fs_name(group)}.json"
        definitions = (
            [IndexDefinition.model_validate(d) for d in _read_json(path)]
            if path.exists()
            else []
        )
        definition = next((d for d in definitions if d.name == index), None)
        if definition is None:
            raise DocumentNotFoundError(f"Index {group}/{index} is not defined")
        rows = []
        for doc_path in (cdir / "docs").glob("*.json"):
            raw = _read_json(doc_path)
            if definition.selects(raw["body"]):
                rows.append((unquote(doc_path.name[: -len(".json")]), raw))
        return definition, rows

    def _sync_query_index(
        self,
        container: str,
        group: str,
        index: str,
        limit: int | None,
        descending: bool,
    ) -> list[Document]:
        with self._locked(container, exclusive=False) as cdir:
            definition, rows = self._select(cdir, group, index)

        def sort_key(row: tuple[str, dict[str, Any]]) -> tuple[bool, Any, int]:
            key = definition.key_of(row[1]["body"])
            return key is not None, key, row[1]["_seq"]

        rows.sort(key=sort_key, reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [_to_document(doc_id, raw) for doc_id, raw in rows]

    def _sync_count_index(self, container: str, group: str, index: str) -> int:
        with self._locked(container, exclusive=False) as cdir:
            _, rows = self._select(cdir, group, index)
        return len(rows)


def _fs_name(name: str) -> str:
    if not name:
        raise ValueError("Empty names cannot be stored")
    return quote(name, safe="").replace(".", "%2E")


def _to_document(doc_id: str, raw: dict[str, Any]) -> Document:
    return Document(id=doc_id, rev=raw["_rev"], body=raw["body"])


def _next_rev(current: str | None, raw: dict[str, Any]) -> str:
    generation = 1 if current is None else int(current.split("-", 1)[0]) + 1
    digest = hashlib.sha256()
    digest.update((current or "").encode("utf-8"))
    digest.update(json.dumps(raw, sort_keys=True, default=str).encode("utf-8"))
    return f"{generation}-{digest.hexdigest()[:32]}"


def _read_json(path: Path) -> Any:
    with open(path, "rb") as fh:
        return json.loads(fh.read())


def _write_json(path: Path, value: Any) -> None:
    _write_bytes(path, json.dumps(value, sort_keys=True).encode("utf-8"))


def _write_bytes(path: Path, data: bytes) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    with open(tmp, "wb") as fh:
        fh.write(data)
    os.replace(tmp, path)
