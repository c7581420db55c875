"""
CouchDBDocumentStore — CouchDB adapter over the HTTP API using httpx.

Install extras: pip install "docrqs[couchdb]"

CAS semantics
-------------
CouchDB is natively revisioned: every document carries a `_rev`, every
successful write returns a new one, and writes carrying a stale `_rev` are
rejected.

  create  → PUT /{db}/{id}, attachments inline         409 → DocumentConflictError
  update  → PUT /{db}/{id} with "_rev" in the body   409 → DocumentConflictError
  delete  → DELETE /{db}/{id}?rev=...                404 → DocumentNotFoundError
                                                     409 → DocumentConflictError
  bulk    → POST /{db}/_bulk_docs                    per-document {"error": "conflict"}

Indexes
-------
An index group is a design document `_design/{group}`. Each IndexDefinition
becomes a view whose map function emits the key for selected documents, e.g.

    function(doc) { if(!doc.lock) emit(doc.sent_at, null); }

The definitions themselves are also stored in the design document under
"index_definitions" so they can be read back and compared. Counting uses
limit=0, which returns total_rows without any rows.

Attachment stubs
----------------
CouchDB drops attachments that are missing from a replacing PUT. Document
bodies returned by this adapter therefore keep the "_attachments" stubs, and
callers must carry them through unchanged when writing the document back.
"""

from __future__ import annotations

import base64
import dataclasses
import logging
from collections.abc import Sequence
from types import TracebackType
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

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
)

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

_DEFINITIONS_FIELD = "index_definitions"


def _import_httpx() -> Any:
    try:
        import httpx
    except ImportError as exc:
        raise ImportError(
            "CouchDBDocumentStore requires httpx. "
            "Install with: pip install 'docrqs[couchdb]'"
        ) from exc
    return httpx


def _q(name: str) -> str:
    return quote(name, safe="")


def _map_function(definition: IndexDefinition) -> str:
    test = f"doc.{definition.field}"
    if not definition.present:
        test = f"!{test}"
    return f"function(doc) {{ if({test}) emit(doc.{definition.key}, null); }}"


def _to_document(raw: dict[str, Any]) -> Document:
    body = {k: v for k, v in raw.items() if k not in ("_id", "_rev")}
    return Document(id=raw["_id"], rev=raw["_rev"], body=body)


@dataclasses.dataclass
class CouchDBDocumentStore:
    """
    CouchDB server adapter.

    Parameters
    ----------
    url      : server base URL
    username : optional basic-auth user
    password : optional basic-auth password
    timeout  : per-request timeout in seconds
    client   : httpx.AsyncClient — created lazily if omitted
    """

    url: str = "http://localhost:5984"
    username: str | None = None
    password: str | None = None
    timeout: float = 30.0
    client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            httpx = _import_httpx()
            auth = None
            if self.username is not None:
                auth = httpx.BasicAuth(self.username, self.password or "")
            self.client = httpx.AsyncClient(
                base_url=self.url.rstrip("/"), auth=auth, timeout=self.timeout
            )
        return self.client

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def __aenter__(self) -> CouchDBDocumentStore:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Issue one request and classify the outcome.

        404 → DocumentNotFoundError, 409/412 → DocumentConflictError, any other
        HTTP or transport failure → StorageError.
        """
        client = self._get_client()
        logger.debug(f"CouchDB {method} {path}")
        try:
            response = await client.request(method, path, **kwargs)
        except Exception as exc:
            raise StorageError(f"CouchDB {method} {path} failed", exc) from exc
        if response.status_code == 404:
            raise DocumentNotFoundError(f"CouchDB {method} {path}: not found")
        if response.status_code in (409, 412):
            raise DocumentConflictError(f"CouchDB {method} {path}: conflict")
        try:
            response.raise_for_status()
        except Exception as exc:
            raise StorageError(f"CouchDB {method} {path} failed", exc) from exc
        return response

    # ------------------------------------------------------------------ #
    # Containers                                                          #
    # ------------------------------------------------------------------ #

    async def container_exists(self, container: str) -> bool:
        try:
            await self._request("HEAD", f"/{_q(container)}")
        except DocumentNotFoundError:
            return False
        return True

    async def create_container(self, container: str) -> None:
        await self._request("PUT", f"/{_q(container)}")

    async def delete_container(self, container: str) -> None:
        await self._request("DELETE", f"/{_q(container)}")

    async def list_containers(self) -> list[str]:
        response = await self._request("GET", "/_all_dbs")
        return [name for name in response.json() if not name.startswith("_")]

    # ------------------------------------------------------------------ #
    # Documents                                                           #
    # ------------------------------------------------------------------ #

    async def get_document(self, container: str, doc_id: str) -> Document | None:
        try:
            response = await self._request("GET", f"/{_q(container)}/{_q(doc_id)}")
        except DocumentNotFoundError:
            return None
        return _to_document(response.json())

    async def get_documents(
        self, container: str, doc_ids: Sequence[str]
    ) -> list[Document]:
        if not doc_ids:
            return []
        response = await self._request(
            "POST",
            f"/{_q(container)}/_all_docs",
            params={"include_docs": "true"},
            json={"keys": list(doc_ids)},
        )
        return [
            _to_document(row["doc"])
            for row in response.json()["rows"]
            if row.get("doc") is not None
        ]

    async def create_document(
        self,
        container: str,
        doc: Document,
        attachments: Sequence[Attachment] = (),
    ) -> str:
        body = dict(doc.body)
        if attachments:
            body["_attachments"] = {
                att.name: {
                    "content_type": att.content_type,
                    "data": base64.b64encode(att.data).decode("ascii"),
                }
                for att in attachments
            }
        response = await self._request(
            "PUT", f"/{_q(container)}/{_q(doc.id)}", json=body
        )
        return str(response.json()["rev"])

    async def update_document(self, container: str, doc: Document) -> str:
        response = await self._request(
            "PUT",
            f"/{_q(container)}/{_q(doc.id)}",
            json={**doc.body, "_rev": doc.rev},
        )
        return str(response.json()["rev"])

    async def delete_document(self, container: str, doc_id: str, rev: str) -> None:
        await self._request(
            "DELETE", f"/{_q(container)}/{_q(doc_id)}", params={"rev": rev}
        )

    async def bulk_update(
        self, container: str, docs: Sequence[Document]
    ) -> list[BulkWriteResult]:
        if not docs:
            return []
        payload = [{**d.body, "_id": d.id, "_rev": d.rev} for d in docs]
        response = await self._request(
            "POST", f"/{_q(container)}/_bulk_docs", json={"docs": payload}
        )
        return [
            BulkWriteResult(id=row["id"], rev=row.get("rev"), error=row.get("error"))
            for row in response.json()
        ]

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
        response = await self._request(
            "PUT",
            f"/{_q(container)}/{_q(doc_id)}/{_q(name)}",
            params={"rev": rev},
            content=data,
            headers={"Content-Type": content_type},
        )
        return str(response.json()["rev"])

    async def get_attachment(self, container: str, doc_id: str, name: str) -> bytes:
        response = await self._request(
            "GET", f"/{_q(container)}/{_q(doc_id)}/{_q(name)}"
        )
        return response.content

    # ------------------------------------------------------------------ #
    # Indexes                                                             #
    # ------------------------------------------------------------------ #

    async def define_indexes(
        self,
        container: str,
        group: str,
        definitions: Sequence[IndexDefinition],
    ) -> None:
        path = f"/{_q(container)}/_design/{_q(group)}"
        design: dict[str, Any] = {
            "language": "javascript",
            "views": {d.name: {"map": _map_function(d)} for d in definitions},
            _DEFINITIONS_FIELD: [d.model_dump() for d in definitions],
        }
        try:
            existing = await self._request("GET", path)
            design["_rev"] = existing.json()["_rev"]
        except DocumentNotFoundError:
            pass
        await self._request("PUT", path, json=design)

    async def get_index_definitions(
        self, container: str, group: str
    ) -> list[IndexDefinition] | None:
        try:
            response = await self._request(
                "GET", f"/{_q(container)}/_design/{_q(group)}"
            )
        except DocumentNotFoundError:
            return None
        try:
            return [
                IndexDefinition.model_validate(d)
                for d in response.json().get(_DEFINITIONS_FIELD, [])
            ]
        except ValueError as exc:
            raise StorageError(f"Malformed design document _design/{group}", exc) from exc

    async def query_index(
        self,
        container: str,
        group: str,
        index: str,
        *,
        limit: int | None = None,
        descending: bool = False,
    ) -> list[Document]:
        params = {"include_docs": "true"}
        if limit is not None:
            params["limit"] = str(limit)
        if descending:
            params["descending"] = "true"
        response = await self._request(
            "GET",
            f"/{_q(container)}/_design/{_q(group)}/_view/{_q(index)}",
            params=params,
        )
        return [_to_document(row["doc"]) for row in response.json()["rows"]]

    async def count_index(self, container: str, group: str, index: str) -> int:
        response = await self._request(
            "GET",
            f"/{_q(container)}/_design/{_q(group)}/_view/{_q(index)}",
            params={"limit": "0"},
        )
        return int(response.json()["total_rows"])

