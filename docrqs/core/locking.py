"""
LockProtocol — acquire, validate and release message locks with CAS writes only.

There is no lock manager. Ownership of a message is the presence of a "lock"
field in its document, and the only arbitration between competing processes
is the store's revision check:

  lock_single   read → attach lock → update with expected rev
                conflict  → not acquired (None), never an error
  lock_batch    attach lock to every candidate → one bulk write
                only candidates whose write succeeded are returned;
                losers are dropped silently and never retried here
  no payload    a winner whose attachment is missing is unlocked again
                at its new rev and dropped, so it never stays held
  delete        delete with expected rev = receipt token
                not found → NoSuchMessageError
                conflict  → ReceiptTokenOutOfDateError
  extend        read → compare rev with receipt token → add to the
                lock's visibility timeout → update with expected rev
                returns the new rev, which replaces the receipt token

Every successful write changes the revision, so a receipt token goes stale
the moment anybody else writes the message.

Nothing here retries. Callers that want more messages re-query.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from datetime import timedelta

from docrqs.core import codec
from docrqs.domain.documents import Document
from docrqs.domain.errors import (
    DocumentConflictError,
    DocumentNotFoundError,
    MessageNotLockedError,
    NoSuchMessageError,
    ReceiptTokenOutOfDateError,
)
from docrqs.domain.models import Lock, Message, utcnow
from docrqs.ports.store import DocumentStorePort

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class LockProtocol:
    """
    Lock operations for the messages of one container.

    Parameters
    ----------
    store      : any DocumentStorePort implementation
    container  : the container holding the queue's messages
    process_id : owner identifier written into every lock
    """

    store: DocumentStorePort
    container: str
    process_id: str

    def create_lock(self, visibility_timeout: timedelta) -> Lock:
        """Build a lock owned by this process, acquired now."""
        return Lock(
            locked_by=self.process_id,
            locked_at=utcnow(),
            visibility_timeout=visibility_timeout,
        )

    # ------------------------------------------------------------------ #
    # Acquisition                                                         #
    # ------------------------------------------------------------------ #

    async def lock_single(
        self, message_id: str, visibility_timeout: timedelta
    ) -> Message | None:
        """
        Lock one message by id.

        Returns the locked Message (new receipt token, payload attached), or
        None if another process wrote the message first or its payload is
        missing.

        Raises
        ------
        NoSuchMessageError  if the message does not exist
        """
        doc = await self.store.get_document(self.container, message_id)
        if doc is None:
            raise NoSuchMessageError(message_id)
        locked = codec.with_lock(doc, self.create_lock(visibility_timeout))
        try:
            rev = await self.store.update_document(self.container, locked)
        except DocumentConflictError:
            logger.debug(f"Lost lock race for message {message_id}")
            return None
        except DocumentNotFoundError as exc:
            raise NoSuchMessageError(message_id) from exc
        locked = locked.with_rev(rev)
        data = await self._payload_or_release(locked)
        if data is None:
            return None
        return codec.to_message(locked, data)

    async def lock_batch(
        self, candidates: Sequence[Document], visibility_timeout: timedelta
    ) -> list[Message]:
        """
        Try to lock every candidate in one bulk write.

        Returns the Messages that were actually locked, in candidate order,
        each with its new receipt token and payload. Candidates that lost the
        race are dropped, and so are winners without a payload, after their
        lock is released. An empty candidate list issues no store call.
        """
        if not candidates:
            return []
        lock = self.create_lock(visibility_timeout)
        locked = [codec.with_lock(doc, lock) for doc in candidates]
        results = await self.store.bulk_update(self.container, locked)

        by_id = {doc.id: doc for doc in locked}
        messages: list[Message] = []
        for result in results:
            if not result.ok:
                logger.debug(f"Lost lock race for message {result.id}: {result.error}")
                continue
            doc = by_id[result.id].with_rev(result.rev)  # type: ignore[arg-type]
            data = await self._payload_or_release(doc)
            if data is not None:
                messages.append(codec.to_message(doc, data))
        logger.debug(
            f"Locked {len(messages)} of {len(candidates)} candidates in {self.container}"
        )
        return messages

    async def fetch_payload(self, message_id: str) -> bytes:
        """Read the opaque payload of a message."""
        try:
            return await self.store.get_attachment(
                self.container, message_id, codec.ATTACHMENT_NAME
            )
        except DocumentNotFoundError as exc:
            raise NoSuchMessageError(message_id) from exc

    async def _payload_or_release(self, doc: Document) -> bytes | None:
        """Payload of a document this process just locked, or None after unlocking it."""
        try:
            return await self.fetch_payload(doc.id)
        except NoSuchMessageError:
            pass
        logger.warning(f"Message {doc.id} in {self.container} has no payload, unlocking")
        try:
            await self.store.update_document(self.container, codec.with_lock(doc, None))
        except (DocumentConflictError, DocumentNotFoundError) as exc:
            logger.debug(f"Could not unlock message {doc.id}: {exc}")
        return None

    # ------------------------------------------------------------------ #
    # Release and extension                                               #
    # ------------------------------------------------------------------ #

    async def delete_message(self, message_id: str, receipt_token: str) -> None:
        """
        Delete a message the caller holds.

        Raises
        ------
        NoSuchMessageError          the message does not exist
        ReceiptTokenOutOfDateError  the message was written since the token was issued
        StorageError                any other store failure
        """
        try:
            await self.store.delete_document(self.container, message_id, receipt_token)
        except DocumentNotFoundError as exc:
            raise NoSuchMessageError(message_id) from exc
        except DocumentConflictError as exc:
            raise ReceiptTokenOutOfDateError(message_id) from exc

    async def change_visibility(
        self, message_id: str, receipt_token: str, extension: timedelta
    ) -> str:
        """
        Extend the visibility timeout of a message the caller holds.

        Returns the new receipt token; the one passed in is no longer valid.

        Raises
        ------
        NoSuchMessageError          the message does not exist
        ReceiptTokenOutOfDateError  the token does not match the current revision
        MessageNotLockedError       the message carries no lock
        """
        doc = await self.store.get_document(self.container, message_id)
        if doc is None:
            raise NoSuchMessageError(message_id)
        if doc.rev != receipt_token:
            raise ReceiptTokenOutOfDateError(message_id)
        lock = codec.decode(doc).lock
        if lock is None:
            raise MessageNotLockedError(message_id)
        try:
            return await self.store.update_document(
                self.container, codec.with_lock(doc, lock.extended_by(extension))
            )
        except DocumentConflictError as exc:
            raise ReceiptTokenOutOfDateError(message_id) from exc
        except DocumentNotFoundError as exc:
            raise NoSuchMessageError(message_id) from exc
