"""
Queue — SQS-style operations on one queue container.

Every send, receive, delete or visibility change is a short sequence of
store calls:

  send      create document {sent_at} with the payload attached, in one
            write, so a pending message always has its payload
  receive   query "pending" index (sent_at ascending, or descending for
            LIFO) → LockProtocol.lock_batch
  delete    LockProtocol.delete_message (CAS on the receipt token)
  extend    LockProtocol.change_visibility (returns a new receipt token)

Receives may return fewer messages than requested, either because fewer were
pending or because other consumers locked some of the candidates first. An
empty list is a normal outcome; call again to get more.

Ordering uses timestamps taken from each producer's local clock, so clock
skew between producers can reorder messages. FIFO vs LIFO is not enforced
anywhere: it is up to the callers to receive consistently.

Locks never expire by themselves: a message stays locked, and counted by
number_of_messages_not_visible(), until it is deleted.

Once the queue's container is gone, every operation that reads or writes it
raises NoSuchQueueError.
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import uuid
from collections.abc import Iterator, Sequence
from datetime import timedelta

from docrqs.core import codec
from docrqs.core.locking import LockProtocol
from docrqs.domain.documents import Attachment, Document, IndexDefinition
from docrqs.domain.errors import DocumentNotFoundError, NoSuchQueueError
from docrqs.domain.models import Message, MessageBody, MessageStatusInfo, utcnow
from docrqs.ports.store import DocumentStorePort

logger = logging.getLogger(__name__)

INDEX_GROUP = "docrqs"
PENDING_INDEX = "pending"
LOCKED_INDEX = "locked"

QUEUE_INDEXES: tuple[IndexDefinition, ...] = (
    IndexDefinition(name=PENDING_INDEX, field="lock", present=False, key="sent_at"),
    IndexDefinition(name=LOCKED_INDEX, field="lock", present=True, key="lock.locked_at"),
)

DEFAULT_VISIBILITY_TIMEOUT = timedelta(seconds=30)


@dataclasses.dataclass
class Queue:
    """
    Handle on a provisioned queue. Obtain one through QueueService.

    Parameters
    ----------
    store              : any DocumentStorePort implementation
    name               : queue (container) name
    process_id         : owner identifier written into the locks this handle takes
    visibility_timeout : default visibility timeout for receives
    """

    store: DocumentStorePort
    name: str
    process_id: str
    visibility_timeout: timedelta = DEFAULT_VISIBILITY_TIMEOUT

    _locks: LockProtocol = dataclasses.field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._locks = LockProtocol(
            store=self.store, container=self.name, process_id=self.process_id
        )

    # ------------------------------------------------------------------ #
    # Send                                                                #
    # ------------------------------------------------------------------ #

    async def send_message(self, data: bytes) -> str:
        """
        Add a message to the queue. Returns its id.

        The payload is stored as an opaque attachment; no parsing is done.
        """
        message_id = uuid.uuid4().hex
        doc = Document(id=message_id, body=codec.encode(MessageBody(sent_at=utcnow())))
        payload = Attachment(
            name=codec.ATTACHMENT_NAME, data=data, content_type=codec.CONTENT_TYPE
        )
        with self._queue_must_exist():
            await self.store.create_document(self.name, doc, [payload])
        logger.debug(f"Sent message {message_id} to {self.name} ({len(data)} bytes)")
        return message_id

    # ------------------------------------------------------------------ #
    # Receive                                                             #
    # ------------------------------------------------------------------ #

    async def receive_messages(
        self,
        max_number_of_messages: int,
        visibility_timeout: timedelta | None = None,
    ) -> list[Message]:
        """
        Lock and return up to `max_number_of_messages` from the head (FIFO).

        Returns only the messages whose lock was acquired. The list may be
        empty but is never None.
        """
        return await self._receive_pending(
            max_number_of_messages, visibility_timeout, descending=False
        )

    async def receive_messages_from_tail(
        self,
        max_number_of_messages: int,
        visibility_timeout: timedelta | None = None,
    ) -> list[Message]:
        """Like receive_messages, but from the tail (LIFO)."""
        return await self._receive_pending(
            max_number_of_messages, visibility_timeout, descending=True
        )

    async def receive_messages_by_id(
        self,
        message_ids: Sequence[str],
        visibility_timeout: timedelta | None = None,
    ) -> list[Message]:
        """
        Lock and return specific messages, bypassing the pending index.

        Unknown ids are skipped. The lock is attempted whatever the current
        state of each message, so this can take over a message that another
        process holds.
        """
        with self._queue_must_exist():
            docs = await self.store.get_documents(self.name, list(message_ids))
            return await self._locks.lock_batch(
                docs, self._timeout(visibility_timeout)
            )

    async def receive_message(
        self, visibility_timeout: timedelta | None = None
    ) -> Message | None:
        """Receive a single message from the head, or None if none was locked."""
        messages = await self.receive_messages(1, visibility_timeout)
        return messages[0] if messages else None

    async def receive_message_from_tail(
        self, visibility_timeout: timedelta | None = None
    ) -> Message | None:
        """Receive a single message from the tail, or None if none was locked."""
        messages = await self.receive_messages_from_tail(1, visibility_timeout)
        return messages[0] if messages else None

    async def receive_message_by_id(
        self, message_id: str, visibility_timeout: timedelta | None = None
    ) -> Message | None:
        """
        Lock one message by id.

        Returns None when another process wrote the message first.
        Raises NoSuchMessageError when there is no such message.
        """
        with self._queue_must_exist():
            return await self._locks.lock_single(
                message_id, self._timeout(visibility_timeout)
            )

    # ------------------------------------------------------------------ #
    # Delete / extend                                                     #
    # ------------------------------------------------------------------ #

    async def delete_message(self, message_id: str, receipt_token: str) -> None:
        """
        Delete a message. The caller must hold its current lock.

        Raises NoSuchMessageError or ReceiptTokenOutOfDateError.
        """
        await self._locks.delete_message(message_id, receipt_token)
        logger.debug(f"Deleted message {message_id} from {self.name}")

    async def change_message_visibility(
        self, message_id: str, receipt_token: str, extension: timedelta
    ) -> str:
        """
        Extend the visibility timeout of a held message by `extension`.

        Returns the new receipt token, which must be used for any later
        delete or extension.
        """
        with self._queue_must_exist():
            return await self._locks.change_visibility(
                message_id, receipt_token, extension
            )

    # ------------------------------------------------------------------ #
    # Inspection                                                          #
    # ------------------------------------------------------------------ #

    async def number_of_messages_pending(self) -> int:
        """Messages available for receiving."""
        with self._queue_must_exist():
            return await self.store.count_index(self.name, INDEX_GROUP, PENDING_INDEX)

    async def number_of_messages_not_visible(self) -> int:
        """Messages currently locked (received but not yet deleted)."""
        with self._queue_must_exist():
            return await self.store.count_index(self.name, INDEX_GROUP, LOCKED_INDEX)

    async def get_message_status(self, message_id: str) -> MessageStatusInfo:
        """Return PENDING, LOCKED or MISSING, with the details each state carries."""
        with self._queue_must_exist():
            doc = await self.store.get_document(self.name, message_id)
        if doc is None:
            return MessageStatusInfo.missing()
        body = codec.decode(doc)
        if body.lock is not None:
            return MessageStatusInfo.locked(body.lock)
        return MessageStatusInfo.pending(body.sent_at)

    # ------------------------------------------------------------------ #
    # Internals                                                           #
    # ------------------------------------------------------------------ #

    @contextlib.contextmanager
    def _queue_must_exist(self) -> Iterator[None]:
        # Missing documents surface as None or NoSuchMessageError, so a
        # DocumentNotFoundError here means the container or its indexes.
        try:
            yield
        except DocumentNotFoundError as exc:
            raise NoSuchQueueError(self.name) from exc

    def _timeout(self, visibility_timeout: timedelta | None) -> timedelta:
        return self.visibility_timeout if visibility_timeout is None else visibility_timeout

    async def _receive_pending(
        self,
        max_number_of_messages: int,
        visibility_timeout: timedelta | None,
        *,
        descending: bool,
    ) -> list[Message]:
        if max_number_of_messages < 1:
            raise ValueError(
                f"max_number_of_messages must be at least 1, got {max_number_of_messages}"
            )
        with self._queue_must_exist():
            candidates = await self.store.query_index(
                self.name,
                INDEX_GROUP,
                PENDING_INDEX,
                limit=max_number_of_messages,
                descending=descending,
            )
            return await self._locks.lock_batch(
                candidates, self._timeout(visibility_timeout)
            )

    def __str__(self) -> str:
        return f"Queue {self.name} ({self.process_id})"
