"""
docrqs — SQS-style message queues on a revisioned document store.

Every message is one document in a queue container. A consumer takes a
message by writing a lock record into it with a compare-and-swap (CAS)
update: the write only succeeds if the document revision is still the one
the consumer read. The new revision becomes the receipt token needed to
delete the message or extend its visibility timeout.

There is no lock manager and no in-process coordination. Competing
consumers are arbitrated by the store's revision check alone, and a
consumer that loses a race simply does not get that message.

Quick start
-----------
    import asyncio
    from datetime import timedelta
    from docrqs import QueueService, VisibilityExtender
    from docrqs.adapters.store.memory import InMemoryDocumentStore

    async def main():
        service = QueueService(InMemoryDocumentStore(), process_id="worker-1")
        queue = await service.get_or_create_queue("emails")

        # Produce
        await queue.send_message(b'{"to": "user@example.com"}')

        # Consume
        for message in await queue.receive_messages(10):
            async with VisibilityExtender(queue, message, timedelta(seconds=30)) as ext:
                print(f"Processing {message.message_id}: {message.data!r}")
            await queue.delete_message(message.message_id, ext.receipt_token)

    asyncio.run(main())

Visibility timeouts are recorded but never enforced: a received message
stays locked until it is deleted.

Store adapters
--------------
Built-in adapters (no extra deps):
  - InMemoryDocumentStore         — for tests and examples
  - LocalFileSystemDocumentStore  — POSIX single-machine (fcntl.flock)

Optional adapters (install extras):
  - CouchDBDocumentStore  (pip install "docrqs[couchdb]")

Custom adapters implement DocumentStorePort: containers, documents with
revision-checked writes, a partial-failure bulk write, attachments, and
named secondary indexes.

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — pure value types (Message, Lock, Document, errors)
  ports/    — Protocol interfaces (DocumentStorePort)
  core/     — business logic (LockProtocol, Queue, QueueService)
  adapters/ — concrete document store implementations
"""

from __future__ import annotations

from docrqs.adapters.store.filesystem import LocalFileSystemDocumentStore
from docrqs.adapters.store.memory import InMemoryDocumentStore
from docrqs.config import RQSConfig, create_store
from docrqs.core.extender import VisibilityExtender
from docrqs.core.queue import Queue
from docrqs.core.service import QueueService, default_process_id
from docrqs.domain.documents import (
    Attachment,
    BulkWriteResult,
    Document,
    IndexDefinition,
)
from docrqs.domain.errors import (
    DocumentConflictError,
    DocumentNotFoundError,
    MessageNotLockedError,
    NoSuchMessageError,
    NoSuchQueueError,
    QueueNameAlreadyTakenError,
    ReceiptTokenOutOfDateError,
    RQSError,
    StorageError,
    StoreError,
)
from docrqs.domain.models import Lock, Message, MessageStatus, MessageStatusInfo
from docrqs.ports.store import DocumentStorePort

__all__ = [
    # Domain models
    "Lock",
    "Message",
    "MessageStatus",
    "MessageStatusInfo",
    "Document",
    "Attachment",
    "BulkWriteResult",
    "IndexDefinition",
    # Errors
    "RQSError",
    "NoSuchQueueError",
    "QueueNameAlreadyTakenError",
    "NoSuchMessageError",
    "ReceiptTokenOutOfDateError",
    "MessageNotLockedError",
    "StoreError",
    "DocumentConflictError",
    "DocumentNotFoundError",
    "StorageError",
    # Port (for typing custom adapters)
    "DocumentStorePort",
    # High-level queue API
    "Queue",
    "QueueService",
    "VisibilityExtender",
    "default_process_id",
    # Configuration
    "RQSConfig",
    "create_store",
    # Built-in store adapters
    "InMemoryDocumentStore",
    "LocalFileSystemDocumentStore",
]
