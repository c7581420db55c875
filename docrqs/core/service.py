"""
QueueService — create, look up, list and delete queues.

A queue is a store container holding the docrqs index group:

  pending  documents without a "lock" field, keyed by sent_at
  locked   documents with a "lock" field, keyed by lock.locked_at

A container is recognized as a queue only if that index group is installed
with exactly these definitions. Other containers are left alone: they are
never listed, returned or deleted as queues.

Usage
-----
    from docrqs import QueueService, InMemoryDocumentStore

    service = QueueService(InMemoryDocumentStore(), process_id="worker-1")
    queue = await service.get_or_create_queue("emails")
    message_id = await queue.send_message(b"hello")
"""

from __future__ import annotations

import dataclasses
import logging
import os
import socket
from datetime import timedelta

from docrqs.config import RQSConfig, create_store
from docrqs.core.queue import DEFAULT_VISIBILITY_TIMEOUT, INDEX_GROUP, QUEUE_INDEXES, Queue
from docrqs.domain.errors import (
    DocumentConflictError,
    NoSuchQueueError,
    QueueNameAlreadyTakenError,
)
from docrqs.ports.store import DocumentStorePort

logger = logging.getLogger(__name__)


def default_process_id() -> str:
    """A process-unique owner name: "<pid>@<hostname>"."""
    return f"{os.getpid()}@{socket.gethostname()}"


@dataclasses.dataclass
class QueueService:
    """
    Queue catalog on top of one document store.

    Parameters
    ----------
    store              : any DocumentStorePort implementation
    process_id         : owner identifier handed to every Queue this service
                         returns (default: default_process_id())
    visibility_timeout : default visibility timeout of the returned queues
    """

    store: DocumentStorePort
    process_id: str | None = None
    visibility_timeout: timedelta = DEFAULT_VISIBILITY_TIMEOUT

    def __post_init__(self) -> None:
        if self.process_id is None:
            self.process_id = default_process_id()

    @classmethod
    def from_config(cls, config: RQSConfig) -> QueueService:
        """Build a service and its store from configuration."""
        return cls(
            store=create_store(config),
            process_id=config.process_id,
            visibility_timeout=timedelta(milliseconds=config.visibility_timeout_ms),
        )

    # ------------------------------------------------------------------ #
    # Lookup                                                              #
    # ------------------------------------------------------------------ #

    async def is_queue(self, queue_name: str) -> bool:
        """True iff a container with this name exists and carries the queue indexes."""
        if not await self.store.container_exists(queue_name):
            return False
        definitions = await self.store.get_index_definitions(queue_name, INDEX_GROUP)
        return definitions is not None and tuple(definitions) == QUEUE_INDEXES

    async def get_queue(self, queue_name: str) -> Queue:
        """
        Return a handle on an existing queue.

        Raises NoSuchQueueError if there is no queue with that name.
        """
        if not await self.is_queue(queue_name):
            raise NoSuchQueueError(queue_name)
        return self._handle(queue_name)

    async def create_queue(self, queue_name: str) -> Queue:
        """
        Provision a new queue.

        Raises QueueNameAlreadyTakenError if any container with that name
        already exists, queue or not.
        """
        if await self.store.container_exists(queue_name):
            raise QueueNameAlreadyTakenError(queue_name)
        try:
            await self.store.create_container(queue_name)
        except DocumentConflictError as exc:
            raise QueueNameAlreadyTakenError(queue_name) from exc
        await self.store.define_indexes(queue_name, INDEX_GROUP, QUEUE_INDEXES)
        logger.info(f"Created queue {queue_name}")
        return self._handle(queue_name)

    async def get_or_create_queue(self, queue_name: str) -> Queue:
        """
        Return the queue with this name, creating it if no container exists.

        Raises QueueNameAlreadyTakenError if a container with that name exists
        but is not a queue.
        """
        if not await self.store.container_exists(queue_name):
            return await self.create_queue(queue_name)
        if await self.is_queue(queue_name):
            return self._handle(queue_name)
        raise QueueNameAlreadyTakenError(queue_name, "existing container is not a queue")

    async def list_queues(self) -> list[str]:
        """
        Names of all queues in the store.

        Checks every container separately, so this is slow on stores with
        many containers.
        """
        return [
            name
            for name in await self.store.list_containers()
            if await self.is_queue(name)
        ]

    async def delete_queue(self, queue_name: str) -> bool:
        """
        Delete a queue and all its messages. Irreversible.

        Containers that are not queues are never deleted. Returns True iff a
        queue was found and deleted.
        """
        if not await self.is_queue(queue_name):
            return False
        await self.store.delete_container(queue_name)
        logger.info(f"Deleted queue {queue_name}")
        return True

    def _handle(self, queue_name: str) -> Queue:
        return Queue(
            store=self.store,
            name=queue_name,
            process_id=self.process_id,  # type: ignore[arg-type]
            visibility_timeout=self.visibility_timeout,
        )

    def __str__(self) -> str:
        return f"QueueService on {self.store!r}"
