"""
Exception hierarchy for docrqs.

RQSError
├── NoSuchQueueError            — name does not resolve to a provisioned queue
├── QueueNameAlreadyTakenError  — container with that name already exists
├── NoSuchMessageError          — message absent at mutation time
├── ReceiptTokenOutOfDateError  — caller's receipt token is no longer current
├── MessageNotLockedError       — visibility change on a message nobody holds
└── StoreError                  — raised by document store adapters
    ├── DocumentConflictError   — CAS write rejected (revision mismatch / id taken)
    ├── DocumentNotFoundError   — document or container does not exist
    └── StorageError            — any other I/O failure (wraps original exception)

Adapters only raise StoreError subclasses. The lock protocol translates the
first two into the queue-level errors above; StorageError propagates as is.
"""

from __future__ import annotations


class RQSError(Exception):
    """Base class for all docrqs exceptions."""


class NoSuchQueueError(RQSError):
    """Raised when a queue name does not resolve to a provisioned container."""

    def __init__(self, queue_name: str) -> None:
        self.queue_name = queue_name
        super().__init__(f"Queue not found: {queue_name!r}")


class QueueNameAlreadyTakenError(RQSError):
    """
    Raised when a queue cannot be created because its name is in use.

    The caller can pick another name, use the existing queue, or (when it is
    safe to do so) delete the existing queue and create it again.
    """

    def __init__(self, queue_name: str, reason: str = "container already exists") -> None:
        self.queue_name = queue_name
        super().__init__(f"Queue name {queue_name!r} is taken: {reason}")


class NoSuchMessageError(RQSError):
    """Raised when the target message is not present in the queue."""

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"The queue has no message with id {message_id!r}")


class ReceiptTokenOutOfDateError(RQSError):
    """
    Raised when a receipt token no longer matches the message revision.

    Usually this means the message was re-locked or deleted by another
    process after the caller received it.
    """

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(
            f"Receipt token for message {message_id!r} is out of date; "
            "the message was modified by another process"
        )


class MessageNotLockedError(RQSError):
    """Raised when changing the visibility of a message that carries no lock."""

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"Message {message_id!r} is not locked")


class StoreError(RQSError):
    """Base class for errors reported by a document store adapter."""


class DocumentConflictError(StoreError):
    """
    Raised when a conditional write is rejected by the document store.

    This is the normal concurrency signal: somebody else wrote first.
    """


class DocumentNotFoundError(StoreError):
    """Raised when a document, attachment or container does not exist."""


class StorageError(StoreError):
    """
    Wraps an underlying I/O failure from a store adapter.

    Attributes
    ----------
    cause : Exception
        The original exception from the storage backend.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")
