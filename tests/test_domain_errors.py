import pytest

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


def test_rqs_error_is_exception():
    err = RQSError("test message")
    assert isinstance(err, Exception)
    assert str(err) == "test message"


def test_no_such_queue_stores_queue_name():
    err = NoSuchQueueError("emails")
    assert isinstance(err, RQSError)
    assert err.queue_name == "emails"
    assert "emails" in str(err)


def test_queue_name_taken_default_reason():
    err = QueueNameAlreadyTakenError("emails")
    assert err.queue_name == "emails"
    assert "already exists" in str(err)


def test_queue_name_taken_custom_reason():
    err = QueueNameAlreadyTakenError("emails", "existing container is not a queue")
    assert "not a queue" in str(err)


@pytest.mark.parametrize(
    "cls", [NoSuchMessageError, ReceiptTokenOutOfDateError, MessageNotLockedError]
)
def test_message_errors_store_message_id(cls):
    err = cls("msg-1")
    assert isinstance(err, RQSError)
    assert err.message_id == "msg-1"
    assert "msg-1" in str(err)


def test_store_errors_share_base():
    assert issubclass(DocumentConflictError, StoreError)
    assert issubclass(DocumentNotFoundError, StoreError)
    assert issubclass(StorageError, StoreError)
    assert issubclass(StoreError, RQSError)


def test_queue_errors_are_not_store_errors():
    assert not issubclass(NoSuchMessageError, StoreError)
    assert not issubclass(ReceiptTokenOutOfDateError, StoreError)


def test_storage_error_stores_cause_and_message():
    cause = OSError("disk full")
    err = StorageError("write failed", cause)
    assert err.cause is cause
    assert "write failed" in str(err)
    assert "disk full" in str(err)


def test_storage_error_can_be_raised_and_caught_as_rqs_error():
    with pytest.raises(RQSError):
        raise StorageError("oops", RuntimeError("inner"))
