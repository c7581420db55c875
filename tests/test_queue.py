import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest

from docrqs.core import codec
from docrqs.core import queue as queue_module
from docrqs.core.queue import DEFAULT_VISIBILITY_TIMEOUT, Queue
from docrqs.domain.documents import Document
from docrqs.domain.errors import (
    MessageNotLockedError,
    NoSuchMessageError,
    NoSuchQueueError,
    ReceiptTokenOutOfDateError,
)
from docrqs.domain.models import MessageBody, MessageStatus, from_millis

VT = timedelta(seconds=30)

# Runs against every local store adapter via the `store` fixture in conftest.py.

# ---------------------------------------------------------------------------
# send / receive / delete round trip
# ---------------------------------------------------------------------------


async def test_send_receive_delete_round_trip(queue: Queue) -> None:
    message_id = await queue.send_message(b"\x00binary\xff")

    [msg] = await queue.receive_messages(1, VT)
    assert msg.message_id == message_id
    assert msg.data == b"\x00binary\xff"
    assert msg.visibility_timeout == VT

    await queue.delete_message(msg.message_id, msg.receipt_token)
    status = await queue.get_message_status(message_id)
    assert status.status == MessageStatus.MISSING


async def test_send_returns_unique_ids(queue: Queue) -> None:
    ids = {await queue.send_message(b"x") for _ in range(5)}
    assert len(ids) == 5


async def test_sent_message_has_payload_before_any_receive(queue: Queue) -> None:
    message_id = await queue.send_message(b"ready")
    data = await queue.store.get_attachment(queue.name, message_id, codec.ATTACHMENT_NAME)
    assert data == b"ready"


async def test_receive_from_empty_queue_returns_empty_list(queue: Queue) -> None:
    assert await queue.receive_messages(10) == []
    assert await queue.receive_message() is None
    assert await queue.receive_message_from_tail() is None


async def test_receive_rejects_non_positive_count(queue: Queue) -> None:
    with pytest.raises(ValueError):
        await queue.receive_messages(0)


async def test_receive_uses_queue_default_timeout(queue: Queue) -> None:
    await queue.send_message(b"x")
    msg = await queue.receive_message()
    assert msg.visibility_timeout == DEFAULT_VISIBILITY_TIMEOUT


async def test_received_message_is_owned_by_receiver(queue: Queue) -> None:
    await queue.send_message(b"x")
    msg = await queue.receive_message(VT)
    assert msg.lock.locked_by == queue.process_id


# ---------------------------------------------------------------------------
# Lock exclusivity
# ---------------------------------------------------------------------------


async def test_locked_message_is_not_received_again(queue: Queue, rival: Queue) -> None:
    await queue.send_message(b"x")
    assert await queue.receive_message(VT) is not None
    assert await rival.receive_message(VT) is None


async def test_concurrent_receivers_never_share_a_message(queue: Queue) -> None:
    for n in range(10):
        await queue.send_message(str(n).encode())
    consumers = [
        Queue(store=queue.store, name=queue.name, process_id=f"c{i}") for i in range(5)
    ]

    batches = await asyncio.gather(*(c.receive_messages(10, VT) for c in consumers))

    received = [m.message_id for batch in batches for m in batch]
    assert len(received) == len(set(received))
    assert await queue.number_of_messages_not_visible() == len(received)


async def test_by_id_can_take_over_a_held_message(queue: Queue, rival: Queue) -> None:
    message_id = await queue.send_message(b"x")
    held = await queue.receive_message(VT)

    [taken] = await rival.receive_messages_by_id([message_id], VT)
    assert taken.lock.locked_by == rival.process_id

    with pytest.raises(ReceiptTokenOutOfDateError):
        await queue.delete_message(message_id, held.receipt_token)


# ---------------------------------------------------------------------------
# Stale token rejection
# ---------------------------------------------------------------------------


async def test_stale_token_rejected_after_extension(queue: Queue) -> None:
    await queue.send_message(b"x")
    msg = await queue.receive_message(VT)
    new_token = await queue.change_message_visibility(
        msg.message_id, msg.receipt_token, timedelta(seconds=5)
    )

    with pytest.raises(ReceiptTokenOutOfDateError):
        await queue.delete_message(msg.message_id, msg.receipt_token)
    await queue.delete_message(msg.message_id, new_token)


async def test_delete_twice_raises_no_such_message(queue: Queue) -> None:
    await queue.send_message(b"x")
    msg = await queue.receive_message(VT)
    await queue.delete_message(msg.message_id, msg.receipt_token)
    with pytest.raises(NoSuchMessageError):
        await queue.delete_message(msg.message_id, msg.receipt_token)


# ---------------------------------------------------------------------------
# Visibility extension
# ---------------------------------------------------------------------------


async def test_extension_adds_to_visibility_timeout(queue: Queue) -> None:
    message_id = await queue.send_message(b"x")
    msg = await queue.receive_message(VT)
    await queue.change_message_visibility(message_id, msg.receipt_token, timedelta(seconds=45))

    status = await queue.get_message_status(message_id)
    assert status.visibility_timeout == VT + timedelta(seconds=45)
    assert status.locked_at == msg.lock.locked_at


async def test_extension_of_pending_message_is_rejected(queue: Queue) -> None:
    message_id = await queue.send_message(b"x")
    doc = await queue.store.get_document(queue.name, message_id)
    with pytest.raises(MessageNotLockedError):
        await queue.change_message_visibility(message_id, doc.rev, VT)


async def test_extension_of_missing_message_raises(queue: Queue) -> None:
    with pytest.raises(NoSuchMessageError):
        await queue.change_message_visibility("nope", "1-x", VT)


# ---------------------------------------------------------------------------
# Status and counts
# ---------------------------------------------------------------------------


async def test_status_transitions(queue: Queue) -> None:
    message_id = await queue.send_message(b"x")

    pending = await queue.get_message_status(message_id)
    assert pending.status == MessageStatus.PENDING
    assert pending.sent_at is not None

    msg = await queue.receive_message(VT)
    locked = await queue.get_message_status(message_id)
    assert locked.status == MessageStatus.LOCKED
    assert locked.locked_by == queue.process_id
    assert locked.visibility_timeout == VT

    await queue.delete_message(message_id, msg.receipt_token)
    missing = await queue.get_message_status(message_id)
    assert missing.status == MessageStatus.MISSING


async def test_counts_follow_lifecycle(queue: Queue) -> None:
    for _ in range(3):
        await queue.send_message(b"x")
    assert await queue.number_of_messages_pending() == 3
    assert await queue.number_of_messages_not_visible() == 0

    [msg] = await queue.receive_messages(1, VT)
    assert await queue.number_of_messages_pending() == 2
    assert await queue.number_of_messages_not_visible() == 1

    await queue.delete_message(msg.message_id, msg.receipt_token)
    assert await queue.number_of_messages_pending() == 2
    assert await queue.number_of_messages_not_visible() == 0


async def test_expired_lock_is_never_released(queue: Queue) -> None:
    """Nothing sweeps expired locks: the message stays locked until deleted."""
    message_id = await queue.send_message(b"x")
    await queue.receive_message(timedelta(milliseconds=1))
    await asyncio.sleep(0.02)

    assert (await queue.get_message_status(message_id)).status == MessageStatus.LOCKED
    assert await queue.receive_message(VT) is None
    assert await queue.number_of_messages_not_visible() == 1


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


async def _send_at(queue: Queue, payloads: list[bytes]) -> list[str]:
    """Send each payload with a distinct, increasing sent_at."""
    ids = []
    for n, payload in enumerate(payloads):
        with patch.object(queue_module, "utcnow", return_value=from_millis(1_000 + n)):
            ids.append(await queue.send_message(payload))
    return ids


async def test_fifo_order(queue: Queue) -> None:
    ids = await _send_at(queue, [b"a", b"b", b"c"])
    messages = await queue.receive_messages(3, VT)
    assert [m.message_id for m in messages] == ids


async def test_lifo_order(queue: Queue) -> None:
    ids = await _send_at(queue, [b"a", b"b", b"c"])
    messages = await queue.receive_messages_from_tail(3, VT)
    assert [m.message_id for m in messages] == list(reversed(ids))


async def test_single_receives_follow_order(queue: Queue) -> None:
    ids = await _send_at(queue, [b"a", b"b", b"c"])
    assert (await queue.receive_message(VT)).message_id == ids[0]
    assert (await queue.receive_message_from_tail(VT)).message_id == ids[2]
    assert (await queue.receive_message(VT)).message_id == ids[1]


async def test_receive_respects_max_count(queue: Queue) -> None:
    await _send_at(queue, [b"a", b"b", b"c", b"d"])
    assert len(await queue.receive_messages(2, VT)) == 2
    assert len(await queue.receive_messages(5, VT)) == 2


async def test_equal_timestamps_keep_send_order(queue: Queue) -> None:
    with patch.object(queue_module, "utcnow", return_value=from_millis(5_000)):
        ids = [await queue.send_message(p) for p in (b"a", b"b", b"c")]
    assert [m.message_id for m in await queue.receive_messages(3, VT)] == ids


# ---------------------------------------------------------------------------
# Partial batch
# ---------------------------------------------------------------------------


async def test_partial_batch_returns_only_winners(queue: Queue, rival: Queue) -> None:
    ids = await _send_at(queue, [b"a", b"b", b"c"])
    candidates = await queue.store.query_index(queue.name, "docrqs", "pending")

    # rival wins the middle message after the candidates were read
    assert await rival.receive_message_by_id(ids[1], VT) is not None
    messages = await queue._locks.lock_batch(candidates, VT)

    assert [m.message_id for m in messages] == [ids[0], ids[2]]


# ---------------------------------------------------------------------------
# Documents without a payload
# ---------------------------------------------------------------------------


async def test_receive_skips_document_without_payload(queue: Queue) -> None:
    body = codec.encode(MessageBody(sent_at=from_millis(1_000)))
    await queue.store.create_document(queue.name, Document(id="bare", body=body))
    with patch.object(queue_module, "utcnow", return_value=from_millis(2_000)):
        message_id = await queue.send_message(b"complete")

    messages = await queue.receive_messages(10, VT)

    assert [m.message_id for m in messages] == [message_id]
    assert messages[0].data == b"complete"
    assert (await queue.get_message_status("bare")).status == MessageStatus.PENDING
    assert await queue.number_of_messages_pending() == 1
    assert await queue.number_of_messages_not_visible() == 1


async def test_receive_by_id_of_document_without_payload(queue: Queue) -> None:
    body = codec.encode(MessageBody(sent_at=from_millis(1_000)))
    await queue.store.create_document(queue.name, Document(id="bare", body=body))
    assert await queue.receive_message_by_id("bare", VT) is None
    assert (await queue.get_message_status("bare")).status == MessageStatus.PENDING


# ---------------------------------------------------------------------------
# Receive by id
# ---------------------------------------------------------------------------


async def test_receive_message_by_id(queue: Queue) -> None:
    await queue.send_message(b"first")
    message_id = await queue.send_message(b"second")
    msg = await queue.receive_message_by_id(message_id, VT)
    assert msg.message_id == message_id
    assert msg.data == b"second"


async def test_receive_message_by_unknown_id_raises(queue: Queue) -> None:
    with pytest.raises(NoSuchMessageError):
        await queue.receive_message_by_id("nope", VT)


async def test_receive_messages_by_id_skips_unknown(queue: Queue) -> None:
    a = await queue.send_message(b"a")
    b = await queue.send_message(b"b")
    messages = await queue.receive_messages_by_id([b, "nope", a], VT)
    assert [m.message_id for m in messages] == [b, a]


async def test_receive_messages_by_id_empty(queue: Queue) -> None:
    assert await queue.receive_messages_by_id([], VT) == []


async def test_str_names_queue_and_process(queue: Queue) -> None:
    assert str(queue) == f"Queue jobs ({queue.process_id})"


# ---------------------------------------------------------------------------
# Deleted queue
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "operation",
    [
        lambda q: q.send_message(b"x"),
        lambda q: q.receive_messages(10),
        lambda q: q.receive_messages_from_tail(1),
        lambda q: q.receive_messages_by_id(["m1"]),
        lambda q: q.receive_message_by_id("m1"),
        lambda q: q.change_message_visibility("m1", "1-a", VT),
        lambda q: q.number_of_messages_pending(),
        lambda q: q.number_of_messages_not_visible(),
        lambda q: q.get_message_status("m1"),
    ],
    ids=[
        "send",
        "receive",
        "receive_from_tail",
        "receive_by_ids",
        "receive_by_id",
        "change_visibility",
        "pending_count",
        "not_visible_count",
        "status",
    ],
)
async def test_operations_on_deleted_queue_raise_no_such_queue(
    queue: Queue, operation
) -> None:
    await queue.store.delete_container(queue.name)
    with pytest.raises(NoSuchQueueError) as exc_info:
        await operation(queue)
    assert exc_info.value.queue_name == "jobs"
