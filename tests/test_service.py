import os
import socket
from datetime import timedelta

import pytest

from docrqs.adapters.store.memory import InMemoryDocumentStore
from docrqs.config import RQSConfig
from docrqs.core.queue import INDEX_GROUP, QUEUE_INDEXES
from docrqs.core.service import QueueService, default_process_id
from docrqs.domain.documents import IndexDefinition
from docrqs.domain.errors import NoSuchQueueError, QueueNameAlreadyTakenError

# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------


async def test_create_queue_installs_indexes(service: QueueService) -> None:
    queue = await service.create_queue("emails")
    assert queue.name == "emails"
    assert queue.process_id == "worker-a"
    definitions = await service.store.get_index_definitions("emails", INDEX_GROUP)
    assert definitions == list(QUEUE_INDEXES)
    assert await service.is_queue("emails")


async def test_create_existing_queue_raises(service: QueueService) -> None:
    await service.create_queue("emails")
    with pytest.raises(QueueNameAlreadyTakenError):
        await service.create_queue("emails")


async def test_create_over_foreign_container_raises(service: QueueService) -> None:
    await service.store.create_container("other")
    with pytest.raises(QueueNameAlreadyTakenError):
        await service.create_queue("other")


async def test_get_or_create_creates_then_returns(service: QueueService) -> None:
    first = await service.get_or_create_queue("emails")
    await first.send_message(b"x")
    second = await service.get_or_create_queue("emails")
    assert await second.number_of_messages_pending() == 1


async def test_get_or_create_rejects_foreign_container(service: QueueService) -> None:
    await service.store.create_container("other")
    with pytest.raises(QueueNameAlreadyTakenError, match="not a queue"):
        await service.get_or_create_queue("other")


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


async def test_get_queue(service: QueueService) -> None:
    await service.create_queue("emails")
    queue = await service.get_queue("emails")
    assert queue.name == "emails"


async def test_get_missing_queue_raises(service: QueueService) -> None:
    with pytest.raises(NoSuchQueueError):
        await service.get_queue("emails")


async def test_get_foreign_container_raises(service: QueueService) -> None:
    await service.store.create_container("other")
    with pytest.raises(NoSuchQueueError):
        await service.get_queue("other")


async def test_container_with_different_indexes_is_not_a_queue(
    service: QueueService,
) -> None:
    await service.store.create_container("other")
    await service.store.define_indexes(
        "other",
        INDEX_GROUP,
        [IndexDefinition(name="pending", field="x", present=False, key="y")],
    )
    assert not await service.is_queue("other")


async def test_list_queues_ignores_foreign_containers(service: QueueService) -> None:
    await service.create_queue("b")
    await service.create_queue("a")
    await service.store.create_container("other")
    assert await service.list_queues() == ["a", "b"]


async def test_list_queues_empty(service: QueueService) -> None:
    assert await service.list_queues() == []


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


async def test_delete_queue_removes_messages(service: QueueService) -> None:
    queue = await service.create_queue("emails")
    await queue.send_message(b"x")

    assert await service.delete_queue("emails") is True
    assert not await service.store.container_exists("emails")

    recreated = await service.create_queue("emails")
    assert await recreated.number_of_messages_pending() == 0


async def test_delete_missing_queue_returns_false(service: QueueService) -> None:
    assert await service.delete_queue("emails") is False


async def test_delete_never_touches_foreign_container(service: QueueService) -> None:
    await service.store.create_container("other")
    assert await service.delete_queue("other") is False
    assert await service.store.container_exists("other")


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_default_process_id_names_pid_and_host() -> None:
    assert default_process_id() == f"{os.getpid()}@{socket.gethostname()}"


def test_service_fills_in_process_id() -> None:
    service = QueueService(InMemoryDocumentStore())
    assert service.process_id == default_process_id()


async def test_service_passes_visibility_timeout_to_queues() -> None:
    service = QueueService(
        InMemoryDocumentStore(), process_id="p", visibility_timeout=timedelta(seconds=5)
    )
    queue = await service.create_queue("emails")
    assert queue.visibility_timeout == timedelta(seconds=5)


def test_from_config() -> None:
    config = RQSConfig(backend="memory", process_id="cfg", visibility_timeout_ms=1500)
    service = QueueService.from_config(config)
    assert isinstance(service.store, InMemoryDocumentStore)
    assert service.process_id == "cfg"
    assert service.visibility_timeout == timedelta(milliseconds=1500)


def test_from_config_without_process_id_uses_default() -> None:
    service = QueueService.from_config(RQSConfig())
    assert service.process_id == default_process_id()
