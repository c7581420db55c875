from pathlib import Path

import pytest

from docrqs.adapters.store.filesystem import LocalFileSystemDocumentStore
from docrqs.adapters.store.memory import InMemoryDocumentStore
from docrqs.core.queue import Queue
from docrqs.core.service import QueueService
from docrqs.ports.store import DocumentStorePort

# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture(params=["memory", "filesystem"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> DocumentStorePort:
    """Every local adapter; tests using this fixture run once per adapter."""
    if request.param == "memory":
        return InMemoryDocumentStore()
    return LocalFileSystemDocumentStore(tmp_path / "store")


# ---------------------------------------------------------------------------
# Queues
# ---------------------------------------------------------------------------


@pytest.fixture
def service(store: DocumentStorePort) -> QueueService:
    return QueueService(store, process_id="worker-a")


@pytest.fixture
async def queue(service: QueueService) -> Queue:
    return await service.create_queue("jobs")


@pytest.fixture
async def rival(queue: Queue) -> Queue:
    """A second consumer process on the same queue."""
    return Queue(store=queue.store, name=queue.name, process_id="worker-b")
