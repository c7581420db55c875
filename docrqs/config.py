"""Runtime configuration for docrqs."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from docrqs.adapters.store.couchdb import CouchDBDocumentStore
from docrqs.adapters.store.filesystem import LocalFileSystemDocumentStore
from docrqs.adapters.store.memory import InMemoryDocumentStore
from docrqs.ports.store import DocumentStorePort

logger = logging.getLogger(__name__)

BACKENDS = ("memory", "filesystem", "couchdb")


@dataclass
class RQSConfig:
    """Configuration for a QueueService and its document store.

    Loaded from environment variables by from_env(), or built directly.
    """

    # Store selection
    backend: str = "memory"  # "memory", "filesystem" or "couchdb"
    data_dir: str = "./docrqs-data"  # filesystem backend root

    # CouchDB backend
    couchdb_url: str = "http://localhost:5984"
    couchdb_username: Optional[str] = None
    couchdb_password: Optional[str] = None
    request_timeout: float = 30.0  # seconds, per HTTP request

    # Queue defaults
    visibility_timeout_ms: int = 30_000
    process_id: Optional[str] = None  # None → "<pid>@<hostname>"

    @classmethod
    def from_env(cls) -> RQSConfig:
        """Load configuration from environment variables.

        Environment variables are prefixed with DOCRQS_.
        For example:
        - DOCRQS_BACKEND -> backend
        - DOCRQS_COUCHDB_URL -> couchdb_url
        - DOCRQS_VISIBILITY_TIMEOUT_MS -> visibility_timeout_ms
        """
        config = cls()

        config.backend = os.environ.get("DOCRQS_BACKEND", config.backend)
        config.data_dir = os.environ.get("DOCRQS_DATA_DIR", config.data_dir)

        config.couchdb_url = os.environ.get("DOCRQS_COUCHDB_URL", config.couchdb_url)
        config.couchdb_username = os.environ.get(
            "DOCRQS_COUCHDB_USERNAME", config.couchdb_username
        )
        config.couchdb_password = os.environ.get(
            "DOCRQS_COUCHDB_PASSWORD", config.couchdb_password
        )
        if timeout := os.environ.get("DOCRQS_REQUEST_TIMEOUT"):
            config.request_timeout = float(timeout)

        if visibility := os.environ.get("DOCRQS_VISIBILITY_TIMEOUT_MS"):
            config.visibility_timeout_ms = int(visibility)
        config.process_id = os.environ.get("DOCRQS_PROCESS_ID", config.process_id)

        config.validate()
        return config

    def validate(self) -> None:
        """Raise ValueError on settings that cannot work."""
        if self.backend not in BACKENDS:
            raise ValueError(
                f"Unknown backend {self.backend!r}; expected one of {', '.join(BACKENDS)}"
            )
        if self.visibility_timeout_ms < 0:
            raise ValueError("visibility_timeout_ms must not be negative")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")


def create_store(config: RQSConfig) -> DocumentStorePort:
    """Factory function returning the document store selected by `config`.

    Raises:
        ValueError: If config.backend is unknown
    """
    config.validate()
    if config.backend == "memory":
        logger.info("Using in-memory document store")
        return InMemoryDocumentStore()
    elif config.backend == "filesystem":
        logger.info(f"Using filesystem document store at {config.data_dir}")
        return LocalFileSystemDocumentStore(config.data_dir)
    else:
        logger.info(f"Using CouchDB document store at {config.couchdb_url}")
        return CouchDBDocumentStore(
            url=config.couchdb_url,
            username=config.couchdb_username,
            password=config.couchdb_password,
            timeout=config.request_timeout,
        )
