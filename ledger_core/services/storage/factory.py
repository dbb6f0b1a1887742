"""Storage backend selection from configuration."""

from typing import NamedTuple, Optional

import structlog

from ledger_core.config import Settings, get_settings
from ledger_core.services.storage.interface import (
    AuditStorageInterface,
    PatternStorageInterface,
    StorageError,
    TransactionStorageInterface,
)
from ledger_core.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryPatternStorage,
    InMemoryTransactionStorage,
)


logger = structlog.get_logger(__name__)


class StorageBackends(NamedTuple):
    transactions: TransactionStorageInterface
    patterns: PatternStorageInterface
    audit: AuditStorageInterface


def in_memory_backends() -> StorageBackends:
    return StorageBackends(
        transactions=InMemoryTransactionStorage(),
        patterns=InMemoryPatternStorage(),
        audit=InMemoryAuditStorage(),
    )


def create_storage_backends(settings: Optional[Settings] = None) -> StorageBackends:
    """
    Build the three storage backends named by LEDGER_STORAGE_BACKEND.

    Raises:
        StorageError: If the backend name is unknown
        ConnectionError: If Google Sheets cannot be reached
    """
    settings = settings or get_settings()
    backend = settings.storage.backend

    if backend == "memory":
        return in_memory_backends()

    if backend == "json":
        from ledger_core.services.storage.json_file import (
            JsonAuditStorage,
            JsonPatternStorage,
            JsonTransactionStorage,
        )

        data_dir = settings.storage.data_dir
        logger.info("storage_backend_selected", backend=backend, data_dir=data_dir)
        return StorageBackends(
            transactions=JsonTransactionStorage(data_dir),
            patterns=JsonPatternStorage(data_dir),
            audit=JsonAuditStorage(data_dir),
        )

    if backend == "google_sheets":
        from ledger_core.services.storage.google_sheets import (
            GoogleSheetsAuditStorage,
            GoogleSheetsClient,
            GoogleSheetsPatternStorage,
            GoogleSheetsTransactionStorage,
        )

        client = GoogleSheetsClient(settings.google_sheets)
        client.connect()
        logger.info("storage_backend_selected", backend=backend)
        return StorageBackends(
            transactions=GoogleSheetsTransactionStorage(client),
            patterns=GoogleSheetsPatternStorage(client),
            audit=GoogleSheetsAuditStorage(client),
        )

    raise StorageError(f"Unknown storage backend: {backend}")
