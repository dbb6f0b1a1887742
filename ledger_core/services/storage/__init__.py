"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage:
in-memory, JSON files and Google Sheets.
"""

from ledger_core.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    PatternStorageInterface,
    StorageError,
    TransactionStorageInterface,
)
from ledger_core.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryPatternStorage,
    InMemoryTransactionStorage,
)
from ledger_core.services.storage.json_file import (
    JsonAuditStorage,
    JsonPatternStorage,
    JsonTransactionStorage,
)
from ledger_core.services.storage.factory import (
    StorageBackends,
    create_storage_backends,
    in_memory_backends,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "PatternStorageInterface",
    "TransactionStorageInterface",
    # Exceptions
    "ConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryPatternStorage",
    "InMemoryTransactionStorage",
    # JSON file implementation
    "JsonAuditStorage",
    "JsonPatternStorage",
    "JsonTransactionStorage",
    # Selection
    "StorageBackends",
    "create_storage_backends",
    "in_memory_backends",
]
