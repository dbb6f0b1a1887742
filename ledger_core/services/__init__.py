"""Services package."""

from ledger_core.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    PatternStorageInterface,
    StorageError,
    TransactionStorageInterface,
    create_storage_backends,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "PatternStorageInterface",
    "StorageError",
    "TransactionStorageInterface",
    "create_storage_backends",
]
