"""
Abstract Storage Interface

DESIGN DECISION: The host owns I/O, the core owns semantics.
Everything the core persists goes through these interfaces, so:
1. Google Sheets, JSON files and in-memory storage are interchangeable
2. Tests never touch the network or the filesystem unless they want to
3. Business logic never sees a file path or a worksheet

Documents are keyed by account id. Each account is fully independent.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from ledger_core.models.audit import AuditEvent
from ledger_core.models.ledger import Transaction
from ledger_core.models.patterns import PatternsDocument


class TransactionStorageInterface(ABC):
    """
    Abstract interface for an account's transaction collection.

    The collection is read and written as a whole.
    """

    @abstractmethod
    async def get_transactions(self, account_id: str) -> list[Transaction]:
        """
        Load every transaction for an account.

        Returns:
            The stored transactions, or an empty list for a new account

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def save_transactions(self, account_id: str, transactions: list[Transaction]) -> bool:
        """
        Replace the account's transaction collection.

        Returns:
            True if saved successfully

        Raises:
            StorageError: If save fails
        """
        pass


class PatternStorageInterface(ABC):
    """Abstract interface for the per-account learned patterns document."""

    @abstractmethod
    async def get_patterns(self, account_id: str) -> Optional[PatternsDocument]:
        """
        Load the patterns document.

        Returns:
            The document, or None if the account has never learned
        """
        pass

    @abstractmethod
    async def save_patterns(self, account_id: str, document: PatternsDocument) -> bool:
        """
        Replace the patterns document.

        Raises:
            StorageError: If save fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one host-level operation).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
        account_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events, optionally for one account.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
