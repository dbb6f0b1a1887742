"""
In-Memory Storage

Used by tests and by hosts that don't need persistence. Also the
fallback when the configured backend cannot be reached.

Everything stored is a deep copy, so callers mutating their objects
afterwards never change what is "on disk".
"""

from typing import Optional
from uuid import UUID

from ledger_core.models.audit import AuditEvent
from ledger_core.models.ledger import Transaction
from ledger_core.models.patterns import PatternsDocument
from ledger_core.services.storage.interface import (
    AuditStorageInterface,
    PatternStorageInterface,
    TransactionStorageInterface,
)


class InMemoryTransactionStorage(TransactionStorageInterface):

    def __init__(self, initial: Optional[dict[str, list[Transaction]]] = None):
        self._data: dict[str, list[Transaction]] = {}
        for account_id, transactions in (initial or {}).items():
            self._data[account_id] = [t.model_copy(deep=True) for t in transactions]

    async def get_transactions(self, account_id: str) -> list[Transaction]:
        return [t.model_copy(deep=True) for t in self._data.get(account_id, [])]

    async def save_transactions(self, account_id: str, transactions: list[Transaction]) -> bool:
        self._data[account_id] = [t.model_copy(deep=True) for t in transactions]
        return True


class InMemoryPatternStorage(PatternStorageInterface):

    def __init__(self):
        self._data: dict[str, PatternsDocument] = {}

    async def get_patterns(self, account_id: str) -> Optional[PatternsDocument]:
        document = self._data.get(account_id)
        return document.model_copy(deep=True) if document else None

    async def save_patterns(self, account_id: str, document: PatternsDocument) -> bool:
        self._data[account_id] = document.model_copy(deep=True)
        return True


class InMemoryAuditStorage(AuditStorageInterface):

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return [e for e in self.events if e.correlation_id == correlation_id]

    async def get_recent_events(
        self,
        limit: int = 100,
        account_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if account_id is None or e.account_id == account_id]
        return list(reversed(events))[:limit]
