"""
JSON File Storage

One directory per account:

    <data_dir>/users/<account_id>/transactions.json
    <data_dir>/users/<account_id>/patterns.json
    <data_dir>/audit.jsonl

DESIGN DECISION: Write to a temp file in the same directory, then
os.replace() it over the target. A reader either sees the old document
or the new one, never half of each.
"""

import os
import re
import tempfile
from pathlib import Path
from typing import Optional, Union
from uuid import UUID

from pydantic import TypeAdapter, ValidationError

from ledger_core.models.audit import AuditEvent
from ledger_core.models.ledger import Transaction
from ledger_core.models.patterns import PatternsDocument
from ledger_core.services.storage.interface import (
    AuditStorageInterface,
    PatternStorageInterface,
    StorageError,
    TransactionStorageInterface,
)


TRANSACTIONS_FILE = "transactions.json"
PATTERNS_FILE = "patterns.json"
AUDIT_FILE = "audit.jsonl"

_ACCOUNT_ID = re.compile(r"^[A-Za-z0-9_.@+-]+$")
_transactions_adapter = TypeAdapter(list[Transaction])


def _write_atomic(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class _AccountFiles:
    """Resolves per-account file paths under the data directory."""

    def __init__(self, data_dir: Union[str, Path]):
        self.root = Path(data_dir)

    def path(self, account_id: str, filename: str) -> Path:
        if not account_id or account_id in (".", "..") or not _ACCOUNT_ID.match(account_id):
            raise StorageError(f"Invalid account id: {account_id!r}")
        return self.root / "users" / account_id / filename


class JsonTransactionStorage(TransactionStorageInterface):

    def __init__(self, data_dir: Union[str, Path]):
        self._files = _AccountFiles(data_dir)

    async def get_transactions(self, account_id: str) -> list[Transaction]:
        path = self._files.path(account_id, TRANSACTIONS_FILE)
        if not path.exists():
            return []
        try:
            return _transactions_adapter.validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            raise StorageError(f"Failed to read transactions for {account_id}: {e}")

    async def save_transactions(self, account_id: str, transactions: list[Transaction]) -> bool:
        path = self._files.path(account_id, TRANSACTIONS_FILE)
        try:
            payload = _transactions_adapter.dump_json(transactions, by_alias=True, indent=2)
            _write_atomic(path, payload)
            return True
        except OSError as e:
            raise StorageError(f"Failed to save transactions for {account_id}: {e}")


class JsonPatternStorage(PatternStorageInterface):

    def __init__(self, data_dir: Union[str, Path]):
        self._files = _AccountFiles(data_dir)

    async def get_patterns(self, account_id: str) -> Optional[PatternsDocument]:
        path = self._files.path(account_id, PATTERNS_FILE)
        if not path.exists():
            return None
        try:
            return PatternsDocument.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            raise StorageError(f"Failed to read patterns for {account_id}: {e}")

    async def save_patterns(self, account_id: str, document: PatternsDocument) -> bool:
        path = self._files.path(account_id, PATTERNS_FILE)
        try:
            payload = document.model_dump_json(by_alias=True, indent=2).encode("utf-8")
            _write_atomic(path, payload)
            return True
        except OSError as e:
            raise StorageError(f"Failed to save patterns for {account_id}: {e}")


class JsonAuditStorage(AuditStorageInterface):
    """Append-only JSON lines file shared by all accounts."""

    def __init__(self, data_dir: Union[str, Path]):
        self._path = Path(data_dir) / AUDIT_FILE

    def _read_all(self) -> list[AuditEvent]:
        if not self._path.exists():
            return []
        events = []
        with self._path.open("r", encoding="utf-8") as fh:
            for line in fh:
                if line.strip():
                    events.append(AuditEvent.model_validate_json(line))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(event.model_dump_json() + "\n")
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return [e for e in self._read_all() if e.correlation_id == correlation_id]

    async def get_recent_events(
        self,
        limit: int = 100,
        account_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._read_all()
            if account_id is None or e.account_id == account_id
        ]
        return list(reversed(events))[:limit]
