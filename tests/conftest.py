"""Pytest fixtures for testing"""

import itertools
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledger_core.config import LedgerSettings
from ledger_core.models.ledger import Transaction
from ledger_core.patterns import PatternLearningStore


BASE_DATE = date(2024, 1, 1)


@pytest.fixture
def settings() -> LedgerSettings:
    """Default engine settings, independent of the environment"""
    return LedgerSettings()


@pytest.fixture
def store(settings: LedgerSettings) -> PatternLearningStore:
    """Empty pattern store"""
    return PatternLearningStore(settings=settings)


@pytest.fixture
def make_txn():
    """
    Factory for transactions with sequential ids.

    make_txn(1000, payer="A", category="Food", day=3) -> dated BASE_DATE + 3 days
    """
    counter = itertools.count(1)

    def _make(amount, payer=None, category="Food", day=0, **kwargs):
        if kwargs.get("settled") and "settled_at" not in kwargs:
            kwargs["settled_at"] = datetime(2024, 6, 1, tzinfo=timezone.utc)
        return Transaction(
            id=kwargs.pop("id", f"t{next(counter)}"),
            date=BASE_DATE + timedelta(days=day),
            amount=Decimal(str(amount)),
            category=category,
            payer=payer,
            **kwargs,
        )

    return _make


@pytest.fixture
def food_history(make_txn) -> list[Transaction]:
    """Ten daily Food expenses of 500 - a flat baseline"""
    return [make_txn(500, category="Food", day=i) for i in range(10)]
