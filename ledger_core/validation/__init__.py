"""Validation package."""

from ledger_core.validation.validator import TransactionValidator

__all__ = ["TransactionValidator"]
