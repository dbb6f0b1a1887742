"""Pattern learning package."""

from ledger_core.patterns.learning import PatternLearningStore

__all__ = ["PatternLearningStore"]
