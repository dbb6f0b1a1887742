"""Anomaly detection package."""

from ledger_core.anomaly.changes import detect_changes
from ledger_core.anomaly.detector import SPIKE_PREFIX, AnomalyDetector

__all__ = ["SPIKE_PREFIX", "AnomalyDetector", "detect_changes"]
