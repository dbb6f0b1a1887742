"""Small helpers shared by the engine."""

from ledger_core.utils.money import (
    percent,
    round_whole,
    round_zero_sum,
    utc_now,
)

__all__ = ["percent", "round_whole", "round_zero_sum", "utc_now"]
