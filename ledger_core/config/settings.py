"""
Configuration Management for Ledger Core

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: Every tunable constant of the engine lives here.
Thresholds, caps and tolerances are visible in one place and can be
overridden per deployment without touching the algorithms.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Settlement, learning and anomaly detection tunables."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Money handling
    rounding_epsilon: Decimal = Field(
        default=Decimal("1"),
        gt=0,
        description="Smallest currency unit; balances below this are zero",
    )
    split_tolerance: Decimal = Field(
        default=Decimal("1"),
        ge=0,
        description="Allowed difference between split shares and amount",
    )
    currency_symbol: str = Field(
        default="₹",
        description="Currency symbol used in human-readable descriptions",
    )

    # Pattern store caps
    anomaly_history_cap: int = Field(default=100, ge=1)
    settlement_history_cap: int = Field(default=50, ge=1)

    # Adaptive thresholds (multipliers of the category average)
    default_threshold: float = Field(default=1.5, gt=1.0)
    relaxed_threshold: float = Field(default=2.0, gt=1.0)
    strict_threshold: float = Field(default=1.3, gt=1.0)
    min_false_positives_to_relax: int = Field(default=4, ge=1)

    # Deviation detection
    recency_window: int = Field(
        default=15,
        ge=1,
        le=100,
        description="How many of the most recent transactions are scanned",
    )
    max_anomalies: int = Field(default=5, ge=1)
    absolute_amount_floor: Decimal = Field(
        default=Decimal("500"),
        ge=0,
        description="Transactions at or below this never count as spikes",
    )
    feedback_amount_tolerance: Decimal = Field(
        default=Decimal("500"),
        ge=0,
        description="Amount window for matching earlier false positives",
    )
    min_category_samples: int = Field(default=3, ge=1)

    # Missing-expected detection
    frequent_cycle_max_days: float = Field(
        default=15,
        gt=0,
        description="Categories recurring faster than this are always tracked",
    )
    regular_gap_tolerance: float = Field(
        default=0.25,
        ge=0,
        description="Max (max_gap - min_gap) / average_gap for a regular cycle",
    )
    missing_multiplier: float = Field(default=2.0, gt=1.0)

    # Settlement overdue detection
    default_settlement_amount: Decimal = Field(default=Decimal("5000"), gt=0)
    settlement_warning_multiplier: float = Field(default=2.0, gt=1.0)
    settlement_critical_multiplier: float = Field(default=3.0, gt=1.0)

    # Settlement reminder
    reminder_high_count: int = Field(default=20, ge=1)
    reminder_high_amount: Decimal = Field(default=Decimal("50000"), gt=0)
    reminder_medium_count: int = Field(default=10, ge=1)
    reminder_medium_days: int = Field(default=14, ge=1)

    # Settlement justification
    justification_large_total: Decimal = Field(default=Decimal("10000"), gt=0)
    justification_large_balance: Decimal = Field(default=Decimal("5000"), gt=0)
    justification_stale_days: int = Field(default=30, ge=1)

    # Month-over-month drift
    change_significance_percent: float = Field(default=20.0, ge=0)

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "LedgerSettings":
        """Strict < default < relaxed, otherwise feedback would invert."""
        if not (self.strict_threshold < self.default_threshold < self.relaxed_threshold):
            raise ValueError(
                "Thresholds must satisfy strict < default < relaxed"
            )
        if self.settlement_critical_multiplier < self.settlement_warning_multiplier:
            raise ValueError(
                "Critical settlement multiplier cannot be below the warning one"
            )
        return self


class StorageSettings(BaseSettings):
    """Which persistence backend the host wires in."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORAGE_",
        extra="ignore",
    )

    backend: str = Field(
        default="memory",
        pattern="^(memory|json|google_sheets)$",
        description="Storage backend: memory, json or google_sheets",
    )
    data_dir: str = Field(
        default="data",
        description="Root directory for the json backend",
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore",
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON",
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use",
    )

    # Sheet names within the spreadsheet
    transactions_sheet_name: str = Field(default="Transactions")
    patterns_sheet_name: str = Field(default="Patterns")
    audit_sheet_name: str = Field(default="AuditLog")

    @field_validator("credentials_path")
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-settings are loaded lazily so a host can run with partial config

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus `<name>_error`
    entries for the ones that failed. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "storage", "google_sheets"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
