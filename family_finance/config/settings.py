"""
Configuration Management for Family Finance

Uses pydantic-settings for type-safe configuration from environment variables.

All configuration is centralized here, so every external dependency
is visible in one place and validated at startup.
"""

import warnings
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # One worksheet per table
    payables_sheet_name: str = Field(default="accounts_payable")
    receivables_sheet_name: str = Field(default="accounts_receivable")
    card_transactions_sheet_name: str = Field(default="credit_card_transactions")
    piggy_bank_sheet_name: str = Field(default="piggy_bank_entries")
    audit_sheet_name: str = Field(default="AuditLog")

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = False

    # Card payments
    card_payment_type_name: str = Field(
        default="cartao",
        description="Name of the payment type that means 'paid with credit card'"
    )
    card_payment_type_id: Optional[str] = Field(
        default=None,
        description="Id of the card payment type, when known up front"
    )

    # Month picker window around today
    month_window_past: int = Field(default=11, ge=0, le=120)
    month_window_future: int = Field(default=6, ge=0, le=120)

    # Validation thresholds
    max_installments: int = Field(default=120, ge=1)
    max_obligation_amount: Decimal = Field(
        default=Decimal("1000000"),
        description="Amounts above this are flagged for review"
    )

    # Linked transaction failure handling
    rollback_on_link_failure: bool = Field(
        default=True,
        description=(
            "Undo the settlement when the card transaction cannot be recorded. "
            "When false, the settlement stays and the failure is reported."
        )
    )

    @property
    def card_payment_type(self) -> str:
        """Payment type id that means "credit card" (id if set, else the name)."""
        return self.card_payment_type_id or self.card_payment_type_name


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


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

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the failures.
    """
    results = {}

    settings = get_settings()

    for name in ("google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
