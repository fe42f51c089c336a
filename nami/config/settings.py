"""
Configuration Management for Nami

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which external providers the core talks to and
ensures every tunable (timeouts, backoff, fallback table) is validated at
startup instead of being scattered as constants.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Approximate USD value of one unit, used when every provider fails.
DEFAULT_FIAT_FALLBACK_RATES: dict[str, float] = {
    "VND": 1 / 24000,
    "EUR": 1 / 0.85,
    "GBP": 1 / 0.75,
    "JPY": 1 / 150,
    "IDR": 1 / 15500,
    "SGD": 1 / 1.35,
    "AUD": 1 / 1.52,
    "CAD": 1 / 1.36,
    "CHF": 1 / 0.88,
    "CNY": 1 / 7.2,
    "KRW": 1 / 1330,
    "THB": 1 / 35.5,
    "INR": 1 / 83,
}


class RateSettings(BaseSettings):
    """Rate resolution configuration (providers, retries, fallback table)."""

    model_config = SettingsConfigDict(
        env_prefix="RATES_",
        extra="ignore"
    )

    disable_external: bool = Field(
        default=False,
        description="Never call external providers; resolve from the fallback table or FIXED"
    )
    fiat_fallback_rates: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_FIAT_FALLBACK_RATES),
        description="Static FIAT symbol -> USD approximation table"
    )
    exchange_rate_api_key: Optional[str] = Field(
        default=None,
        description="API key for exchangerate-api.com (provider skipped when unset)"
    )

    # Timeouts
    current_timeout_seconds: float = Field(
        default=8.0,
        ge=5.0,
        le=30.0,
        description="Timeout for current-rate requests"
    )
    historical_timeout_seconds: float = Field(
        default=10.0,
        ge=5.0,
        le=30.0,
        description="Timeout for historical-rate requests"
    )

    # Rate-limit handling
    max_attempts: int = Field(
        default=5,
        ge=1,
        le=10,
        description="Maximum attempts per request when the provider answers 429"
    )
    backoff_base_seconds: float = Field(
        default=4.0,
        ge=0.0,
        description="Wait before the first retry"
    )
    backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        description="Multiplier applied to the wait after every retry"
    )
    coingecko_warmup_seconds: float = Field(
        default=1.5,
        ge=0.0,
        description="Fixed delay before every CoinGecko request"
    )

    # Historical back-fill
    backfill_delay_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Pause between requests during historical back-fill"
    )
    historical_crypto_max_days: int = Field(
        default=365,
        ge=1,
        description="Oldest day (in days ago) the crypto time series may be asked for"
    )

    @field_validator('fiat_fallback_rates')
    @classmethod
    def validate_fallback_rates(cls, v: dict[str, float]) -> dict[str, float]:
        """Normalize symbols and reject non-positive approximations."""
        normalized = {}
        for symbol, rate in v.items():
            if rate <= 0:
                raise ValueError(f"Fallback rate for {symbol} must be positive")
            normalized[symbol.strip().upper()] = rate
        return normalized


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

    # Sheet names within the spreadsheet
    vaults_sheet_name: str = Field(
        default="Vaults",
        description="Name of the sheet for vaults"
    )
    vault_entries_sheet_name: str = Field(
        default="VaultEntries",
        description="Name of the sheet for vault ledger entries"
    )
    positions_sheet_name: str = Field(
        default="Positions",
        description="Name of the sheet for staking positions"
    )
    rate_cache_sheet_name: str = Field(
        default="RateCache",
        description="Name of the sheet for the persisted rate cache"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
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


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level for structured logging"
    )

    # Ledger defaults
    default_spend_vault: str = Field(
        default="Spend",
        min_length=1,
        description="Vault that receives income/expense flows and distributed rewards"
    )
    max_flow_amount_usd: float = Field(
        default=10_000_000.0,
        gt=0,
        description="Flows above this USD value are flagged for review"
    )

    @model_validator(mode='after')
    def normalize_log_level(self) -> 'AppSettings':
        self.log_level = self.log_level.upper()
        return self


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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def rates(self) -> RateSettings:
        return RateSettings()

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

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("rates", "google_sheets", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
