"""
Core Ledger Models for Nami

These models define the strict schemas for assets, rates and vault ledgers.
They are designed to:
1. Enforce type safety at runtime
2. Normalize identities (asset symbols) at the boundary
3. Be serializable for storage and logging

DESIGN DECISION: Money and quantities are Decimal. Return metrics
(IRR, APR) are float because they come out of iterative numerics.
All timestamps are timezone-aware UTC; naive inputs are read as UTC.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_start(value: datetime) -> datetime:
    """Truncate to UTC midnight of the same day."""
    value = ensure_utc(value)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def as_decimal(value: Union[Decimal, int, float, str]) -> Decimal:
    """Convert user input to Decimal without binary-float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# Symbols treated as crypto even though they are three letters long
KNOWN_CRYPTO_SYMBOLS = frozenset({
    "BTC", "ETH", "SOL", "USDT", "USDC", "BNB", "XRP", "ADA",
    "DOGE", "TRX", "DOT", "MATIC", "AVAX", "XAU", "GOLD", "XAG",
})


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AssetType(str, Enum):
    """Asset classes the resolver knows how to price."""
    FIAT = "FIAT"
    CRYPTO = "CRYPTO"


class RateSource(str, Enum):
    """
    Provenance of a resolved rate.

    FIXED and FALLBACK are the degraded sources: callers should treat
    a value tagged with them as an approximation.
    """
    EXCHANGE_RATE_HOST = "EXCHANGE_RATE_HOST"
    FRANKFURTER = "FRANKFURTER"
    ER_API = "ER_API"
    EXCHANGE_RATE_API = "EXCHANGE_RATE_API"
    COINGECKO = "COINGECKO"
    FIXED = "FIXED"        # rate = 1 (USD, or nothing better available)
    FALLBACK = "FALLBACK"  # static approximation table


class VaultStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class VaultEntryType(str, Enum):
    """
    Kinds of ledger entries.

    VALUATION is a snapshot of the vault's total USD value; it does not
    move units.
    """
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    VALUATION = "VALUATION"


# =============================================================================
# ASSETS & RATES
# =============================================================================

class Asset(BaseModel):
    """
    A priceable asset.

    Identity is `type:SYMBOL`; symbols are case-insensitive and stored
    upper-cased.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    type: AssetType = Field(
        ...,
        description="Asset class"
    )
    symbol: str = Field(
        ...,
        min_length=1,
        max_length=20,
        description="Ticker / ISO currency code"
    )

    @field_validator('symbol')
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def key(self) -> str:
        return f"{self.type.value}:{self.symbol}"

    @property
    def is_usd(self) -> bool:
        return self.type == AssetType.FIAT and self.symbol == "USD"

    @classmethod
    def fiat(cls, symbol: str) -> "Asset":
        return cls(type=AssetType.FIAT, symbol=symbol)

    @classmethod
    def crypto(cls, symbol: str) -> "Asset":
        return cls(type=AssetType.CRYPTO, symbol=symbol)

    @classmethod
    def usd(cls) -> "Asset":
        return cls.fiat("USD")

    @classmethod
    def from_key(cls, key: str) -> "Asset":
        """Parse an identity key such as `CRYPTO:BTC`."""
        asset_type, _, symbol = key.partition(":")
        if not symbol:
            raise ValueError(f"Invalid asset key: {key!r}")
        return cls(type=AssetType(asset_type.upper()), symbol=symbol)

    @classmethod
    def from_symbol(cls, symbol: str) -> "Asset":
        """
        Infer the asset class from a bare symbol.

        Known crypto tickers and anything longer than three characters
        are CRYPTO; everything else is treated as an ISO currency code.
        """
        normalized = symbol.strip().upper()
        if normalized in KNOWN_CRYPTO_SYMBOLS or len(normalized) > 3:
            return cls.crypto(normalized)
        return cls.fiat(normalized)

    def __str__(self) -> str:
        return self.key


class Rate(BaseModel):
    """
    USD price of one unit of an asset on a given UTC day.

    Immutable once produced. A given (asset, day) pair is cached and
    never re-fetched.
    """
    model_config = ConfigDict(frozen=True)

    asset: Asset
    rate_usd: Decimal = Field(
        ...,
        gt=0,
        description="USD value of one unit"
    )
    timestamp: datetime = Field(
        ...,
        description="UTC midnight of the day this rate applies to"
    )
    source: RateSource

    @field_validator('timestamp')
    @classmethod
    def truncate_to_day(cls, v: datetime) -> datetime:
        return day_start(v)

    @property
    def is_degraded(self) -> bool:
        return self.source in (RateSource.FIXED, RateSource.FALLBACK)

    def value_of(self, amount: Decimal) -> Decimal:
        """USD value of `amount` units."""
        return amount * self.rate_usd


# =============================================================================
# VAULTS
# =============================================================================

class Vault(BaseModel):
    """A named container of ledger entries (a wallet, exchange account, fund)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Unique vault name"
    )
    status: VaultStatus = Field(
        default=VaultStatus.ACTIVE
    )
    created_at: datetime = Field(
        default_factory=utc_now
    )
    closed_at: Optional[datetime] = None

    @field_validator('created_at', 'closed_at')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @property
    def is_active(self) -> bool:
        return self.status == VaultStatus.ACTIVE


class VaultEntry(BaseModel):
    """
    A single append-only ledger entry.

    DEPOSIT/WITHDRAW move `amount` units of `asset` in or out, valued at
    `usd_value`. VALUATION records the whole vault's USD value in
    `usd_value`; its `amount` is informational only.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4
    )
    vault: str = Field(
        ...,
        min_length=1,
        description="Owning vault name"
    )
    type: VaultEntryType
    asset: Asset
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Units moved (always non-negative; direction comes from type)"
    )
    usd_value: Decimal = Field(
        ...,
        ge=0,
        description="USD value of the movement, or of the vault for VALUATION"
    )
    at: datetime = Field(
        default_factory=utc_now
    )
    account: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Counterparty account or vault"
    )
    note: Optional[str] = Field(
        default=None,
        max_length=500
    )

    @field_validator('at')
    @classmethod
    def normalize_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class VaultStats(BaseModel):
    """Derived figures for one vault, folded from its entries."""

    vault: str
    total_deposited_usd: Decimal = Decimal("0")
    total_withdrawn_usd: Decimal = Decimal("0")
    aum_usd: Decimal = Decimal("0")
    last_valuation_usd: Optional[Decimal] = None
    last_valuation_at: Optional[datetime] = None
    balances: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Unit balance per asset key"
    )
    entry_count: int = 0

    @computed_field
    @property
    def net_flow_usd(self) -> Decimal:
        return self.total_deposited_usd - self.total_withdrawn_usd

    @computed_field
    @property
    def roi_percent(self) -> float:
        """(AUM + withdrawn - deposited) / deposited x 100; 0 with nothing deposited."""
        if self.total_deposited_usd <= 0:
            return 0.0
        gain = self.aum_usd + self.total_withdrawn_usd - self.total_deposited_usd
        return float(gain / self.total_deposited_usd * 100)
