"""
Shared test doubles.

Nothing here touches the network: rate providers are scripted fakes,
the clock is frozen, and Google Sheets is an in-process worksheet stub.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from nami.config import RateSettings
from nami.models.ledger import Asset, AssetType, RateSource
from nami.services.rates import ProviderError, RateCache, RateProvider, RateResolver


NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def frozen_clock() -> datetime:
    return NOW


async def no_sleep(seconds: float) -> None:
    return None


class FakeProvider(RateProvider):
    """Scripted provider: fixed prices per symbol, counting every fetch."""

    source = RateSource.COINGECKO

    def __init__(
        self,
        prices: Optional[dict[str, str]] = None,
        fail: bool = False,
        asset_type: Optional[AssetType] = None,
    ):
        super().__init__(queue=None)
        self.prices = {k: Decimal(v) for k, v in (prices or {}).items()}
        self.fail = fail
        self.asset_type = asset_type
        self.calls: list[tuple[str, Optional[datetime]]] = []

    def supports(self, asset: Asset, historical: bool) -> bool:
        return self.asset_type is None or asset.type == self.asset_type

    async def fetch_rate(self, asset: Asset, at: Optional[datetime]) -> Decimal:
        self.calls.append((asset.key, at))
        if self.fail or asset.symbol not in self.prices:
            raise ProviderError(f"no price for {asset.key}")
        return self.prices[asset.symbol]


def make_resolver(
    providers: Optional[list[RateProvider]] = None,
    cache: Optional[RateCache] = None,
    disable_external: bool = False,
    audit_logger=None,
) -> RateResolver:
    return RateResolver(
        cache=cache,
        providers=providers if providers is not None else [],
        settings=RateSettings(disable_external=disable_external),
        audit_logger=audit_logger,
        clock=frozen_clock,
        sleep=no_sleep,
    )


class FakeWorksheet:
    """The slice of gspread.Worksheet the storage backends use."""

    def __init__(self, columns: list[str]):
        self.rows: list[list[str]] = [list(columns)]

    def get_all_values(self) -> list[list[str]]:
        return [list(row) for row in self.rows]

    def append_row(self, values: list, value_input_option: str = "RAW") -> None:
        self.rows.append(["" if v is None else str(v) for v in values])

    def update_cell(self, row: int, col: int, value) -> None:
        target = self.rows[row - 1]
        while len(target) < col:
            target.append("")
        target[col - 1] = str(value)

    def delete_rows(self, index: int) -> None:
        del self.rows[index - 1]


class FakeSheetsClient:
    """Stands in for GoogleSheetsClient with one FakeWorksheet per record kind."""

    def __init__(self):
        from nami.services.storage.google_sheets import (
            AUDIT_COLUMNS,
            POSITION_COLUMNS,
            RATE_CACHE_COLUMNS,
            VAULT_COLUMNS,
            VAULT_ENTRY_COLUMNS,
        )
        self.vaults = FakeWorksheet(VAULT_COLUMNS)
        self.vault_entries = FakeWorksheet(VAULT_ENTRY_COLUMNS)
        self.positions = FakeWorksheet(POSITION_COLUMNS)
        self.rate_cache = FakeWorksheet(RATE_CACHE_COLUMNS)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_vaults_sheet(self):
        return self.vaults

    def get_vault_entries_sheet(self):
        return self.vault_entries

    def get_positions_sheet(self):
        return self.positions

    def get_rate_cache_sheet(self):
        return self.rate_cache

    def get_audit_sheet(self):
        return self.audit


@pytest.fixture
def btc() -> Asset:
    return Asset.crypto("BTC")


@pytest.fixture
def usdt() -> Asset:
    return Asset.crypto("USDT")
