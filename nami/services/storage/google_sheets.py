"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the persistent backend because:
1. The owner can inspect every ledger entry and position directly
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for a personal ledger)
- No transactions (entries are append-only, which keeps ordering safe)
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so we can swap
to PostgreSQL/SQLite later without changing ledger logic.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from nami.config import get_settings
from nami.models.audit import AuditEvent, AuditEventType, AuditSeverity
from nami.models.ledger import (
    Asset,
    Rate,
    RateSource,
    Vault,
    VaultEntry,
    VaultEntryType,
    VaultStatus,
)
from nami.models.position import Position, PositionExit
from nami.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerStorageInterface,
    PositionStorageInterface,
    RateCacheStorageInterface,
    StorageError,
)


VAULT_COLUMNS = [
    "name",
    "status",
    "created_at",
    "closed_at",
]

VAULT_ENTRY_COLUMNS = [
    "id",
    "vault",
    "type",
    "asset",
    "amount",
    "usd_value",
    "at",
    "account",
    "note",
]

POSITION_COLUMNS = [
    "id",
    "asset",
    "account",
    "deposit_qty",
    "deposit_cost",
    "deposit_date",
    "exit_date",
    "remaining_qty",
    "realized_pnl",
    "withdrawn_qty",
    "withdrawn_value",
    "cost_basis_exited",
    "exits_json",
]

RATE_CACHE_COLUMNS = [
    "key",
    "asset",
    "rate_usd",
    "timestamp",
    "source",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
]


def _safe_getter(row: list):
    """Index into a row, tolerating short rows and blank cells."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    Worksheets are created with a header row on first use.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_vaults_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.vaults_sheet_name, VAULT_COLUMNS)

    def get_vault_entries_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.vault_entries_sheet_name,
            VAULT_ENTRY_COLUMNS,
            rows=5000,
        )

    def get_positions_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.positions_sheet_name, POSITION_COLUMNS)

    def get_rate_cache_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.rate_cache_sheet_name,
            RATE_CACHE_COLUMNS,
            rows=5000,
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


def _replace_row(sheet, idx: int, new_row: list) -> None:
    """Overwrite row `idx` (1-based) cell by cell."""
    for col_idx, value in enumerate(new_row, start=1):
        sheet.update_cell(idx, col_idx, value)


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Vaults and vault entries, one row each.

    Entry rows are only ever appended.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _vault_to_row(self, vault: Vault) -> list:
        return [
            vault.name,
            vault.status.value,
            vault.created_at.isoformat(),
            vault.closed_at.isoformat() if vault.closed_at else "",
        ]

    def _row_to_vault(self, row: list) -> Vault:
        safe_get = _safe_getter(row)
        return Vault(
            name=safe_get(0),
            status=VaultStatus(safe_get(1, VaultStatus.ACTIVE.value)),
            created_at=datetime.fromisoformat(safe_get(2)),
            closed_at=datetime.fromisoformat(safe_get(3)) if safe_get(3) else None,
        )

    def _entry_to_row(self, entry: VaultEntry) -> list:
        return [
            str(entry.id),
            entry.vault,
            entry.type.value,
            entry.asset.key,
            str(entry.amount),
            str(entry.usd_value),
            entry.at.isoformat(),
            entry.account or "",
            entry.note or "",
        ]

    def _row_to_entry(self, row: list) -> VaultEntry:
        safe_get = _safe_getter(row)
        return VaultEntry(
            id=UUID(safe_get(0)),
            vault=safe_get(1),
            type=VaultEntryType(safe_get(2)),
            asset=Asset.from_key(safe_get(3)),
            amount=Decimal(safe_get(4, "0")),
            usd_value=Decimal(safe_get(5, "0")),
            at=datetime.fromisoformat(safe_get(6)),
            account=safe_get(7) or None,
            note=safe_get(8) or None,
        )

    async def get_vault(self, name: str) -> Optional[Vault]:
        try:
            sheet = self._client.get_vaults_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == name:
                    return self._row_to_vault(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get vault: {e}")

    async def list_vaults(self) -> list[Vault]:
        try:
            sheet = self._client.get_vaults_sheet()
            return [
                self._row_to_vault(row)
                for row in sheet.get_all_values()[1:]
                if row and row[0]
            ]
        except Exception as e:
            raise StorageError(f"Failed to list vaults: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_vault(self, vault: Vault) -> bool:
        try:
            sheet = self._client.get_vaults_sheet()
            new_row = self._vault_to_row(vault)
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
                if row and row[0] == vault.name:
                    _replace_row(sheet, idx, new_row)
                    return True
            sheet.append_row(new_row, value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save vault: {e}")

    async def delete_vault(self, name: str) -> bool:
        try:
            sheet = self._client.get_vaults_sheet()
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
                if row and row[0] == name:
                    sheet.delete_rows(idx)
                    return True
            return False
        except Exception as e:
            raise StorageError(f"Failed to delete vault: {e}")

    async def find_entries(self, vault: str) -> list[VaultEntry]:
        try:
            sheet = self._client.get_vault_entries_sheet()
            return [
                self._row_to_entry(row)
                for row in sheet.get_all_values()[1:]
                if row and len(row) > 1 and row[1] == vault
            ]
        except Exception as e:
            raise StorageError(f"Failed to get vault entries: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_entry(self, entry: VaultEntry) -> bool:
        try:
            sheet = self._client.get_vault_entries_sheet()
            sheet.append_row(self._entry_to_row(entry), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to append vault entry: {e}")


class GoogleSheetsPositionStorage(PositionStorageInterface):
    """
    Positions, one row each. Exits are JSON-serialized into a single cell.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _position_to_row(self, position: Position) -> list:
        return [
            str(position.id),
            position.asset.key,
            position.account,
            str(position.deposit_qty),
            str(position.deposit_cost),
            position.deposit_date.isoformat(),
            position.exit_date.isoformat() if position.exit_date else "",
            str(position.remaining_qty),
            str(position.realized_pnl),
            str(position.withdrawn_qty),
            str(position.withdrawn_value),
            str(position.cost_basis_exited),
            json.dumps([item.model_dump(mode="json") for item in position.exits]),
        ]

    def _row_to_position(self, row: list) -> Position:
        safe_get = _safe_getter(row)

        exits = []
        exits_json = safe_get(12)
        if exits_json:
            exits = [PositionExit(**item) for item in json.loads(exits_json)]

        return Position(
            id=UUID(safe_get(0)),
            asset=Asset.from_key(safe_get(1)),
            account=safe_get(2),
            deposit_qty=Decimal(safe_get(3)),
            deposit_cost=Decimal(safe_get(4, "0")),
            deposit_date=datetime.fromisoformat(safe_get(5)),
            exit_date=datetime.fromisoformat(safe_get(6)) if safe_get(6) else None,
            remaining_qty=Decimal(safe_get(7, "0")),
            realized_pnl=Decimal(safe_get(8, "0")),
            withdrawn_qty=Decimal(safe_get(9, "0")),
            withdrawn_value=Decimal(safe_get(10, "0")),
            cost_basis_exited=Decimal(safe_get(11, "0")),
            exits=exits,
        )

    async def find_position(self, position_id: UUID) -> Optional[Position]:
        try:
            sheet = self._client.get_positions_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(position_id):
                    return self._row_to_position(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get position: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_position(self, position: Position) -> bool:
        try:
            sheet = self._client.get_positions_sheet()
            new_row = self._position_to_row(position)
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
                if row and row[0] == str(position.id):
                    _replace_row(sheet, idx, new_row)
                    return True
            sheet.append_row(new_row, value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save position: {e}")

    async def list_positions(
        self,
        asset: Optional[Asset] = None,
        account: Optional[str] = None,
        is_open: Optional[bool] = None,
    ) -> list[Position]:
        try:
            sheet = self._client.get_positions_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list positions: {e}")

        positions = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            position = self._row_to_position(row)

            if asset and position.asset != asset:
                continue
            if account and position.account != account:
                continue
            if is_open is not None and position.is_open != is_open:
                continue

            positions.append(position)

        positions.sort(key=lambda p: p.deposit_date)
        return positions


class GoogleSheetsRateCacheStorage(RateCacheStorageInterface):
    """
    Persisted rate cache. First row for a key wins.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _rate_to_row(self, rate: Rate, key: str) -> list:
        return [
            key,
            rate.asset.key,
            str(rate.rate_usd),
            rate.timestamp.isoformat(),
            rate.source.value,
        ]

    def _row_to_rate(self, row: list) -> Rate:
        safe_get = _safe_getter(row)
        return Rate(
            asset=Asset.from_key(safe_get(1)),
            rate_usd=Decimal(safe_get(2)),
            timestamp=datetime.fromisoformat(safe_get(3)),
            source=RateSource(safe_get(4)),
        )

    async def get_cached_rate(self, key: str) -> Optional[Rate]:
        try:
            sheet = self._client.get_rate_cache_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == key:
                    return self._row_to_rate(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to read rate cache: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_rate(self, rate: Rate, key: str) -> bool:
        try:
            sheet = self._client.get_rate_cache_sheet()
            sheet.append_row(self._rate_to_row(rate, key), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write rate cache: {e}")

    async def get_cached_days(self, asset: Asset) -> set[datetime]:
        try:
            sheet = self._client.get_rate_cache_sheet()
            return {
                self._row_to_rate(row).timestamp
                for row in sheet.get_all_values()[1:]
                if row and len(row) > 1 and row[1] == asset.key
            }
        except Exception as e:
            raise StorageError(f"Failed to read rate cache: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        safe_get = _safe_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_code=safe_get(9) or None,
            error_message=safe_get(10) or None,
        )

    def _read_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        return [
            self._row_to_event(row)
            for row in sheet.get_all_values()[1:]
            if row and row[0]
        ]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._read_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._read_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
