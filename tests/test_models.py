"""
Tests for Nami

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows (with in-memory storage and fake providers)
3. No real API calls in tests (use fakes and mocked transports)
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from nami.audit import AuditLogger
from nami.config import AppSettings, RateSettings
from nami.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from nami.models.ledger import (
    Asset,
    AssetType,
    Rate,
    RateSource,
    VaultEntry,
    VaultEntryType,
    VaultStats,
    as_decimal,
    day_start,
    ensure_utc,
)
from nami.models.position import PositionSummary, UnstakeRequest
from nami.models.validation import ValidationIssue, ValidationResult
from nami.positions import open_position
from nami.services.storage import AuditStorageInterface, StorageError
from nami.validation import LedgerValidator


class TestLedgerModels:
    """Tests for asset, rate and vault models."""

    def test_asset_symbol_normalized(self):
        """Symbols are stripped and upper-cased."""
        asset = Asset.crypto("  btc ")
        assert asset.symbol == "BTC"
        assert asset.key == "CRYPTO:BTC"
        assert str(asset) == "CRYPTO:BTC"

    def test_asset_identity(self):
        """Assets compare by type and symbol."""
        assert Asset.fiat("eur") == Asset.fiat("EUR")
        assert Asset.fiat("USD") != Asset.crypto("USD")
        assert Asset.usd().is_usd

    def test_asset_from_key(self):
        """Identity keys parse back into assets."""
        assert Asset.from_key("crypto:eth") == Asset.crypto("ETH")
        with pytest.raises(ValueError):
            Asset.from_key("ETH")

    def test_asset_from_symbol(self):
        """Known tickers and long symbols are crypto; ISO codes are fiat."""
        assert Asset.from_symbol("BTC").type == AssetType.CRYPTO
        assert Asset.from_symbol("PEPE").type == AssetType.CRYPTO
        assert Asset.from_symbol("vnd").type == AssetType.FIAT

    def test_rate_truncated_to_day(self):
        """Rates apply to a whole UTC day."""
        rate = Rate(
            asset=Asset.fiat("EUR"),
            rate_usd=Decimal("1.08"),
            timestamp=datetime(2024, 3, 1, 17, 45, tzinfo=timezone.utc),
            source=RateSource.FRANKFURTER,
        )
        assert rate.timestamp == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert rate.value_of(Decimal("100")) == Decimal("108.00")
        assert rate.is_degraded is False

    def test_rate_must_be_positive(self):
        """Zero rates are rejected."""
        with pytest.raises(ValueError):
            Rate(
                asset=Asset.fiat("EUR"),
                rate_usd=Decimal("0"),
                timestamp=datetime(2024, 3, 1, tzinfo=timezone.utc),
                source=RateSource.FIXED,
            )

    def test_vault_entry_rejects_negative_amount(self):
        """Direction comes from the type; amounts are never negative."""
        with pytest.raises(ValueError):
            VaultEntry(
                vault="Binance",
                type=VaultEntryType.WITHDRAW,
                asset=Asset.usd(),
                amount=Decimal("-5"),
                usd_value=Decimal("5"),
            )

    def test_naive_timestamps_read_as_utc(self):
        """Naive datetimes get UTC attached."""
        entry = VaultEntry(
            vault="Binance",
            type=VaultEntryType.DEPOSIT,
            asset=Asset.usd(),
            amount=Decimal("5"),
            usd_value=Decimal("5"),
            at=datetime(2024, 3, 1, 9, 0),
        )
        assert entry.at.tzinfo == timezone.utc

    def test_vault_stats_roi(self):
        """ROI counts AUM and withdrawals against deposits."""
        stats = VaultStats(
            vault="Fund",
            total_deposited_usd=Decimal("1000"),
            total_withdrawn_usd=Decimal("300"),
            aum_usd=Decimal("800"),
        )
        assert stats.roi_percent == pytest.approx(10.0)
        assert stats.net_flow_usd == Decimal("700")
        assert VaultStats(vault="Empty").roi_percent == 0.0

    def test_position_summary_totals(self):
        """Total PnL is realized plus unrealized."""
        summary = PositionSummary(
            total_deposits_usd=Decimal("1000"),
            realized_pnl_usd=Decimal("50"),
            unrealized_pnl_usd=Decimal("-20"),
        )
        assert summary.total_pnl_usd == Decimal("30")
        assert summary.roi_percent == pytest.approx(3.0)

    def test_helpers(self):
        """Time and number helpers."""
        at = datetime(2024, 3, 1, 23, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert ensure_utc(at) == datetime(2024, 3, 2, 4, 0, tzinfo=timezone.utc)
        assert day_start(at) == datetime(2024, 3, 2, tzinfo=timezone.utc)
        assert as_decimal(0.1) == Decimal("0.1")
        assert as_decimal("1e3") == Decimal("1000")


class TestValidationModels:
    """Tests for validation result models."""

    def test_validation_result_is_valid(self):
        """Warnings alone keep a result valid."""
        result = ValidationResult(
            operation="deposit",
            issues=[
                ValidationIssue(
                    field="at",
                    issue_type="future_date",
                    message="In the future",
                    severity="warning",
                ),
            ],
        )
        assert result.is_valid is True
        assert result.warnings == ["In the future"]

    def test_validation_result_with_errors(self):
        """Any error makes a result invalid."""
        result = ValidationResult(
            operation="unstake",
            issues=[
                ValidationIssue(
                    field="qty",
                    issue_type="over_unstake",
                    message="Too much",
                    severity="error",
                ),
            ],
        )
        assert result.is_valid is False
        assert result.summary() == "Too much"

    def test_issue_severity_pattern(self):
        """Severities are error, warning or info."""
        with pytest.raises(ValueError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")


class TestLedgerValidator:
    """Tests for LedgerValidator."""

    def setup_method(self):
        self.validator = LedgerValidator(AppSettings(max_flow_amount_usd=10_000))
        self.position = open_position(
            Asset.crypto("USDT"), "Binance", "100", "100",
            datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

    def test_valid_unstake(self):
        """A partial within the remaining quantity passes."""
        request = UnstakeRequest(
            exit_value_usd=Decimal("55"),
            qty=Decimal("50"),
            at=datetime(2024, 2, 1, tzinfo=timezone.utc),
        )
        assert self.validator.validate_unstake(self.position, request).is_valid

    def test_over_unstake(self):
        """More than remaining is an error with a suggested fix."""
        request = UnstakeRequest(
            exit_value_usd=Decimal("200"),
            qty=Decimal("101"),
            at=datetime(2024, 2, 1, tzinfo=timezone.utc),
        )
        result = self.validator.validate_unstake(self.position, request)
        assert result.is_valid is False
        assert result.errors[0].issue_type == "over_unstake"
        assert result.errors[0].suggested_fix is not None

    def test_close_all_needs_no_qty(self):
        """close_all ignores the quantity."""
        request = UnstakeRequest(
            exit_value_usd=Decimal("90"),
            at=datetime(2024, 2, 1, tzinfo=timezone.utc),
            close_all=True,
        )
        assert self.validator.validate_unstake(self.position, request).is_valid

    def test_exit_before_stake(self):
        """Exits cannot predate the stake."""
        request = UnstakeRequest(
            exit_value_usd=Decimal("90"),
            at=datetime(2023, 12, 31, tzinfo=timezone.utc),
            close_all=True,
        )
        result = self.validator.validate_unstake(self.position, request)
        assert [i.issue_type for i in result.errors] == ["inconsistent"]

    def test_large_value_warns(self):
        """Values above the configured ceiling warn but pass."""
        result = self.validator.validate_flow(
            VaultEntryType.DEPOSIT,
            Decimal("1"),
            Decimal("50000"),
            datetime(2024, 2, 1, tzinfo=timezone.utc),
        )
        assert result.is_valid
        assert len(result.warnings) == 1

    def test_future_flow_warns(self):
        """Flows dated well into the future are flagged."""
        result = self.validator.validate_flow(
            VaultEntryType.DEPOSIT,
            Decimal("1"),
            Decimal("1"),
            datetime.now(timezone.utc) + timedelta(days=10),
        )
        assert result.is_valid
        assert any("future" in w for w in result.warnings)

    def test_valuation_needs_value(self):
        """A valuation without a USD value is an error."""
        result = self.validator.validate_flow(
            VaultEntryType.VALUATION,
            Decimal("0"),
            None,
            datetime(2024, 2, 1, tzinfo=timezone.utc),
        )
        assert result.is_valid is False


class TestAuditModels:
    """Tests for audit event models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.VAULT_CREATED,
            description="Test event",
        )
        assert event.event_type == AuditEventType.VAULT_CREATED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_sheets_row(self):
        """Rows have one cell per audit column."""
        event = AuditEventBuilder.rate_degraded("FIAT:VND", "2024-03-01", "FALLBACK", "0.0000417")
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[2] == AuditEventType.RATE_DEGRADED.value
        assert json.loads(row[8])["source"] == "FALLBACK"

    def test_builder_valuation_event(self):
        """VALUATION entries get their own event type."""
        event = AuditEventBuilder.vault_entry_appended(
            vault="Fund",
            entry_id=uuid4(),
            entry_type="VALUATION",
            asset_key="FIAT:USD",
            amount="0",
            usd_value="1000",
        )
        assert event.event_type == AuditEventType.VALUATION_RECORDED

    def test_builder_unstake_events(self):
        """Closing and reducing unstakes are distinguished."""
        pid = uuid4()
        closed = AuditEventBuilder.position_unstaked(pid, "1", "10", "2", closed=True)
        reduced = AuditEventBuilder.position_unstaked(pid, "1", "10", "2", closed=False)
        assert closed.event_type == AuditEventType.POSITION_CLOSED
        assert reduced.event_type == AuditEventType.POSITION_REDUCED
        assert closed.entity_id == str(pid)

    def test_audit_logger_survives_storage_failure(self):
        """A failed audit write returns False instead of raising."""
        class FailingAuditStorage(AuditStorageInterface):
            async def append_event(self, event):
                raise StorageError("down")

            async def get_events_by_correlation_id(self, correlation_id):
                return []

            async def get_events_by_entity(self, entity_type, entity_id):
                return []

            async def get_recent_events(self, limit=100):
                return []

        logger = AuditLogger(FailingAuditStorage())
        event = AuditEventBuilder.vault_created("Binance")

        assert asyncio.run(logger.log(event)) is False
        assert asyncio.run(AuditLogger().log(event)) is True


class TestSettings:
    """Tests for configuration validation."""

    def test_fallback_rates_normalized(self):
        """Symbols are upper-cased and rates must be positive."""
        settings = RateSettings(fiat_fallback_rates={"eur": 1.1})
        assert settings.fiat_fallback_rates == {"EUR": 1.1}
        with pytest.raises(ValueError):
            RateSettings(fiat_fallback_rates={"EUR": 0})

    def test_timeouts_bounded(self):
        """Timeouts stay within 5-30 seconds."""
        with pytest.raises(ValueError):
            RateSettings(current_timeout_seconds=1)

    def test_log_level_upper_cased(self):
        """Log levels are normalized."""
        assert AppSettings(log_level="debug").log_level == "DEBUG"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
